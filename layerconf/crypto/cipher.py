"""
Value Ciphers - encryption of individual settings values.

A cipher turns one plaintext string into one ciphertext string and back.
It knows nothing about files or keys' origins: the resolver hands it the
encryption and decryption key material it was given and treats both
directions as opaque string-to-string transforms.

Two implementations are provided:

- FernetCipher: symmetric (AES-128-CBC + HMAC-SHA256). Encryption uses
  the first encryption key; decryption tries every decryption key in turn
  (MultiFernet), which allows key rotation.
- SealedBoxCipher: asymmetric (Curve25519 + XSalsa20-Poly1305). Anyone
  holding the public key can secure a value; only holders of the private
  key can read it back.
"""

import re
import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Optional, Sequence, Union

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from nacl.encoding import Base64Encoder, HexEncoder
from nacl.exceptions import CryptoError
from nacl.public import PrivateKey, PublicKey, SealedBox

from ..exceptions import DecryptionFailure, EncryptionUnavailable, InvalidKeyMaterial

logger = logging.getLogger(__name__)

KeyMaterial = Union[str, bytes]


def _as_key_list(keys: Any) -> List[bytes]:
    """Normalise a single key or a collection of keys to a list of bytes."""
    if keys is None:
        return []
    if isinstance(keys, (str, bytes)):
        keys = [keys]
    normalized = []
    for key in keys:
        if isinstance(key, str):
            key = key.encode('ascii')
        normalized.append(key.strip())
    return [key for key in normalized if key]


class Cipher(ABC):
    """Interface every value cipher implements."""

    name = "abstract"

    @property
    @abstractmethod
    def can_encrypt(self) -> bool:
        """Whether encryption key material is available."""

    @property
    @abstractmethod
    def can_decrypt(self) -> bool:
        """Whether decryption key material is available."""

    @abstractmethod
    def encrypt(self, plaintext: str) -> str:
        """Encrypt a value. Raises EncryptionUnavailable without a key."""

    @abstractmethod
    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a value. Raises DecryptionFailure on missing/wrong keys."""

    @abstractmethod
    def looks_encrypted(self, value: Any) -> bool:
        """Whether a value has the shape of this cipher's output."""


class FernetCipher(Cipher):
    """
    Symmetric cipher built on cryptography's Fernet.

    Usage:
        key = FernetCipher.generate_key()
        cipher = FernetCipher(encryption_keys=key, decryption_keys=[key])
        token = cipher.encrypt("hunter2")
        cipher.decrypt(token)   # "hunter2"
    """

    name = "fernet"

    # Fernet tokens are urlsafe base64 starting with the 0x80 version byte
    TOKEN_PATTERN = re.compile(r'^gAAAAA[A-Za-z0-9_\-]+={0,2}$')

    def __init__(
        self,
        encryption_keys: Optional[Union[KeyMaterial, Sequence[KeyMaterial]]] = None,
        decryption_keys: Optional[Union[KeyMaterial, Sequence[KeyMaterial]]] = None,
    ):
        self._encrypter: Optional[Fernet] = None
        self._decrypter: Optional[MultiFernet] = None

        encryption = _as_key_list(encryption_keys)
        decryption = _as_key_list(decryption_keys)

        try:
            if encryption:
                self._encrypter = Fernet(encryption[0])
            if decryption:
                self._decrypter = MultiFernet([Fernet(k) for k in decryption])
        except (ValueError, TypeError) as e:
            raise InvalidKeyMaterial(f"Invalid Fernet key: {e}") from e

    @staticmethod
    def generate_key() -> bytes:
        return Fernet.generate_key()

    @property
    def can_encrypt(self) -> bool:
        return self._encrypter is not None

    @property
    def can_decrypt(self) -> bool:
        return self._decrypter is not None

    def encrypt(self, plaintext: str) -> str:
        if self._encrypter is None:
            raise EncryptionUnavailable("No Fernet encryption key configured")
        return self._encrypter.encrypt(plaintext.encode('utf-8')).decode('ascii')

    def decrypt(self, ciphertext: str) -> str:
        if self._decrypter is None:
            raise DecryptionFailure("No Fernet decryption key configured")
        try:
            return self._decrypter.decrypt(ciphertext.encode('ascii')).decode('utf-8')
        except (InvalidToken, UnicodeError) as e:
            raise DecryptionFailure(
                "Value decryption failed - key mismatch or data corruption"
            ) from e

    def looks_encrypted(self, value: Any) -> bool:
        return isinstance(value, str) and bool(self.TOKEN_PATTERN.match(value))


class SealedBoxCipher(Cipher):
    """
    Asymmetric cipher built on PyNaCl's SealedBox.

    Keys are hex encoded: the encryption key is a Curve25519 public key and
    each decryption key a private key. Values are stored as
    ``sealed:<base64>``.

    Usage:
        private_hex, public_hex = SealedBoxCipher.generate_keypair()
        cipher = SealedBoxCipher(encryption_keys=public_hex,
                                 decryption_keys=[private_hex])
    """

    name = "sealed"

    # SealedBox adds 48 bytes of overhead, so even an empty value encodes
    # to at least 64 base64 characters
    PREFIX = "sealed:"
    TOKEN_PATTERN = re.compile(r'^sealed:[A-Za-z0-9+/]{64,}={0,2}$')

    def __init__(
        self,
        encryption_keys: Optional[Union[KeyMaterial, Sequence[KeyMaterial]]] = None,
        decryption_keys: Optional[Union[KeyMaterial, Sequence[KeyMaterial]]] = None,
    ):
        encryption = _as_key_list(encryption_keys)
        decryption = _as_key_list(decryption_keys)

        try:
            self._sealer: Optional[SealedBox] = (
                SealedBox(PublicKey(encryption[0], encoder=HexEncoder))
                if encryption else None
            )
            self._openers: List[SealedBox] = [
                SealedBox(PrivateKey(k, encoder=HexEncoder)) for k in decryption
            ]
        except (ValueError, TypeError, CryptoError) as e:
            raise InvalidKeyMaterial(f"Invalid Curve25519 key: {e}") from e

    @staticmethod
    def generate_keypair():
        """
        Generate a new keypair.

        Returns:
            Tuple of (private_key_hex, public_key_hex)
        """
        private_key = PrivateKey.generate()
        return (
            private_key.encode(encoder=HexEncoder),
            private_key.public_key.encode(encoder=HexEncoder),
        )

    @property
    def can_encrypt(self) -> bool:
        return self._sealer is not None

    @property
    def can_decrypt(self) -> bool:
        return bool(self._openers)

    def encrypt(self, plaintext: str) -> str:
        if self._sealer is None:
            raise EncryptionUnavailable("No public key configured for sealing")
        sealed = self._sealer.encrypt(plaintext.encode('utf-8'), encoder=Base64Encoder)
        return self.PREFIX + sealed.decode('ascii')

    def decrypt(self, ciphertext: str) -> str:
        if not self._openers:
            raise DecryptionFailure("No private key configured for unsealing")
        if not ciphertext.startswith(self.PREFIX):
            raise DecryptionFailure(f"Sealed values must start with {self.PREFIX!r}")
        body = ciphertext[len(self.PREFIX):]
        for opener in self._openers:
            try:
                plain = opener.decrypt(body.encode('ascii'), encoder=Base64Encoder)
                return plain.decode('utf-8')
            except (CryptoError, ValueError, TypeError, UnicodeError):
                continue
        raise DecryptionFailure("Value decryption failed - no private key matched")

    def looks_encrypted(self, value: Any) -> bool:
        return (
            isinstance(value, str)
            and (len(value) - len(self.PREFIX)) % 4 == 0
            and bool(self.TOKEN_PATTERN.match(value))
        )


CIPHERS = {
    FernetCipher.name: FernetCipher,
    SealedBoxCipher.name: SealedBoxCipher,
}


def build_cipher(
    name: str = FernetCipher.name,
    encryption_keys: Optional[Iterable[KeyMaterial]] = None,
    decryption_keys: Optional[Iterable[KeyMaterial]] = None,
) -> Cipher:
    """Build a cipher by name from key material."""
    try:
        cipher_class = CIPHERS[name]
    except KeyError:
        raise ValueError(f"Unknown cipher {name!r}; expected one of {sorted(CIPHERS)}")
    return cipher_class(encryption_keys=encryption_keys, decryption_keys=decryption_keys)
