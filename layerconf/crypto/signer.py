"""
File Signer - detached Ed25519 signatures for settings files.

Signing lets a deployment check that the settings files it is about to
load are exactly the ones that were reviewed. Each file gets a detached
signature document next to it:

    settings.yml
    settings.yml.sig    <- JSON: version, signer, signed_at, sha256, signature

Verification outcomes:
    VERIFIED           signature matches the current file bytes
    MISMATCH           file changed (or signed by another key)
    MISSING_SIGNATURE  no signature document for the file
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from nacl.encoding import HexEncoder
from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import SigningKey, VerifyKey

from ..exceptions import InvalidKeyMaterial, SignatureUnavailable

logger = logging.getLogger(__name__)


class SignatureStatus(Enum):
    """Status of a file signature verification."""
    VERIFIED = "verified"
    MISMATCH = "mismatch"
    MISSING_SIGNATURE = "missing_signature"


@dataclass
class VerificationResult:
    """Result of verifying one settings file."""
    status: SignatureStatus
    path: str
    signer: Optional[str] = None
    signed_at: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        """Check if verification passed."""
        return self.status == SignatureStatus.VERIFIED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'status': self.status.value,
            'path': self.path,
            'signer': self.signer,
            'signed_at': self.signed_at,
            'details': self.details,
            'is_valid': self.is_valid,
        }


@dataclass
class SignatureDocument:
    """Detached signature stored next to a settings file."""
    version: str
    signer: str
    signed_at: str
    sha256: str
    signature: str                # Ed25519 signature (hex)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'version': self.version,
            'signer': self.signer,
            'signed_at': self.signed_at,
            'sha256': self.sha256,
            'signature': self.signature,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SignatureDocument':
        """Create from dictionary."""
        return cls(
            version=data['version'],
            signer=data.get('signer', ''),
            signed_at=data.get('signed_at', ''),
            sha256=data['sha256'],
            signature=data['signature'],
        )

    def to_json(self, indent: int = 2) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True) + "\n"

    @classmethod
    def from_json(cls, json_str: str) -> 'SignatureDocument':
        """Create from JSON string."""
        return cls.from_dict(json.loads(json_str))


KeyInput = Union[str, bytes, None]


class FileSigner:
    """
    Signs and verifies settings file bytes with Ed25519.

    Usage:
        signing_hex, verify_hex = FileSigner.generate_keypair()
        signer = FileSigner(signing_key=signing_hex, signer_id="ci")
        signer.sign_file(Path("settings.yml"), suffix=".sig")
        signer.verify_file(Path("settings.yml"), suffix=".sig").status
    """

    DOCUMENT_VERSION = "1.0"

    def __init__(
        self,
        signing_key: KeyInput = None,
        verify_key: KeyInput = None,
        signer_id: str = "layerconf",
    ):
        """
        Initialize the file signer.

        Args:
            signing_key: Ed25519 signing key (hex)
            verify_key: Ed25519 verify key (hex); derived from the
                signing key when omitted
            signer_id: Identifier recorded in signature documents
        """
        self.signer_id = signer_id

        try:
            self._signing_key = self._load(SigningKey, signing_key)
            self._verify_key = self._load(VerifyKey, verify_key)
        except (ValueError, TypeError, CryptoError) as e:
            raise InvalidKeyMaterial(f"Invalid Ed25519 key: {e}") from e

        if self._verify_key is None and self._signing_key is not None:
            self._verify_key = self._signing_key.verify_key

    @staticmethod
    def _load(key_class, key: KeyInput):
        if key is None:
            return None
        if isinstance(key, str):
            key = key.encode('ascii')
        key = key.strip()
        if not key:
            return None
        return key_class(key, encoder=HexEncoder)

    @staticmethod
    def generate_keypair() -> Tuple[bytes, bytes]:
        """
        Generate a new Ed25519 keypair.

        Returns:
            Tuple of (signing_key_hex, verify_key_hex)
        """
        signing_key = SigningKey.generate()
        return (
            signing_key.encode(encoder=HexEncoder),
            signing_key.verify_key.encode(encoder=HexEncoder),
        )

    @property
    def can_sign(self) -> bool:
        return self._signing_key is not None

    @property
    def can_verify(self) -> bool:
        return self._verify_key is not None

    def sign(self, data: bytes) -> bytes:
        """Sign raw bytes, returning the detached signature."""
        if self._signing_key is None:
            raise SignatureUnavailable("Signing key not available")
        return bytes(self._signing_key.sign(data).signature)

    def verify(self, data: bytes, signature: bytes) -> bool:
        """Verify a detached signature over raw bytes."""
        if self._verify_key is None:
            raise SignatureUnavailable("Verify key not available")
        try:
            self._verify_key.verify(data, signature)
            return True
        except (BadSignatureError, ValueError):
            return False

    @staticmethod
    def signature_path(path: Path, suffix: str) -> Path:
        return path.with_name(path.name + suffix)

    def sign_file(self, path: Path, suffix: str) -> Path:
        """
        Sign a file and write its signature document.

        Args:
            path: Settings file to sign
            suffix: Suffix appended to the file name for the signature

        Returns:
            Path of the written signature document
        """
        data = path.read_bytes()
        document = SignatureDocument(
            version=self.DOCUMENT_VERSION,
            signer=self.signer_id,
            signed_at=datetime.now(timezone.utc).isoformat(),
            sha256=hashlib.sha256(data).hexdigest(),
            signature=self.sign(data).hex(),
        )

        sig_path = self.signature_path(path, suffix)
        sig_path.write_text(document.to_json(), encoding='utf-8')

        logger.info(f"Signed {path} -> {sig_path}")
        return sig_path

    def verify_file(self, path: Path, suffix: str) -> VerificationResult:
        """
        Verify a file against its signature document.

        Never raises for a mismatch; a missing settings file verifies as
        empty content.
        """
        if self._verify_key is None:
            raise SignatureUnavailable("Verify key not available")

        sig_path = self.signature_path(path, suffix)
        if not sig_path.exists():
            return VerificationResult(
                status=SignatureStatus.MISSING_SIGNATURE,
                path=str(path),
            )

        try:
            data = path.read_bytes()
        except FileNotFoundError:
            data = b""

        try:
            document = SignatureDocument.from_json(sig_path.read_text(encoding='utf-8'))
            signature = bytes.fromhex(document.signature)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Unreadable signature document {sig_path}: {e}")
            return VerificationResult(
                status=SignatureStatus.MISMATCH,
                path=str(path),
                details={'reason': f"unreadable signature document: {e}"},
            )

        valid = self.verify(data, signature)
        result = VerificationResult(
            status=SignatureStatus.VERIFIED if valid else SignatureStatus.MISMATCH,
            path=str(path),
            signer=document.signer,
            signed_at=document.signed_at,
            details={
                'sha256': hashlib.sha256(data).hexdigest(),
                'signed_sha256': document.sha256,
            },
        )
        if not valid:
            logger.warning(f"Signature mismatch for {path}")
        return result
