"""
Crypto module for layerconf.

Value ciphers used to store secure settings encrypted at rest, and the
Ed25519 signer used to detect tampering with settings files.
"""

from .cipher import (
    Cipher,
    FernetCipher,
    SealedBoxCipher,
    CIPHERS,
    build_cipher,
)

from .signer import (
    FileSigner,
    SignatureDocument,
    SignatureStatus,
    VerificationResult,
)

__all__ = [
    # Ciphers
    'Cipher',
    'FernetCipher',
    'SealedBoxCipher',
    'CIPHERS',
    'build_cipher',

    # Signing
    'FileSigner',
    'SignatureDocument',
    'SignatureStatus',
    'VerificationResult',
]
