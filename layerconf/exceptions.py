"""
layerconf Exceptions

Exceptions raised by the resolver, plus the warning records that are
collected instead of raised when a failure is recovered locally.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


class LayerconfError(Exception):
    """Base exception for all layerconf errors."""

    def __init__(self, message: str, reason: str = None):
        super().__init__(message)
        self.reason = reason or message


class InvalidNamespaceInput(LayerconfError):
    """Raised when a namespace element cannot be coerced to a string."""
    pass


class InvalidKeyMaterial(LayerconfError):
    """Raised when a key cannot be loaded for the selected cipher or signer."""
    pass


class DecryptionFailure(LayerconfError):
    """Raised by a cipher when key material is missing or does not match."""
    pass


class EncryptionUnavailable(LayerconfError):
    """Raised when a value must be encrypted but no encryption key is set."""
    pass


class SignatureUnavailable(LayerconfError):
    """Raised when signing or verifying without the required key."""
    pass


class FileFailure(LayerconfError):
    """A failure attributed to a single settings file."""

    def __init__(self, message: str, path: Optional[str] = None, reason: str = None):
        super().__init__(message, reason)
        self.path = path


class DecodeFailure(FileFailure):
    """Raised when a settings file is not a valid YAML mapping."""
    pass


class TemplateFailure(FileFailure):
    """Raised when template expansion of a settings file fails."""
    pass


class SignatureFailure(FileFailure):
    """A settings file that did not verify against its detached signature."""
    pass


@dataclass(frozen=True)
class UndecryptableValue:
    """A secure value that was kept in ciphertext form."""
    key_path: Tuple[str, ...]
    source: Optional[str]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'key': '.'.join(self.key_path),
            'source': self.source,
            'reason': self.reason,
        }


@dataclass(frozen=True)
class AmbiguousOrUnmatchedSecureTarget:
    """A leaf whose text could not be located uniquely during securing."""
    key_path: Tuple[str, ...]
    source: Optional[str]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'key': '.'.join(self.key_path),
            'source': self.source,
            'reason': self.reason,
        }
