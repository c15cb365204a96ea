"""
layerconf - layered YAML settings with encrypted values.

Settings are resolved from a set of YAML files layered by namespace
(settings.yml, then settings-production.yml, ...), merged into one tree,
and may carry values that are stored encrypted at rest under keys marked
with the ``_secure_`` prefix.

Usage:
    from layerconf import FileSet

    file_set = FileSet(files=['config/settings.yml', 'config/settings'],
                       namespaces=['production'],
                       decryption_keys=[open('settings.key').read()])
    settings = file_set.to_settings_tree()
    settings.get('database.password')
"""

from .constants import DEFAULT_CONVENTIONS, Conventions, Permissions
from .crypto import (
    Cipher,
    FernetCipher,
    SealedBoxCipher,
    build_cipher,
    FileSigner,
    SignatureStatus,
    VerificationResult,
)
from .exceptions import (
    LayerconfError,
    InvalidNamespaceInput,
    InvalidKeyMaterial,
    DecryptionFailure,
    EncryptionUnavailable,
    SignatureUnavailable,
    FileFailure,
    DecodeFailure,
    TemplateFailure,
    SignatureFailure,
    UndecryptableValue,
    AmbiguousOrUnmatchedSecureTarget,
)
from .file_set import FileSet
from .namespace_set import NamespaceSet
from .settings_tree import Leaf, LeafState, SettingsTree
from .source_file import SecureReport, SourceFile
from .textpatch import NotFound, locate_and_replace_leaf

__version__ = "1.0.0"

__all__ = [
    # Resolution
    'FileSet',
    'SourceFile',
    'SecureReport',
    'SettingsTree',
    'Leaf',
    'LeafState',
    'NamespaceSet',

    # Conventions
    'Conventions',
    'DEFAULT_CONVENTIONS',
    'Permissions',

    # Crypto
    'Cipher',
    'FernetCipher',
    'SealedBoxCipher',
    'build_cipher',
    'FileSigner',
    'SignatureStatus',
    'VerificationResult',

    # Text patching
    'locate_and_replace_leaf',
    'NotFound',

    # Errors
    'LayerconfError',
    'InvalidNamespaceInput',
    'InvalidKeyMaterial',
    'DecryptionFailure',
    'EncryptionUnavailable',
    'SignatureUnavailable',
    'FileFailure',
    'DecodeFailure',
    'TemplateFailure',
    'SignatureFailure',
    'UndecryptableValue',
    'AmbiguousOrUnmatchedSecureTarget',
]
