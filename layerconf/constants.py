"""
Centralized Constants Module for layerconf.

Consolidates the naming conventions and file-mode values used by the
settings resolver so that every component reads them from one place and
tests can inject alternate conventions.

Usage:
    from layerconf.constants import DEFAULT_CONVENTIONS, Permissions

    marker = DEFAULT_CONVENTIONS.secure_prefix
    os.chmod(path, Permissions.SECURE_FILE)
"""

import os
import logging
import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)


# =============================================================================
# ENVIRONMENT VARIABLE OVERRIDE UTILITIES
# =============================================================================

T = TypeVar('T')

ENV_PREFIX = "LAYERCONF_"


def _env_override(
    env_var: str,
    default: T,
    converter: Callable[[str], T] = str,
    validator: Optional[Callable[[T], bool]] = None,
) -> T:
    """Get a convention value with environment variable override.

    Args:
        env_var: Environment variable name (will be prefixed with LAYERCONF_)
        default: Default value if env var not set
        converter: Function to convert string to target type
        validator: Optional validation function

    Returns:
        Configured value (from env var if valid, otherwise default)
    """
    full_env_var = f"{ENV_PREFIX}{env_var}"
    env_value = os.environ.get(full_env_var)

    if env_value is None:
        return default

    try:
        converted = converter(env_value)

        if validator is not None and not validator(converted):
            logger.warning(f"{full_env_var}={env_value!r} failed validation, using default")
            return default

        logger.info(f"Using {full_env_var}={converted!r} (override)")
        return converted

    except (ValueError, TypeError) as e:
        logger.warning(f"Invalid value for {full_env_var}: {e}, using default")
        return default


_IDENTIFIER_LIKE = re.compile(r'^[A-Za-z0-9_]+$')
_SUFFIX_LIKE = re.compile(r'^\.[A-Za-z0-9_.-]+$')


# =============================================================================
# FILE PERMISSIONS
# =============================================================================

class Permissions(IntEnum):
    """File permission modes used when writing key material."""
    SECURE_FILE = 0o600                 # rw------- (keys)
    SECURE_DIR = 0o700                  # rwx------


# =============================================================================
# NAMING CONVENTIONS
# =============================================================================

@dataclass(frozen=True)
class Conventions:
    """
    Naming conventions shared by the resolver components.

    secure_prefix marks a key whose value is stored encrypted at rest.
    default_extensions are the extensions picked up when a directory is
    given as a pattern. signature_suffix is appended to a settings file
    path to locate its detached signature.
    """
    secure_prefix: str = "_secure_"
    default_extensions: Tuple[str, ...] = ("yml", "yml.erb", "yaml")
    signature_suffix: str = ".sig"

    def __post_init__(self):
        if not self.secure_prefix:
            raise ValueError("secure_prefix must not be empty")
        if not self.default_extensions:
            raise ValueError("default_extensions must not be empty")

    def directory_globs(self) -> Tuple[str, ...]:
        """Glob patterns a directory pattern expands to."""
        return tuple(f"*.{ext}" for ext in self.default_extensions)

    def strip_secure_prefix(self, key: str) -> Tuple[str, bool]:
        """Return (key without the marker, whether the marker was present)."""
        if key.startswith(self.secure_prefix):
            return key[len(self.secure_prefix):], True
        return key, False


DEFAULT_CONVENTIONS = Conventions(
    secure_prefix=_env_override(
        "SECURE_PREFIX", "_secure_",
        validator=lambda v: bool(_IDENTIFIER_LIKE.match(v)),
    ),
    signature_suffix=_env_override(
        "SIGNATURE_SUFFIX", ".sig",
        validator=lambda v: bool(_SUFFIX_LIKE.match(v)),
    ),
)
