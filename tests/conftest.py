"""
Pytest configuration and shared fixtures for layerconf tests.

This module provides common fixtures for building settings directories and
key material.
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Generator, Tuple

import pytest

# Add the parent directory to the path for imports
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from layerconf.crypto import FernetCipher, FileSigner, SealedBoxCipher


# ===========================================================================
# Temporary Directory Fixtures
# ===========================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    tmpdir = tempfile.mkdtemp(prefix="layerconf_test_")
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def write_file(temp_dir: Path) -> Callable[[str, str], Path]:
    """Provide a helper that writes text to a path under temp_dir."""
    def _write(relative: str, content: str) -> Path:
        path = temp_dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path
    return _write


@pytest.fixture
def settings_dir(temp_dir: Path, write_file) -> Path:
    """
    Provide a settings directory:

        settings.yml            foo: 1, shared defaults
        settings-blue.yml       foo: 2
        settings-green.yml      foo: 3
        settings/database.yml
        settings/database-blue.yml
        settings/another.json
    """
    write_file("settings.yml", "foo: 1\nname: app\nlevels:\n  log: info\n  retries: 3\n")
    write_file("settings-blue.yml", "foo: 2\ncolor: blue\n")
    write_file("settings-green.yml", "foo: 3\ncolor: green\n")
    write_file("settings/database.yml", "database:\n  host: localhost\n  port: 5432\n")
    write_file("settings/database-blue.yml", "database:\n  host: blue.internal\n")
    write_file("settings/another.json", '{"json": true}\n')
    return temp_dir


# ===========================================================================
# Key Material Fixtures
# ===========================================================================

@pytest.fixture
def fernet_key() -> str:
    """Provide a fresh Fernet key."""
    return FernetCipher.generate_key().decode("ascii")


@pytest.fixture
def other_fernet_key() -> str:
    """Provide a second, unrelated Fernet key."""
    return FernetCipher.generate_key().decode("ascii")


@pytest.fixture
def fernet_cipher(fernet_key: str) -> FernetCipher:
    """Provide a Fernet cipher able to encrypt and decrypt."""
    return FernetCipher(encryption_keys=fernet_key, decryption_keys=[fernet_key])


@pytest.fixture
def sealed_keypair() -> Tuple[str, str]:
    """Provide (private_hex, public_hex) for the sealed-box cipher."""
    private, public = SealedBoxCipher.generate_keypair()
    return private.decode("ascii"), public.decode("ascii")


@pytest.fixture
def signing_keypair() -> Tuple[str, str]:
    """Provide (signing_hex, verify_hex) Ed25519 keys."""
    signing, verify = FileSigner.generate_keypair()
    return signing.decode("ascii"), verify.decode("ascii")


@pytest.fixture
def signer(signing_keypair) -> FileSigner:
    """Provide a signer that can both sign and verify."""
    return FileSigner(signing_key=signing_keypair[0], signer_id="test")


# ===========================================================================
# Logging Fixtures
# ===========================================================================

@pytest.fixture(autouse=True)
def reset_package_logging() -> Generator[None, None, None]:
    """Undo handlers installed by setup_logging so caplog keeps working."""
    yield
    package_logger = logging.getLogger("layerconf")
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)
