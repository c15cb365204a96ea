"""
Tests for the Constants module.

Tests naming conventions, file modes and environment overrides.
"""

import os
import sys

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from layerconf.constants import (
    DEFAULT_CONVENTIONS,
    Conventions,
    Permissions,
    _env_override,
)


# ===========================================================================
# Conventions Tests
# ===========================================================================

class TestConventions:
    """Tests for the Conventions dataclass."""

    def test_defaults(self):
        conventions = Conventions()
        assert conventions.secure_prefix == "_secure_"
        assert conventions.default_extensions == ("yml", "yml.erb", "yaml")
        assert conventions.signature_suffix == ".sig"

    def test_directory_globs(self):
        assert Conventions().directory_globs() == ("*.yml", "*.yml.erb", "*.yaml")

    def test_strip_secure_prefix(self):
        conventions = Conventions()
        assert conventions.strip_secure_prefix("_secure_password") == ("password", True)
        assert conventions.strip_secure_prefix("password") == ("password", False)

    def test_prefix_only_in_front(self):
        assert Conventions().strip_secure_prefix("my_secure_password") == ("my_secure_password", False)

    def test_frozen(self):
        with pytest.raises(AttributeError):
            DEFAULT_CONVENTIONS.secure_prefix = "x"

    def test_empty_prefix_rejected(self):
        with pytest.raises(ValueError):
            Conventions(secure_prefix="")

    def test_empty_extensions_rejected(self):
        with pytest.raises(ValueError):
            Conventions(default_extensions=())


# ===========================================================================
# Permissions Tests
# ===========================================================================

class TestPermissions:
    """Tests for Permissions enum."""

    def test_secure_file_permissions(self):
        """Secure files should be owner-only."""
        assert Permissions.SECURE_FILE == 0o600
        assert Permissions.SECURE_DIR == 0o700

    def test_permissions_are_integers(self):
        assert isinstance(Permissions.SECURE_FILE, int)
        assert Permissions.SECURE_FILE & 0o077 == 0


# ===========================================================================
# Environment Override Tests
# ===========================================================================

class TestEnvOverride:
    """Tests for _env_override."""

    def test_default_when_unset(self, monkeypatch):
        monkeypatch.delenv("LAYERCONF_TEST_VALUE", raising=False)
        assert _env_override("TEST_VALUE", "default") == "default"

    def test_override_applied(self, monkeypatch):
        monkeypatch.setenv("LAYERCONF_TEST_VALUE", "custom")
        assert _env_override("TEST_VALUE", "default") == "custom"

    def test_converter(self, monkeypatch):
        monkeypatch.setenv("LAYERCONF_TEST_VALUE", "42")
        assert _env_override("TEST_VALUE", 1, converter=int) == 42

    def test_invalid_conversion_falls_back(self, monkeypatch):
        monkeypatch.setenv("LAYERCONF_TEST_VALUE", "not-a-number")
        assert _env_override("TEST_VALUE", 1, converter=int) == 1

    def test_failed_validation_falls_back(self, monkeypatch):
        monkeypatch.setenv("LAYERCONF_TEST_VALUE", "bad value")
        assert _env_override("TEST_VALUE", "ok", validator=lambda v: " " not in v) == "ok"
