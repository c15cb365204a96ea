"""
Tests for SourceFile parsing, securing and signing.
"""

import os
import stat
import sys

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from layerconf.crypto import FernetCipher, SealedBoxCipher, SignatureStatus
from layerconf.exceptions import (
    DecodeFailure,
    EncryptionUnavailable,
    SignatureUnavailable,
    TemplateFailure,
)
from layerconf.settings_tree import LeafState, SettingsTree
from layerconf.source_file import SourceFile


# ===========================================================================
# Parsing Tests
# ===========================================================================

class TestParse:
    """Tests for SourceFile.parse."""

    def test_missing_file_is_empty(self, temp_dir):
        source = SourceFile(temp_dir / "missing.yml")
        tree = source.parse()
        assert len(tree) == 0

    def test_empty_file_is_empty(self, write_file):
        source = SourceFile(write_file("empty.yml", "# nothing yet\n"))
        assert len(source.parse()) == 0

    def test_parse_values(self, write_file):
        source = SourceFile(write_file("settings.yml", "foo: 1\ndatabase:\n  host: localhost\n"))
        tree = source.parse()
        assert tree.to_dict() == {'foo': 1, 'database': {'host': 'localhost'}}
        assert tree.leaf('foo').source == str(source.path)

    def test_parse_is_cached(self, write_file):
        path = write_file("settings.yml", "foo: 1\n")
        source = SourceFile(path)
        first = source.parse()
        path.write_text("foo: 2\n")
        assert source.parse() is first
        assert source.parsed

    def test_template_context(self, write_file):
        source = SourceFile(write_file("settings.yml", "url: postgres://${database.host}:5432\n"))
        tree = source.parse({'database.host': 'db.internal'})
        assert tree['url'] == 'postgres://db.internal:5432'

    def test_template_context_from_tree(self, write_file):
        earlier = SettingsTree.parse({'database': {'port': 5432}})
        source = SourceFile(write_file("settings.yml", "port: ${database.port}\n"))
        assert source.parse(earlier)['port'] == 5432

    def test_unknown_placeholder_is_template_failure(self, write_file):
        path = write_file("settings.yml", "url: ${missing.value}\n")
        with pytest.raises(TemplateFailure) as exc_info:
            SourceFile(path).parse()
        assert exc_info.value.path == str(path)

    def test_invalid_yaml_is_decode_failure(self, write_file):
        path = write_file("settings.yml", "foo: [unclosed\n")
        with pytest.raises(DecodeFailure) as exc_info:
            SourceFile(path).parse()
        assert exc_info.value.path == str(path)

    def test_non_mapping_document_is_decode_failure(self, write_file):
        with pytest.raises(DecodeFailure):
            SourceFile(write_file("settings.yml", "- a\n- b\n")).parse()

    def test_invalid_utf8_is_decode_failure(self, temp_dir):
        path = temp_dir / "settings.yml"
        path.write_bytes(b"foo: \xff\n")
        with pytest.raises(DecodeFailure):
            SourceFile(path).parse()

    def test_secure_value_without_keys(self, write_file):
        """A marked plaintext value parses as-is, flagged secure."""
        source = SourceFile(write_file("settings.yml", "_secure_password: abc123\n"))
        tree = source.parse()
        assert tree['password'] == 'abc123'
        assert tree.leaf('password').secure

    def test_encrypted_value_without_keys(self, write_file, fernet_cipher):
        token = fernet_cipher.encrypt('abc123')
        source = SourceFile(write_file("settings.yml", f"_secure_password: {token}\n"))
        tree = source.parse()
        assert tree['password'] == token
        assert tree.leaf('password').state == LeafState.ENCRYPTED
        assert tree.warnings[0].key_path == ('password',)

    def test_decrypts_with_keys(self, write_file, fernet_cipher, fernet_key):
        token = fernet_cipher.encrypt('abc123')
        source = SourceFile(
            write_file("settings.yml", f"_secure_password: {token}\n"),
            decryption_keys=[fernet_key],
        )
        assert source.parse()['password'] == 'abc123'

    def test_in_file_namespace_sections(self, write_file):
        source = SourceFile(
            write_file("settings.yml", "host: localhost\nproduction:\n  host: db.internal\n"),
            namespaces=['production'],
        )
        assert source.parse().to_dict() == {'host': 'db.internal'}


# ===========================================================================
# Securing Tests
# ===========================================================================

class TestSecure:
    """Tests for SourceFile.secure."""

    def test_designated_plain_value_is_secured(self, write_file, fernet_key):
        content = (
            "# Database settings\n"
            "\n"
            "username: admin\n"
            "password: hello\n"
            "\n"
            "# end\n"
        )
        path = write_file("settings.yml", content)
        source = SourceFile(path, encryption_keys=fernet_key, decryption_keys=[fernet_key])

        report = source.secure(key_paths=[('password',)])

        assert report.secured == [('password',)]
        assert report.written
        lines = path.read_text().splitlines(keepends=True)
        assert lines[0] == "# Database settings\n"
        assert lines[1] == "\n"
        assert lines[2] == "username: admin\n"
        assert lines[3].startswith("_secure_password: gAAAAA")
        assert lines[4:] == ["\n", "# end\n"]
        assert "hello" not in path.read_text()

    def test_pending_values_are_secured_without_designation(self, write_file, fernet_key):
        path = write_file("settings.yml", "name: app\n_secure_password: hello\n")
        source = SourceFile(path, encryption_keys=fernet_key, decryption_keys=[fernet_key])

        report = source.secure()

        assert report.secured == [('password',)]
        assert "hello" not in path.read_text()
        assert path.read_text().startswith("name: app\n_secure_password: gAAAAA")

    def test_pattern_designation(self, write_file, fernet_key):
        path = write_file("settings.yml", "api_token: t0k3n\nApiPassword: pw\nname: app\n")
        source = SourceFile(path, encryption_keys=fernet_key)

        report = source.secure(patterns=['token', 'password'])

        assert sorted(report.secured) == [('ApiPassword',), ('api_token',)]
        assert "name: app\n" in path.read_text()

    def test_secure_twice_is_idempotent(self, write_file, fernet_key):
        path = write_file("settings.yml", "database:\n  _secure_password: hello\n")
        source = SourceFile(path, encryption_keys=fernet_key, decryption_keys=[fernet_key])

        source.secure()
        after_first = path.read_bytes()
        report = source.secure(key_paths=[('database', 'password')])

        assert report.secured == []
        assert not report.written
        assert path.read_bytes() == after_first

    def test_round_trip_preserves_values(self, write_file, fernet_key):
        content = "name: app\ndatabase:\n  _secure_password: hello\n  port: 5432\n"
        path = write_file("settings.yml", content)
        before = SourceFile(path).parse().to_dict()

        SourceFile(path, encryption_keys=fernet_key).secure()

        after = SourceFile(path, decryption_keys=[fernet_key]).parse()
        assert after.to_dict() == before
        assert after.leaf('database.password').state == LeafState.DECRYPTED

    def test_cache_dropped_after_write(self, write_file, fernet_key):
        path = write_file("settings.yml", "_secure_password: hello\n")
        source = SourceFile(path, encryption_keys=fernet_key, decryption_keys=[fernet_key])
        source.parse()
        source.secure()
        assert not source.parsed
        assert source.parse().leaf('password').state == LeafState.DECRYPTED

    def test_missing_encryption_key_raises_before_writing(self, write_file):
        path = write_file("settings.yml", "_secure_password: hello\n")
        with pytest.raises(EncryptionUnavailable):
            SourceFile(path).secure()
        assert path.read_text() == "_secure_password: hello\n"

    def test_nothing_to_secure_needs_no_key(self, write_file):
        path = write_file("settings.yml", "name: app\n")
        report = SourceFile(path).secure()
        assert report.secured == []
        assert not report.written

    def test_non_string_value_is_unmatched(self, write_file, fernet_key):
        path = write_file("settings.yml", "_secure_port: 5432\n")
        report = SourceFile(path, encryption_keys=fernet_key).secure()

        assert report.secured == []
        assert report.unmatched[0].reason == "unsupported value type"
        assert path.read_text() == "_secure_port: 5432\n"

    def test_duplicate_keys_are_left_alone(self, write_file, fernet_key):
        content = "password: hello\npassword: hello\n"
        path = write_file("settings.yml", content)
        report = SourceFile(path, encryption_keys=fernet_key).secure(key_paths=[('password',)])

        assert report.secured == []
        assert report.unmatched[0].key_path == ('password',)
        assert not report.written
        assert path.read_text() == content

    def test_templated_value_is_left_alone(self, write_file, fernet_key):
        content = "_secure_url: ${host}\n"
        path = write_file("settings.yml", content)
        source = SourceFile(path, encryption_keys=fernet_key)
        source.parse({'host': 'db.internal'})

        report = source.secure()

        assert len(report.unmatched) == 1
        assert path.read_text() == content

    def test_file_mode_preserved(self, write_file, fernet_key):
        path = write_file("settings.yml", "_secure_password: hello\n")
        os.chmod(path, 0o640)
        SourceFile(path, encryption_keys=fernet_key).secure()
        assert stat.S_IMODE(path.stat().st_mode) == 0o640

    def test_no_temp_files_left(self, write_file, temp_dir, fernet_key):
        path = write_file("settings.yml", "_secure_password: hello\n")
        SourceFile(path, encryption_keys=fernet_key).secure()
        assert sorted(p.name for p in temp_dir.iterdir()) == ["settings.yml"]

    def test_namespace_section_value(self, write_file, fernet_key):
        content = "production:\n  _secure_password: hello\n"
        path = write_file("settings.yml", content)
        source = SourceFile(
            path,
            namespaces=['production'],
            encryption_keys=fernet_key,
            decryption_keys=[fernet_key],
        )

        report = source.secure()

        assert report.secured == [('production', 'password')]
        assert path.read_text().startswith("production:\n  _secure_password: gAAAAA")
        assert source.parse()['password'] == 'hello'

    def test_value_shadowed_by_namespace_section_is_secured(self, write_file, fernet_key):
        content = "_secure_password: plain1\nproduction:\n  _secure_password: plain2\n"
        path = write_file("settings.yml", content)
        source = SourceFile(
            path,
            namespaces=['production'],
            encryption_keys=fernet_key,
            decryption_keys=[fernet_key],
        )

        report = source.secure()

        assert report.secured == [('password',), ('production', 'password')]
        assert report.unmatched == []
        text = path.read_text()
        assert "plain1" not in text
        assert "plain2" not in text
        assert text.startswith("_secure_password: gAAAAA")
        assert source.parse()['password'] == 'plain2'
        assert source.secure().secured == []

    def test_sealed_box_cipher(self, write_file, sealed_keypair):
        private, public = sealed_keypair
        path = write_file("settings.yml", "_secure_password: hello\n")
        cipher = SealedBoxCipher(encryption_keys=public, decryption_keys=[private])

        SourceFile(path, cipher=cipher).secure()

        assert "hello" not in path.read_text()
        reader = SourceFile(path, cipher=SealedBoxCipher(decryption_keys=[private]))
        assert reader.parse()['password'] == 'hello'

    def test_sealed_box_hex_token_is_secured(self, write_file, sealed_keypair):
        private, public = sealed_keypair
        token = "0123456789abcdef" * 4
        path = write_file("settings.yml", f"_secure_api_token: {token}\n")
        cipher = SealedBoxCipher(encryption_keys=public, decryption_keys=[private])
        source = SourceFile(path, cipher=cipher)

        tree = source.parse()
        assert tree.leaf('api_token').state == LeafState.PENDING
        assert tree.warnings == ()

        report = source.secure()

        assert report.secured == [('api_token',)]
        assert token not in path.read_text()
        assert path.read_text().startswith("_secure_api_token: sealed:")
        assert source.parse().leaf('api_token').value == token

    def test_block_literal_value(self, write_file, fernet_key):
        content = "_secure_key: |\n  line one\n  line two\nname: app\n"
        path = write_file("settings.yml", content)
        SourceFile(path, encryption_keys=fernet_key).secure()

        text = path.read_text()
        assert text.endswith("name: app\n")
        assert "line one" not in text
        decrypted = SourceFile(path, decryption_keys=[fernet_key]).parse()
        assert decrypted['key'] == "line one\nline two\n"

    def test_report_to_dict(self, write_file, fernet_key):
        path = write_file("settings.yml", "_secure_password: hello\n")
        report = SourceFile(path, encryption_keys=fernet_key).secure()
        assert report.to_dict()['secured'] == ['password']


# ===========================================================================
# Signing Tests
# ===========================================================================

class TestSignVerify:
    """Tests for SourceFile.sign and verify."""

    def test_sign_then_verify(self, write_file, signer):
        path = write_file("settings.yml", "foo: 1\n")
        source = SourceFile(path, signer=signer)

        sig_path = source.sign()

        assert sig_path == source.signature_path
        assert sig_path.name == "settings.yml.sig"
        result = source.verify()
        assert result.status == SignatureStatus.VERIFIED
        assert result.signer == "test"

    def test_modified_file_is_mismatch(self, write_file, signer):
        path = write_file("settings.yml", "foo: 1\n")
        source = SourceFile(path, signer=signer)
        source.sign()
        path.write_text("foo: 2\n")
        assert source.verify().status == SignatureStatus.MISMATCH

    def test_missing_signature(self, write_file, signer):
        source = SourceFile(write_file("settings.yml", "foo: 1\n"), signer=signer)
        assert source.verify().status == SignatureStatus.MISSING_SIGNATURE

    def test_no_signer_raises(self, write_file):
        source = SourceFile(write_file("settings.yml", "foo: 1\n"))
        with pytest.raises(SignatureUnavailable):
            source.sign()
        with pytest.raises(SignatureUnavailable):
            source.verify()


class TestIdentity:
    """Tests for equality and representation."""

    def test_equal_by_path(self, temp_dir):
        assert SourceFile(temp_dir / "a.yml") == SourceFile(str(temp_dir / "a.yml"))
        assert len({SourceFile(temp_dir / "a.yml"), SourceFile(temp_dir / "a.yml")}) == 1

    def test_str(self, temp_dir):
        assert str(SourceFile(temp_dir / "a.yml")) == str(temp_dir / "a.yml")
