"""Tests for config._read_secret() and Settings.encryption_key."""

import os
from unittest.mock import patch

import pytest

from config import Settings, _parse_key, _read_secret

VALID_KEY = "ab" * 32


class TestReadSecret:
    """_read_secret() reads from env var or file, in priority order."""

    def test_direct_env_var(self):
        with patch.dict(os.environ, {"MY_SECRET": "direct-value"}, clear=False):
            assert _read_secret("MY_SECRET") == "direct-value"

    def test_file_env_var(self, tmp_path):
        secret_file = tmp_path / "secret.txt"
        secret_file.write_text("file-value\n")
        env = {"MY_SECRET_FILE": str(secret_file)}
        with patch.dict(os.environ, env, clear=False):
            # Remove direct var if present
            os.environ.pop("MY_SECRET", None)
            assert _read_secret("MY_SECRET") == "file-value"

    def test_direct_takes_priority_over_file(self, tmp_path):
        secret_file = tmp_path / "secret.txt"
        secret_file.write_text("file-value")
        env = {"PRIO_SECRET": "direct-value", "PRIO_SECRET_FILE": str(secret_file)}
        with patch.dict(os.environ, env, clear=False):
            assert _read_secret("PRIO_SECRET") == "direct-value"

    def test_raises_when_neither_set(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("MISSING_SECRET", None)
            os.environ.pop("MISSING_SECRET_FILE", None)
            with pytest.raises(ValueError, match="Secret not configured"):
                _read_secret("MISSING_SECRET")

    def test_file_not_found(self, tmp_path):
        env = {"GONE_SECRET_FILE": str(tmp_path / "nonexistent.txt")}
        with patch.dict(os.environ, env, clear=False):
            os.environ.pop("GONE_SECRET", None)
            with pytest.raises(ValueError, match="Secret not configured"):
                _read_secret("GONE_SECRET")


class TestParseKey:
    def test_valid_hex(self):
        assert _parse_key(VALID_KEY) == bytes.fromhex(VALID_KEY)

    def test_wrong_length(self):
        with pytest.raises(ValueError, match="32 bytes"):
            _parse_key("ab" * 16)

    def test_not_hex(self):
        with pytest.raises(ValueError, match="hex"):
            _parse_key("zz" * 32)


class TestSettingsEncryptionKey:
    def test_from_env(self):
        with patch.dict(os.environ, {"ENCRYPTION_KEY": VALID_KEY}, clear=False):
            assert Settings().encryption_key == bytes.fromhex(VALID_KEY)

    def test_from_docker_secret_file(self, tmp_path):
        key_file = tmp_path / "key.txt"
        key_file.write_text(VALID_KEY + "\n")
        with patch.dict(os.environ, {"ENCRYPTION_KEY_FILE": str(key_file)}, clear=False):
            os.environ.pop("ENCRYPTION_KEY", None)
            assert Settings().encryption_key == bytes.fromhex(VALID_KEY)

    def test_invalid_length_fails(self):
        with patch.dict(os.environ, {"ENCRYPTION_KEY": "ab" * 10}, clear=False):
            with pytest.raises(ValueError, match="32 bytes"):
                Settings().encryption_key

    def test_generated_when_unset(self, caplog):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("ENCRYPTION_KEY", None)
            os.environ.pop("ENCRYPTION_KEY_FILE", None)
            s = Settings()
            key = s.encryption_key
            assert len(key) == 32
            assert s.encryption_key is key
        assert "generating an ephemeral key" in caplog.text


class TestSettingsDefaults:
    def test_defaults(self):
        keys = ["DATABASE_URL", "PORT", "MAX_UPLOAD_BYTES", "CLEANUP_INTERVAL_SECONDS",
                "CORS_ALLOW_ORIGINS", "PUBLIC_BASE_URL"]
        with patch.dict(os.environ, {}, clear=False):
            for key in keys:
                os.environ.pop(key, None)
            s = Settings()
        assert s.database_url == "sqlite+aiosqlite:///./data/secureprint.db"
        assert s.port == 4000
        assert s.max_upload_bytes == 20 * 1024 * 1024
        assert s.cleanup_interval_seconds == 60
        assert s.cors_allow_origins == ["*"]
        assert s.public_base_url is None

    def test_cors_origins_list(self):
        env = {"CORS_ALLOW_ORIGINS": "https://a.example.com, https://b.example.com"}
        with patch.dict(os.environ, env, clear=False):
            assert Settings().cors_allow_origins == ["https://a.example.com", "https://b.example.com"]


class TestSuiteEncryptionKey:
    def test_configured_key_is_32_bytes(self):
        raw = os.environ["ENCRYPTION_KEY"]
        assert len(bytes.fromhex(raw)) == 32
        assert Settings().encryption_key == bytes.fromhex(raw)
