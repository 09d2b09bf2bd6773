"""
Application configuration with Docker secrets support.

Secrets are read using the _read_secret() pattern:
  1. Direct env var (e.g., ENCRYPTION_KEY)
  2. File-based env var (e.g., ENCRYPTION_KEY_FILE → reads file path)
  3. Raises ValueError if neither is set
"""

import os
import logging
import secrets

logger = logging.getLogger(__name__)

KEY_LENGTH = 32  # AES-256


def _read_secret(env_var: str, file_env_var: str | None = None) -> str:
    """Read a secret from env var or Docker secrets file.

    Args:
        env_var: Direct environment variable name (e.g., ENCRYPTION_KEY)
        file_env_var: File path env var name (e.g., ENCRYPTION_KEY_FILE).
                      If None, defaults to env_var + '_FILE'.

    Returns:
        The secret value.

    Raises:
        ValueError: If neither source provides a value.
    """
    if file_env_var is None:
        file_env_var = f"{env_var}_FILE"

    # Priority 1: Direct env var
    value = os.environ.get(env_var)
    if value:
        return value

    # Priority 2: File-based (Docker secrets pattern)
    file_path = os.environ.get(file_env_var)
    if file_path:
        try:
            with open(file_path, "r") as f:
                value = f.read().strip()
            if value:
                return value
        except FileNotFoundError:
            logger.error(f"Secret file not found: {file_path} (from {file_env_var})")
        except PermissionError:
            logger.error(f"Permission denied reading: {file_path} (from {file_env_var})")

    raise ValueError(
        f"Secret not configured. Set {env_var} env var or {file_env_var} pointing to a file."
    )


def _parse_key(raw: str) -> bytes:
    """Hex-decode an encryption key and check it is 32 bytes."""
    try:
        key = bytes.fromhex(raw.strip())
    except ValueError:
        raise ValueError("ENCRYPTION_KEY must be hex-encoded")
    if len(key) != KEY_LENGTH:
        raise ValueError(f"Encryption key must be {KEY_LENGTH} bytes long")
    return key


class Settings:
    """Application settings loaded from environment and Docker secrets."""

    def __init__(self):
        # Database
        self.database_url = os.environ.get(
            "DATABASE_URL", "sqlite+aiosqlite:///./data/secureprint.db"
        )

        # Secrets (loaded lazily on first access via properties)
        self._encryption_key: bytes | None = None

        # Public config
        self.public_base_url = os.environ.get("PUBLIC_BASE_URL") or None
        self.port = int(os.environ.get("PORT", "4000"))
        self.upload_dir = os.environ.get("UPLOAD_DIR", "./uploads")
        self.max_upload_bytes = int(os.environ.get("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))
        self.cors_allow_origins = [
            o.strip() for o in os.environ.get("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()
        ]

        # Release lifecycle
        self.cleanup_interval_seconds = float(os.environ.get("CLEANUP_INTERVAL_SECONDS", "60"))
        self.default_expiration_minutes = int(os.environ.get("DEFAULT_EXPIRATION_MINUTES", "15"))
        self.link_fallback_hours = int(os.environ.get("LINK_FALLBACK_HOURS", "24"))

    @property
    def encryption_key(self) -> bytes:
        if self._encryption_key is None:
            try:
                self._encryption_key = _parse_key(_read_secret("ENCRYPTION_KEY"))
            except ValueError as e:
                if "not configured" not in str(e):
                    raise
                logger.warning(
                    "ENCRYPTION_KEY not set, generating an ephemeral key; "
                    "stored documents will be unreadable after restart"
                )
                self._encryption_key = secrets.token_bytes(KEY_LENGTH)
        return self._encryption_key


settings = Settings()
