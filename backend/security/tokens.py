"""Random identifiers and secrets for jobs and print tokens."""

import secrets
import string

# URL-safe alphabet, same characters as nanoid's default.
_ALPHABET = string.ascii_letters + string.digits + "_-"

JOB_ID_LENGTH = 21
RELEASE_TOKEN_LENGTH = 32
PRINT_TOKEN_BYTES = 32


def random_id(size: int = JOB_ID_LENGTH) -> str:
    """Generate an opaque URL-safe identifier."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(size))


def release_token() -> str:
    """Long-lived token embedded in the release link."""
    return random_id(RELEASE_TOKEN_LENGTH)


def print_token() -> str:
    """Short-lived print token: 32 random bytes, hex-encoded."""
    return secrets.token_hex(PRINT_TOKEN_BYTES)


def tokens_match(presented: str | None, expected: str | None) -> bool:
    """Constant-time comparison that treats a missing value as a mismatch."""
    if not presented or not expected:
        return False
    return secrets.compare_digest(presented.encode(), expected.encode())
