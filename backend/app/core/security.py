"""Security utilities - password hashing, digests, opaque tokens"""

from datetime import datetime, timezone
from functools import lru_cache
import hashlib
import hmac
import secrets

import bcrypt
from uuid6 import uuid7

from app.config import settings


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every datetime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    """Time-ordered unique identifier (UUIDv7) for primary keys and jtis."""
    return str(uuid7())


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt

    Args:
        password: Plain text password

    Returns:
        str: Hashed password
    """
    return bcrypt.hashpw(
        password.encode('utf-8'),
        bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    ).decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password

    Returns:
        bool: True if password matches
    """
    try:
        return bcrypt.checkpw(
            plain_password.encode('utf-8'),
            hashed_password.encode('utf-8')
        )
    except ValueError:
        # Malformed stored hash
        return False


@lru_cache()
def _dummy_hash() -> str:
    return get_password_hash(secrets.token_urlsafe(16))


def burn_password_check(plain_password: str) -> None:
    """Spend one bcrypt verification so unknown accounts cost the same as known ones."""
    verify_password(plain_password, _dummy_hash())


def sha256_hex(value: str) -> str:
    """Lookup-key digest for secrets that are never stored in cleartext."""
    return hashlib.sha256(value.encode('utf-8')).hexdigest()


def constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode('utf-8'), b.encode('utf-8'))


def generate_opaque_token() -> str:
    """Two independent 128-bit random values joined by a dot."""
    return f"{secrets.token_hex(16)}.{secrets.token_hex(16)}"
