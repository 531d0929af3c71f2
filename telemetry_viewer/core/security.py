"""Password hashing and session token primitives."""

import hashlib
import secrets

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from telemetry_viewer.core.config import settings

SESSION_TOKEN_BYTES = 32
CSRF_TOKEN_BYTES = 32


# ============================================================================
# Password Hashing (Argon2id)
# ============================================================================

_password_hasher: PasswordHasher | None = None
_dummy_hash: str | None = None


def get_password_hasher() -> PasswordHasher:
    """Hasher built from the configured cost parameters (created on first use)."""
    global _password_hasher
    if _password_hasher is None:
        _password_hasher = PasswordHasher(
            time_cost=settings.PASSWORD_HASH_TIME_COST,
            memory_cost=settings.PASSWORD_HASH_MEMORY_COST,
            parallelism=settings.PASSWORD_HASH_PARALLELISM,
        )
    return _password_hasher


def hash_password(password: str) -> str:
    return get_password_hasher().hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    """Constant-time verification; malformed hashes count as a mismatch."""
    try:
        return get_password_hasher().verify(password_hash, password)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def password_needs_rehash(password_hash: str) -> bool:
    try:
        return get_password_hasher().check_needs_rehash(password_hash)
    except InvalidHashError:
        return True


def burn_password_check(password: str) -> None:
    """Spend the same work as a real verify when the username is unknown."""
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = hash_password(secrets.token_urlsafe(16))
    verify_password(_dummy_hash, password)


# ============================================================================
# Session + CSRF Tokens
# ============================================================================

def generate_session_token() -> str:
    return secrets.token_urlsafe(SESSION_TOKEN_BYTES)


def generate_csrf_token() -> str:
    return secrets.token_urlsafe(CSRF_TOKEN_BYTES)


def hash_token(token: str) -> str:
    """SHA-256 of a session token for storage and lookup."""
    return hashlib.sha256(token.encode()).hexdigest()


def tokens_match(expected: str | None, presented: str | None) -> bool:
    if not expected or not presented:
        return False
    return secrets.compare_digest(expected.encode(), presented.encode())
