"""Password hashing and verification."""

import bcrypt
import structlog

logger = structlog.get_logger(__name__)

# bcrypt cost factor for new hashes
BCRYPT_ROUNDS = 12

# Well-formed cost-12 hash that matches no password. Verified against when a
# login names an unknown account so that path costs the same as a wrong password.
DUMMY_PASSWORD_HASH = "$2b$12$HWaOmFqmVZEbcIYoO.4LsO1YnNBIyJE3w3Xuh2EXJ3IQlsaDmZEhC"


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password to hash
        rounds: bcrypt cost factor (default: 12)

    Returns:
        Bcrypt hashed password string

    Example:
        >>> hashed = hash_password("mysecretpassword")
        >>> hashed.startswith("$2b$12$")
        True
    """
    password_bytes = password.encode("utf-8")
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password_bytes, salt)
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against a bcrypt hash.

    Fails closed: a malformed or empty hash yields False instead of raising.

    Args:
        plain_password: Plain text password to verify
        hashed_password: Bcrypt hashed password to check against

    Returns:
        True if password matches, False otherwise
    """
    try:
        password_bytes = plain_password.encode("utf-8")
        hashed_bytes = hashed_password.encode("utf-8")
        return bcrypt.checkpw(password_bytes, hashed_bytes)
    except (ValueError, TypeError, AttributeError) as e:
        logger.warning("password_verification_error", error=str(e))
        return False


def burn_verification(plain_password: str) -> None:
    """Spend one verification's worth of time against the dummy hash."""
    verify_password(plain_password, DUMMY_PASSWORD_HASH)
