"""
Access Layer
============

- Password hashing (bcrypt, salted, configurable work factor)
- Bearer tokens (JWT, HS256) carrying {id, role}
- authenticate(token) -> Principal
- authorize(principal, required_role)

Resource-level checks ("is this the seller's own product") belong to the
operation that touches the resource, not to this module.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache

import bcrypt
import jwt

from refurbmart.config import Settings
from refurbmart.errors import ForbiddenError, UnauthorizedError, ValidationError
from refurbmart.models import Role

AUTH_FAILED = "Not authorized, token failed"
TOKEN_EXPIRED = "Not authorized, token expired"


@dataclass(frozen=True)
class Principal:
    id: int
    role: Role


# ============================================================================
# PASSWORDS
# ============================================================================

def _encode_password(password: str) -> bytes:
    encoded = password.encode("utf-8")
    if len(encoded) > 72:
        raise ValidationError("Password must be at most 72 bytes")
    return encoded


def hash_password(password: str, rounds: int) -> str:
    return bcrypt.hashpw(_encode_password(password), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time check through bcrypt; never compares strings directly."""
    try:
        return bcrypt.checkpw(_encode_password(password), password_hash.encode("utf-8"))
    except ValidationError:
        return False


@lru_cache(maxsize=None)
def _dummy_hash(rounds: int) -> str:
    return hash_password("dummy-password-for-timing", rounds)


def burn_password_check(password: str, rounds: int) -> None:
    """
    Spend the same bcrypt work as a real verification.

    Used when the email is unknown, so a failed login costs the same whether
    or not the account exists.
    """
    verify_password(password, _dummy_hash(rounds))


# ============================================================================
# TOKENS
# ============================================================================

def create_access_token(user_id: int, role: Role, settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "id": user_id,
        "role": role.value,
        "iat": now,
        "exp": now + settings.jwt_expires_in,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def authenticate(token: str, settings: Settings) -> Principal:
    if not token:
        raise UnauthorizedError("Not authorized, no token")
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "id", "role"]},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError(TOKEN_EXPIRED)
    except jwt.InvalidTokenError:
        raise UnauthorizedError(AUTH_FAILED)

    user_id = payload.get("id")
    try:
        role = Role(payload.get("role"))
    except ValueError:
        raise UnauthorizedError(AUTH_FAILED)
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        raise UnauthorizedError(AUTH_FAILED)
    return Principal(id=user_id, role=role)


def authorize(principal: Principal, required_role: Role) -> None:
    if not principal.role.satisfies(required_role):
        raise ForbiddenError(f"Not authorized as {required_role.value}")
