"""
Access control gate.

Bearer tokens are HS256 JSON Web Tokens carrying the user's id, username,
email and role. They expire after ``Config.TOKEN_TTL_HOURS``; there is no
refresh mechanism, so an expired token means logging in again.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header, Request
from passlib.hash import bcrypt

from .config import Config
from .errors import AuthenticationError, ForbiddenError, InvalidTokenError, TokenExpiredError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    id: int
    username: str
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


# =============================================================================
# Passwords
# =============================================================================

def hash_password(password: str, rounds: int = 10) -> str:
    return bcrypt.using(rounds=rounds).hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.verify(password, password_hash)
    except ValueError:
        # Stored value is not a bcrypt hash
        logger.warning("Password check against a malformed hash")
        return False


# =============================================================================
# Tokens
# =============================================================================

def create_access_token(user, config: Config) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "role": user.role,
        "iat": now,
        "exp": now + timedelta(hours=config.TOKEN_TTL_HOURS),
    }
    return jwt.encode(claims, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def authenticate(token: str, config: Config) -> Principal:
    try:
        claims = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenExpiredError("Token expired", "Please login again")
    except jwt.InvalidTokenError:
        raise InvalidTokenError("Invalid token", "Token verification failed")

    try:
        return Principal(
            id=int(claims["id"]),
            username=claims["username"],
            email=claims["email"],
            role=claims["role"],
        )
    except (KeyError, TypeError, ValueError):
        raise InvalidTokenError("Invalid token", "Token verification failed")


def require_admin(principal: Principal) -> None:
    if not principal.is_admin:
        raise ForbiddenError("Admin access required", "Insufficient permissions")


def require_owner_or_admin(principal: Principal, resource_user_id: int) -> None:
    if not (principal.is_admin or principal.id == resource_user_id):
        raise ForbiddenError("Access denied", "You can only access your own data")


# =============================================================================
# FastAPI dependencies
# =============================================================================

def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def get_current_user(request: Request, authorization: Optional[str] = Header(None)) -> Principal:
    token = _bearer_token(authorization)
    if not token:
        raise AuthenticationError("Access token required", "No token provided")
    return authenticate(token, request.app.state.config)


def get_admin_user(principal: Principal = Depends(get_current_user)) -> Principal:
    require_admin(principal)
    return principal
