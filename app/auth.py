"""
Bearer Token Authentication.

Password hashing (argon2), token issuing/verification (JWT) and the FastAPI
dependency that resolves the calling user on protected endpoints.
"""

import logging
import time
from typing import Optional

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from fastapi import Header, HTTPException, status

from app.config import get_settings

logger = logging.getLogger(__name__)

_password_hasher = PasswordHasher()


def hash_password(password: str) -> str:
    return _password_hasher.hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    """Check a password against its stored hash."""
    try:
        return _password_hasher.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def issue_token(owner_id: str) -> str:
    """
    Issue a signed bearer token for a user.

    Tokens are valid for `token_validity_days` (7 days).
    """
    settings = get_settings()
    now = int(time.time())
    payload = {
        "sub": owner_id,
        "iat": now,
        "exp": now + settings.token_validity_days * 86400,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> str:
    """
    Verify a bearer token.

    Returns:
        The user id the token was issued for

    Raises:
        AuthError: If the token is malformed, has a bad signature or has expired
    """
    settings = get_settings()
    try:
        data = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token")

    owner_id = data.get("sub")
    if not owner_id:
        raise AuthError("Invalid token")
    return owner_id


async def get_current_user_id(
    authorization: Optional[str] = Header(None),
) -> str:
    """
    FastAPI dependency resolving the caller from an `Authorization: Bearer` header.

    Raises:
        HTTPException: 401 if the token is missing or invalid
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        logger.warning("Request missing bearer token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = authorization.split(" ", 1)[1].strip()
    try:
        return verify_token(token)
    except AuthError as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthError(Exception):
    """Exception raised when credentials or tokens are rejected."""
    pass
