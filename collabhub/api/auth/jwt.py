"""
Access Tokens

A token is the authenticated actor context: subject, role names and
effective permissions as of issue time. Permission checks trust the
permissions it carries for positive answers only and fall back to the
database otherwise.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional
from uuid import UUID

import jwt
from jwt.exceptions import InvalidTokenError

from collabhub.api.config import settings

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ["sub", "iat", "exp", "iss", "type"]


def create_access_token(
    user_id: UUID,
    email: str,
    roles: Iterable[str] = (),
    permissions: Iterable[str] = (),
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a signed access token.

    Args:
        user_id: Actor id, stored as ``sub``
        email: Actor email
        roles: Active role names
        permissions: Effective permission identifiers
        expires_delta: Lifetime override; defaults to ACCESS_TOKEN_EXPIRE_MINUTES
    """
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    claims = {
        "sub": str(user_id),
        "email": email,
        "roles": sorted(set(roles)),
        "permissions": sorted(set(permissions)),
        "iss": settings.JWT_ISSUER,
        "iat": issued_at,
        "exp": issued_at + lifetime,
        "type": "access",
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str, token_type: str = "access") -> Optional[dict]:
    """
    Decode a token issued by this service.

    Returns:
        The claims, or None for a bad signature, wrong issuer, missing
        claim, expiry or a token of another type
    """
    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            issuer=settings.JWT_ISSUER,
            leeway=settings.JWT_LEEWAY_SEC,
            options={"require": REQUIRED_CLAIMS},
        )
    except InvalidTokenError as e:
        logger.debug(f"Rejected token: {e}")
        return None

    if claims["type"] != token_type:
        logger.debug(f"Rejected token of type {claims['type']}, expected {token_type}")
        return None
    return claims


def get_token_expiry_seconds() -> int:
    return settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
