"""
Token Security Utilities

JWT verification for bearer credentials issued by the identity provider.
"""

import logging
from typing import Any

import jwt

from app.core.config import settings

logger = logging.getLogger(__name__)


def decode_token(token: str) -> dict[str, Any] | None:
    """
    Decode and verify a JWT.

    Verifies the signature, the algorithm and the expiry (and the audience when
    one is configured).

    Args:
        token: Encoded JWT string

    Returns:
        The token claims, or None if the token is invalid or expired
    """
    options = {"verify_aud": settings.jwt_audience is not None}
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired token")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected invalid token: {e}")
        return None


def get_token_scopes(claims: dict[str, Any]) -> set[str]:
    """
    Extract the permission scopes from token claims.

    Scopes may be carried as a list under ``scope`` or as a space separated
    string under ``scp``.
    """
    scopes = claims.get("scope") or claims.get("scp") or []
    if isinstance(scopes, str):
        scopes = scopes.split()
    return {str(s) for s in scopes}
