"""
Authentication and Authorization Module

Provides the authentication dependency for FastAPI endpoints. A verified
bearer token is turned into a ``Principal`` exactly once, here, and the
principal's role is derived from the token scopes only.

SECURITY NOTE:
- Development mode auth bypass is ONLY enabled when PYTHON_ENV=development
- Production environments MUST set PYTHON_ENV=production to disable test tokens
- The is_production check provides an additional safety layer
"""

import logging
import os
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import settings
from app.core.security import decode_token, get_token_scopes
from app.modules.access_applications.domain import DacoRole, UpdateAuthor

logger = logging.getLogger(__name__)

# Security scheme for OpenAPI documentation
security = HTTPBearer(
    auto_error=True,
    description="JWT Bearer token for authentication",
)


@dataclass(frozen=True)
class UserPrincipal:
    """
    An authenticated person: a submitter or a reviewer (ADMIN).

    Attributes:
        id: Subject identifier from the token
        email: Email claim (used as the submitter contact)
        role: SUBMITTER or ADMIN, derived from the token scopes
    """

    id: str
    email: str
    role: DacoRole

    @property
    def is_reviewer(self) -> bool:
        return self.role == DacoRole.ADMIN

    def author(self) -> UpdateAuthor:
        return UpdateAuthor(id=self.id, role=self.role)

    def __str__(self) -> str:
        return f"UserPrincipal(id={self.id}, role={self.role.value})"


@dataclass(frozen=True)
class SystemPrincipal:
    """The batch job runner or another trusted service."""

    id: str = "system"

    @property
    def role(self) -> DacoRole:
        return DacoRole.SYSTEM

    @property
    def is_reviewer(self) -> bool:
        return False

    def author(self) -> UpdateAuthor:
        return UpdateAuthor(id=self.id, role=DacoRole.SYSTEM)


Principal = UserPrincipal | SystemPrincipal


def _is_dev_mode_safe() -> bool:
    """
    Check if development mode is safe to enable.

    SECURITY: Development auth bypass requires all of:

    1. settings.is_development must be True (PYTHON_ENV=development)
    2. settings.is_production must be False (double-check)
    3. PYTHON_ENV environment variable must not be "production" or "staging"

    Returns:
        True only if ALL safety checks pass
    """
    env_var = os.getenv("PYTHON_ENV", "").lower()

    is_safe = (
        settings.is_development
        and not settings.is_production
        and env_var != "production"
        and env_var != "staging"
    )

    if is_safe:
        logger.warning(
            "SECURITY: Development auth mode is ENABLED. This MUST NOT be used in production!"
        )

    return is_safe


_DEVELOPMENT_MODE = _is_dev_mode_safe()

# Development principals for local testing (only used when PYTHON_ENV=development)
_DEV_PRINCIPALS: dict[str, Principal] = {
    "dev-admin": UserPrincipal(id="dev-admin", email="reviewer@access.dev", role=DacoRole.ADMIN),
    "dev-submitter": UserPrincipal(
        id="dev-submitter", email="submitter@access.dev", role=DacoRole.SUBMITTER
    ),
    "dev-system": SystemPrincipal(id="dev-system"),
}


def principal_from_claims(claims: dict) -> Principal:
    """
    Build a principal from verified token claims.

    The system scope wins over the reviewer scope, which wins over the
    submitter scope. A token with none of them is rejected.

    Raises:
        HTTPException 401: Missing subject claim
        HTTPException 403: No recognised scope
    """
    subject = claims.get("sub")
    if not subject:
        logger.warning("Token is missing the 'sub' claim")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "INVALID_TOKEN_CLAIMS",
                "message": "Token contains invalid or missing claims.",
            },
            headers={"WWW-Authenticate": "Bearer"},
        )

    scopes = get_token_scopes(claims)
    if settings.system_scope in scopes:
        return SystemPrincipal(id=str(subject))
    email = claims.get("email", "")
    if settings.admin_scope in scopes:
        return UserPrincipal(id=str(subject), email=email, role=DacoRole.ADMIN)
    if settings.submitter_scope in scopes:
        return UserPrincipal(id=str(subject), email=email, role=DacoRole.SUBMITTER)

    logger.warning(f"Access denied: subject {subject} has no access scope")
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "error": "FORBIDDEN",
            "message": "The token does not grant access to applications.",
        },
    )


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    """
    FastAPI dependency that validates the bearer token and returns the caller.

    Usage:
        @router.get("/applications")
        async def list_applications(
            principal: Principal = Depends(get_current_principal)
        ):
            ...

    Raises:
        HTTPException 401: If the token is invalid or expired
        HTTPException 403: If the token carries no access scope
    """
    token = credentials.credentials

    if _DEVELOPMENT_MODE and token in _DEV_PRINCIPALS:
        logger.debug(f"Development mode: Using test token {token}")
        return _DEV_PRINCIPALS[token]

    claims = decode_token(token)
    if claims is None:
        logger.warning("Invalid or expired JWT token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "INVALID_TOKEN",
                "message": "Invalid or expired authentication token.",
            },
            headers={"WWW-Authenticate": "Bearer"},
        )

    principal = principal_from_claims(claims)
    logger.debug(f"Authenticated {principal}")
    return principal


async def get_current_admin(
    principal: Principal = Depends(get_current_principal),
) -> UserPrincipal:
    """
    Dependency for reviewer-only endpoints.

    Raises:
        HTTPException 403: If the caller is not a reviewer
    """
    if not isinstance(principal, UserPrincipal) or not principal.is_reviewer:
        logger.warning(f"Access denied: {principal} is not a reviewer")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "ADMIN_ACCESS_REQUIRED",
                "message": "Reviewer access is required for this endpoint.",
            },
        )
    return principal


__all__ = [
    "Principal",
    "SystemPrincipal",
    "UserPrincipal",
    "get_current_admin",
    "get_current_principal",
    "principal_from_claims",
]
