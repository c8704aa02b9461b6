"""API dependencies - authentication, authorization and result mapping"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.core.cookies import ACCESS_COOKIE
from app.core.database import get_db
from app.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    BaseAPIException,
    RateLimitExceededError,
    ResourceAlreadyExistsError,
)
from app.core.principal import Principal
from app.core.results import AuthErrorKind, AuthResult
from app.services.auth_service import auth_service

# Bearer is accepted as a fallback to the access cookie
security = HTTPBearer(auto_error=False)


def raise_for_result(result: AuthResult) -> None:
    """
    Translate a failed AuthResult into the matching API exception.

    Raises:
        BaseAPIException: subclass chosen by the error kind
    """
    if result.ok:
        return
    if result.error == AuthErrorKind.CONFLICT:
        raise ResourceAlreadyExistsError(result.message)
    if result.error == AuthErrorKind.TOO_MANY_REQUESTS:
        raise RateLimitExceededError(result.message)
    if result.error == AuthErrorKind.UNAUTHORIZED:
        raise AuthenticationError(result.message, clear_cookies=result.clear_cookies)
    raise BaseAPIException(result.message or "Unexpected authentication failure")


def get_current_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> Principal:
    """
    Get current authenticated principal from the access token

    Args:
        request: Incoming request (access_token cookie)
        credentials: Optional HTTP Bearer credentials
        db: Database session

    Returns:
        Principal for the token's subject

    Raises:
        AuthenticationError: If token is invalid or user not found
    """
    token = request.cookies.get(ACCESS_COOKIE)
    if not token and credentials:
        token = credentials.credentials

    result = auth_service.authenticate(db, token)
    raise_for_result(result)
    return result.value


def get_current_admin(
    principal: Principal = Depends(get_current_principal)
) -> Principal:
    """
    Get current admin principal (authorization check)

    Raises:
        AuthorizationError: If principal is not admin
    """
    if not principal.is_admin:
        raise AuthorizationError("Admin access required")
    return principal
