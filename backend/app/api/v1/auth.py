"""Authentication routes"""

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_admin, get_current_principal, raise_for_result
from app.config import settings
from app.core.cookies import ACCESS_COOKIE, REFRESH_COOKIE, cookie_policy
from app.core.database import get_db
from app.core.exceptions import RateLimitExceededError
from app.core.principal import Principal
from app.core.results import AuthResult
from app.schemas.auth import (
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    SessionTokens,
    SuccessResponse,
    ValidateResponse,
    VerifyEmailRequest,
)
from app.schemas.response import ErrorResponse
from app.schemas.user import PublicUser
from app.services.auth_service import auth_service
from app.services.rate_limiter import rate_limiter

router = APIRouter(responses={401: {"model": ErrorResponse}})


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _unwrap(result: AuthResult, response: Response):
    """Apply cookie side effects of a result and return its value or raise."""
    raise_for_result(result)
    if result.clear_cookies:
        cookie_policy.clear_auth_cookies(response)
    return result.value


@router.post("/register", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    response: Response,
    db: Session = Depends(get_db)
):
    """
    Register a new user; a verification email is sent and no session is issued
    """
    return _unwrap(auth_service.register(db, body.email, body.password), response)


@router.post("/register/admin", response_model=SessionTokens, status_code=status.HTTP_201_CREATED)
def register_admin(
    body: RegisterRequest,
    response: Response,
    admin: Principal = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """
    Register an admin user (admin only) and return its tokens
    """
    return _unwrap(auth_service.register_admin(db, admin, body.email, body.password), response)


@router.post("/login", response_model=SessionTokens, status_code=status.HTTP_200_OK)
def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db)
):
    """
    Login endpoint - authenticate user, return JWTs and set session cookies

    Args:
        body: Email and password
        db: Database session

    Returns:
        Tokens and public user info
    """
    client_ip = _client_ip(request)
    email_key = body.email.strip().lower()
    per_min_key = f"login:min:{client_ip}:{email_key}"
    per_hour_key = f"login:hour:{client_ip}:{email_key}"
    if not rate_limiter.allow(per_min_key, settings.LOGIN_RATE_LIMIT_PER_MINUTE, 60):
        raise RateLimitExceededError("Too many login attempts. Please wait a minute.")
    if not rate_limiter.allow(per_hour_key, settings.LOGIN_RATE_LIMIT_PER_HOUR, 3600):
        raise RateLimitExceededError("Too many login attempts. Please try again later.")

    tokens: SessionTokens = _unwrap(auth_service.login(db, body.email, body.password), response)
    cookie_policy.set_auth_cookies(response, tokens.access_token, tokens.refresh_token)
    return tokens


@router.post("/logout", response_model=SuccessResponse)
def logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db)
):
    """
    Logout endpoint - revoke the refresh tokens of the cookie's owner and clear cookies
    """
    token = request.cookies.get(REFRESH_COOKIE)
    return _unwrap(auth_service.logout(db, token), response)


@router.get("/validate", response_model=ValidateResponse)
def validate(
    request: Request,
    response: Response,
    db: Session = Depends(get_db)
):
    """
    Validate the access cookie and return the user it belongs to
    """
    token = request.cookies.get(ACCESS_COOKIE)
    return _unwrap(auth_service.validate(db, token), response)


@router.post("/refresh", response_model=SessionTokens)
def refresh(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    """
    Rotate the refresh cookie and issue a new access token
    """
    client_ip = _client_ip(request)
    per_min_key = f"refresh:min:{client_ip}"
    per_hour_key = f"refresh:hour:{client_ip}"
    if not rate_limiter.allow(per_min_key, settings.REFRESH_RATE_LIMIT_PER_MINUTE, 60):
        raise RateLimitExceededError("Too many refresh attempts. Slow down.")
    if not rate_limiter.allow(per_hour_key, settings.REFRESH_RATE_LIMIT_PER_HOUR, 3600):
        raise RateLimitExceededError("Too many refresh attempts. Try later.")

    token = request.cookies.get(REFRESH_COOKIE)
    tokens: SessionTokens = _unwrap(auth_service.refresh(db, token), response)
    cookie_policy.set_auth_cookies(response, tokens.access_token, tokens.refresh_token)
    return tokens


@router.post("/verify-email", response_model=SuccessResponse)
def verify_email(body: VerifyEmailRequest, response: Response, db: Session = Depends(get_db)):
    """Consume an email verification token"""
    return _unwrap(auth_service.verify_email(db, body.token), response)


@router.post("/resend-verification", response_model=SuccessResponse)
def resend_verification(body: EmailRequest, response: Response, db: Session = Depends(get_db)):
    """Send a new verification email; reports success for unknown addresses"""
    return _unwrap(auth_service.resend_verification(db, body.email), response)


@router.post("/forgot-password", response_model=SuccessResponse)
def forgot_password(body: EmailRequest, response: Response, db: Session = Depends(get_db)):
    """Send a password reset email; reports success for unknown addresses"""
    return _unwrap(auth_service.forgot_password(db, body.email), response)


@router.post("/reset-password", response_model=SuccessResponse)
def reset_password(body: ResetPasswordRequest, response: Response, db: Session = Depends(get_db)):
    """Set a new password with a reset token; all sessions are revoked"""
    return _unwrap(auth_service.reset_password(db, body.token, body.new_password), response)


@router.post("/change-password", response_model=SuccessResponse)
def change_password(
    body: ChangePasswordRequest,
    response: Response,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Change the caller's password; all sessions are revoked"""
    result = auth_service.change_password(db, principal, body.current_password, body.new_password)
    return _unwrap(result, response)


@router.get("/me", response_model=PublicUser)
def get_current_user_info(
    principal: Principal = Depends(get_current_principal)
):
    """
    Get current user information
    """
    return PublicUser(id=principal.user_id, email=principal.email, role=principal.role)
