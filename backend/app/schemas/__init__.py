"""Pydantic schemas for API validation"""

from app.schemas.user import PublicUser
from app.schemas.auth import (
    RegisterRequest,
    LoginRequest,
    VerifyEmailRequest,
    EmailRequest,
    ResetPasswordRequest,
    ChangePasswordRequest,
    MessageResponse,
    SuccessResponse,
    SessionTokens,
    ValidateResponse,
)
from app.schemas.response import ErrorResponse, HealthResponse

__all__ = [
    "PublicUser",
    "RegisterRequest", "LoginRequest", "VerifyEmailRequest", "EmailRequest",
    "ResetPasswordRequest", "ChangePasswordRequest",
    "MessageResponse", "SuccessResponse", "SessionTokens", "ValidateResponse",
    "ErrorResponse", "HealthResponse",
]
