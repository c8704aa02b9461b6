"""Authentication request/response schemas"""

from typing import Annotated

from pydantic import AfterValidator, BaseModel, Field

from app.schemas.user import PublicUser

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return value


Password = Annotated[str, Field(min_length=1), AfterValidator(_check_password_bytes)]
NewPassword = Annotated[str, Field(min_length=8), AfterValidator(_check_password_bytes)]


class RegisterRequest(BaseModel):
    """Registration payload (user or admin)"""
    email: str = Field(..., max_length=320, pattern=EMAIL_PATTERN)
    password: NewPassword


class LoginRequest(BaseModel):
    """User login schema"""
    email: str = Field(..., max_length=320)
    password: Password


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=256)


class EmailRequest(BaseModel):
    """Body of resend-verification and forgot-password"""
    email: str = Field(..., max_length=320, pattern=EMAIL_PATTERN)


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=256)
    new_password: NewPassword


class ChangePasswordRequest(BaseModel):
    current_password: Password
    new_password: NewPassword


class MessageResponse(BaseModel):
    message: str


class SuccessResponse(BaseModel):
    success: bool = True


class SessionTokens(BaseModel):
    """Issued session: both JWTs plus the public user"""
    access_token: str
    refresh_token: str
    user: PublicUser


class ValidateResponse(BaseModel):
    valid: bool = True
    user: PublicUser
