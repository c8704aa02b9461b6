"""Database models"""

from app.models.user import User, UserRole
from app.models.security import RefreshToken, EmailVerificationToken, PasswordResetToken

__all__ = ["User", "UserRole", "RefreshToken", "EmailVerificationToken", "PasswordResetToken"]
