"""Security-related persistence models."""

from sqlalchemy import Column, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.security import new_id, utcnow


class RefreshToken(Base):
    """Refresh token record for rotation/revocation."""

    __tablename__ = "refresh_tokens"

    id = Column(String(128), primary_key=True, default=new_id)
    jti = Column(String(128), unique=True, nullable=False, index=True)
    user_id = Column(String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_hash = Column(String(64), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    replaced_by_id = Column(String(128), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="refresh_tokens")

    __table_args__ = (
        Index("idx_refresh_tokens_user", "user_id"),
    )

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None


class _OneTimeTokenColumns:
    """Columns shared by single-use capability tokens."""

    id = Column(String(128), primary_key=True, default=new_id)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class EmailVerificationToken(_OneTimeTokenColumns, Base):
    """Email verification capability, stored by hash."""

    __tablename__ = "email_verification_tokens"

    user_id = Column(String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    user = relationship("User", back_populates="email_verification_tokens")

    __table_args__ = (
        Index("idx_email_verification_tokens_user_created", "user_id", "created_at"),
    )


class PasswordResetToken(_OneTimeTokenColumns, Base):
    """Password reset capability, stored by hash."""

    __tablename__ = "password_reset_tokens"

    user_id = Column(String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    user = relationship("User", back_populates="password_reset_tokens")

    __table_args__ = (
        Index("idx_password_reset_tokens_user_created", "user_id", "created_at"),
    )
