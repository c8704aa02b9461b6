"""User service - credential store for the auth core"""

from sqlalchemy.orm import Session
from typing import Optional
from app.models.user import User, UserRole
from app.core.security import utcnow
import logging

logger = logging.getLogger(__name__)


class UserService:
    """Persistence access for user identities and password hashes"""

    @staticmethod
    def find_by_email(db: Session, email: str) -> Optional[User]:
        """Get user by exact email"""
        return db.query(User).filter(User.email == email).first()

    @staticmethod
    def find_by_id(db: Session, user_id: str) -> Optional[User]:
        """Get user by ID"""
        if not user_id:
            return None
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def create(
        db: Session,
        email: str,
        password_hash: str,
        role: UserRole = UserRole.USER,
        *,
        is_email_verified: bool = False,
    ) -> User:
        """
        Create new user

        Args:
            db: Database session
            email: Unique email as stored
            password_hash: bcrypt hash
            role: Role to assign
            is_email_verified: Skip the verification gate (admin bootstrap)

        Returns:
            Created user
        """
        user = User(
            email=email,
            password_hash=password_hash,
            role=role,
            is_email_verified=is_email_verified,
        )
        db.add(user)
        db.commit()
        db.refresh(user)

        logger.info(f"Created user: {user.id} (role: {user.role.value})")
        return user

    @staticmethod
    def update_password(db: Session, user_id: str, password_hash: str) -> int:
        """Stage a password hash change; the caller commits."""
        return (
            db.query(User)
            .filter(User.id == user_id)
            .update(
                {User.password_hash: password_hash, User.updated_at: utcnow()},
                synchronize_session=False,
            )
        )

    @staticmethod
    def set_email_verified(db: Session, user_id: str) -> int:
        """Stage the verified flag; the caller commits."""
        return (
            db.query(User)
            .filter(User.id == user_id)
            .update(
                {User.is_email_verified: True, User.updated_at: utcnow()},
                synchronize_session=False,
            )
        )


# Singleton instance
user_service = UserService()
