"""Authenticated caller identity, resolved once per request."""

from dataclasses import dataclass

from app.models.user import UserRole


@dataclass(frozen=True)
class Principal:
    user_id: str
    email: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
