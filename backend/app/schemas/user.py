"""User schemas"""

from pydantic import BaseModel, ConfigDict

from app.models.user import UserRole


class PublicUser(BaseModel):
    """User fields safe to return to clients"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    role: UserRole
