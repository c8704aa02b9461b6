"""Outcome types returned by the auth core to the transport layer."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class AuthErrorKind(str, enum.Enum):
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    TOO_MANY_REQUESTS = "too_many_requests"


@dataclass(frozen=True)
class AuthResult(Generic[T]):
    """
    Either a value or an error kind, never both.

    ``clear_cookies`` asks the boundary layer to drop both session cookies,
    on success or failure alike (logout succeeds and still clears them).
    """

    value: Optional[T] = None
    error: Optional[AuthErrorKind] = None
    message: str = ""
    clear_cookies: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any, *, clear_cookies: bool = False) -> "AuthResult":
        return cls(value=value, clear_cookies=clear_cookies)

    @classmethod
    def conflict(cls, message: str) -> "AuthResult":
        return cls(error=AuthErrorKind.CONFLICT, message=message)

    @classmethod
    def unauthorized(cls, message: str, *, clear_cookies: bool = False) -> "AuthResult":
        return cls(error=AuthErrorKind.UNAUTHORIZED, message=message, clear_cookies=clear_cookies)

    @classmethod
    def too_many_requests(cls, message: str) -> "AuthResult":
        return cls(error=AuthErrorKind.TOO_MANY_REQUESTS, message=message)
