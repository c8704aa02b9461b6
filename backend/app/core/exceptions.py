"""Custom exception classes for the application"""

from typing import Optional, Dict, Any


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        clear_cookies: bool = False,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.clear_cookies = clear_cookies
        super().__init__(self.message)


# Authentication Errors
class AuthenticationError(BaseAPIException):
    """Base authentication error"""
    def __init__(self, message: str = "Authentication failed", clear_cookies: bool = False):
        super().__init__(message, status_code=401, clear_cookies=clear_cookies)


# Authorization Errors
class AuthorizationError(BaseAPIException):
    """Insufficient permissions"""
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, status_code=403)


# Resource Errors
class ResourceAlreadyExistsError(BaseAPIException):
    """Resource already exists"""
    def __init__(self, message: str = "Resource already exists"):
        super().__init__(message, status_code=409)


class RateLimitExceededError(BaseAPIException):
    """Rate limit exceeded"""
    def __init__(self, message: str = "Rate limit exceeded. Please try again later."):
        super().__init__(message, status_code=429)


# System Errors
class NotificationError(BaseAPIException):
    """Outgoing email could not be delivered"""
    def __init__(self, message: str = "Unable to send email. Please try again later."):
        super().__init__(message, status_code=502)
