"""Session cookie attributes and helpers."""

from typing import Optional

from starlette.responses import Response

from app.config import Settings, settings as default_settings
from app.core.tokens import parse_ttl

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
COOKIE_PATH = "/"


class CookiePolicy:
    """Compute and apply attributes for the two auth cookies."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or default_settings

    @property
    def secure(self) -> bool:
        if self.settings.is_production:
            return True
        return bool(self.settings.COOKIE_SECURE)

    @property
    def samesite(self) -> str:
        if self.settings.COOKIE_SAMESITE:
            return self.settings.COOKIE_SAMESITE
        return "none" if self.secure else "lax"

    @staticmethod
    def max_age(ttl: str) -> Optional[int]:
        """Cookie max-age in seconds; None (session cookie) for malformed TTLs."""
        seconds = parse_ttl(ttl)
        return seconds or None

    def set_auth_cookies(self, response: Response, access_token: str, refresh_token: str) -> None:
        for key, value, ttl in (
            (ACCESS_COOKIE, access_token, self.settings.ACCESS_TOKEN_EXPIRES_IN),
            (REFRESH_COOKIE, refresh_token, self.settings.REFRESH_TOKEN_EXPIRES_IN),
        ):
            response.set_cookie(
                key=key,
                value=value,
                max_age=self.max_age(ttl),
                path=COOKIE_PATH,
                secure=self.secure,
                httponly=True,
                samesite=self.samesite,
            )

    def clear_auth_cookies(self, response: Response) -> None:
        for key in (ACCESS_COOKIE, REFRESH_COOKIE):
            response.delete_cookie(
                key=key,
                path=COOKIE_PATH,
                secure=self.secure,
                httponly=True,
                samesite=self.samesite,
            )


cookie_policy = CookiePolicy()
