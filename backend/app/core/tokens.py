"""Signed session tokens (JWT) for access and refresh."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta, datetime, timezone
from typing import Any, Dict, Optional, Tuple

from jose import JWTError, jwt

from app.config import Settings, settings as default_settings
from app.core.security import new_id, utcnow

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

_TTL_PATTERN = re.compile(r"^(\d+)(s|m|h|d)$", re.IGNORECASE)
_TTL_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
# Longer lifetimes are treated as misconfiguration
_MAX_TTL_SECONDS = 10 * 365 * 86400

_DEFAULT_ACCESS_TTL_SECONDS = 15 * 60
_DEFAULT_REFRESH_TTL_SECONDS = 7 * 86400


def parse_ttl(value: Optional[str]) -> int:
    """
    Convert a duration like ``15m``, ``7d`` or ``3600s`` to seconds.

    Malformed or absurdly long values (over ten years) yield 0, which callers
    treat as "session scoped".
    """
    if not value:
        return 0
    match = _TTL_PATTERN.match(value.strip())
    if not match:
        return 0
    amount, unit = match.groups()
    seconds = int(amount) * _TTL_UNIT_SECONDS[unit.lower()]
    if seconds > _MAX_TTL_SECONDS:
        return 0
    return seconds


@dataclass(frozen=True)
class VerifiedClaims:
    """Claims whose signature and expiry have been checked."""

    sub: Optional[str]
    type: Optional[str]
    jti: Optional[str] = None
    role: Optional[str] = None
    email: Optional[str] = None
    exp: Optional[int] = None


@dataclass(frozen=True)
class UnverifiedClaims:
    """
    Structurally decoded claims with no signature check.

    Only the revocation paths (logout, refresh reuse) may read these.
    """

    sub: Optional[str]
    jti: Optional[str]


def _str_claim(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None or value == "":
        return None
    return str(value)


class SessionIssuer:
    """Mint and verify access/refresh JWTs."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or default_settings

    @property
    def access_ttl_seconds(self) -> int:
        return parse_ttl(self.settings.ACCESS_TOKEN_EXPIRES_IN) or _DEFAULT_ACCESS_TTL_SECONDS

    @property
    def refresh_ttl_seconds(self) -> int:
        return parse_ttl(self.settings.REFRESH_TOKEN_EXPIRES_IN) or _DEFAULT_REFRESH_TTL_SECONDS

    def _encode(self, claims: Dict[str, Any], ttl_seconds: int) -> str:
        now = datetime.now(timezone.utc)
        to_encode = dict(claims)
        to_encode.update({
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        })
        return jwt.encode(to_encode, self.settings.SECRET_KEY, algorithm=self.settings.ALGORITHM)

    def sign_access(self, user) -> str:
        """
        Create JWT access token

        Args:
            user: User row (id, email, role)

        Returns:
            str: Encoded JWT token
        """
        return self._encode(
            {
                "sub": str(user.id),
                "email": user.email,
                "role": getattr(user.role, "value", user.role),
                "type": ACCESS_TOKEN_TYPE,
            },
            self.access_ttl_seconds,
        )

    def sign_refresh(self, user) -> Tuple[str, str, datetime]:
        """
        Create JWT refresh token with a fresh jti

        Returns:
            Tuple of (token, jti, expires_at as naive UTC)
        """
        jti = new_id()
        ttl = self.refresh_ttl_seconds
        token = self._encode(
            {"sub": str(user.id), "jti": jti, "type": REFRESH_TOKEN_TYPE},
            ttl,
        )
        return token, jti, utcnow() + timedelta(seconds=ttl)

    def verify(self, token: Optional[str]) -> Optional[VerifiedClaims]:
        """
        Decode and verify JWT token

        Returns:
            Verified claims or None if the signature or expiry check fails
        """
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self.settings.SECRET_KEY,
                algorithms=[self.settings.ALGORITHM],
            )
        except JWTError:
            return None
        exp = payload.get("exp")
        return VerifiedClaims(
            sub=_str_claim(payload, "sub"),
            type=_str_claim(payload, "type"),
            jti=_str_claim(payload, "jti"),
            role=_str_claim(payload, "role"),
            email=_str_claim(payload, "email"),
            exp=int(exp) if isinstance(exp, (int, float)) else None,
        )


def peek_unverified_claims(token: Optional[str]) -> Optional[UnverifiedClaims]:
    """
    Read ``sub``/``jti`` without checking the signature.

    Never use the result to grant anything; it only drives revocation.
    """
    if not token:
        return None
    try:
        payload = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    if not isinstance(payload, dict):
        return None
    return UnverifiedClaims(sub=_str_claim(payload, "sub"), jti=_str_claim(payload, "jti"))


session_issuer = SessionIssuer()
