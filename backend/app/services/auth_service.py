"""Auth service - registration, sessions, verification and password flows"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from urllib.parse import quote
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.core.database import atomic
from app.core.principal import Principal
from app.core.results import AuthResult
from app.core.security import (
    burn_password_check,
    constant_time_equals,
    get_password_hash,
    sha256_hex,
    utcnow,
    verify_password,
)
from app.core.tokens import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    SessionIssuer,
    parse_ttl,
    peek_unverified_claims,
    session_issuer,
)
from app.models.security import RefreshToken
from app.models.user import User, UserRole
from app.schemas.auth import MessageResponse, SessionTokens, SuccessResponse, ValidateResponse
from app.schemas.user import PublicUser
from app.services.email_service import EmailService, email_service
from app.services.rate_limiter import SendLimits, email_send_policy
from app.services.token_service import TokenKind, token_service
from app.services.user_service import user_service

logger = logging.getLogger(__name__)

_DEFAULT_VERIFICATION_TTL_SECONDS = 86400
_DEFAULT_RESET_TTL_SECONDS = 3600

REGISTERED_MESSAGE = "Registration successful. Please verify your email to log in."


class AuthService:
    """
    Session and credential state machine.

    Every public method returns an ``AuthResult``; the HTTP layer maps its
    error kind to a response and applies ``clear_cookies``. Database and
    mail transport failures are raised, not wrapped.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        issuer: Optional[SessionIssuer] = None,
        mailer: Optional[EmailService] = None,
    ) -> None:
        self.settings = settings or default_settings
        self.issuer = issuer or session_issuer
        self.mailer = mailer or email_service

    # ===== helpers =====

    @staticmethod
    def _public(user: User) -> PublicUser:
        return PublicUser.model_validate(user)

    def _issue_session(self, db: Session, user: User) -> SessionTokens:
        public = self._public(user)
        access = self.issuer.sign_access(user)
        refresh, jti, expires_at = self.issuer.sign_refresh(user)
        with atomic(db):
            token_service.record_refresh(
                db, user_id=user.id, jti=jti, token=refresh, expires_at=expires_at
            )
        return SessionTokens(access_token=access, refresh_token=refresh, user=public)

    def _build_link(self, path: str, secret: str) -> str:
        base = (self.settings.APP_URL or "http://localhost:3000").rstrip("/")
        return f"{base}/{path}?token={quote(secret, safe='')}"

    def _ttl(self, kind: TokenKind) -> int:
        if kind == TokenKind.EMAIL_VERIFICATION:
            return parse_ttl(self.settings.EMAIL_VERIFICATION_EXPIRES_IN) or _DEFAULT_VERIFICATION_TTL_SECONDS
        return parse_ttl(self.settings.PASSWORD_RESET_EXPIRES_IN) or _DEFAULT_RESET_TTL_SECONDS

    def _limits(self, kind: TokenKind) -> SendLimits:
        if kind == TokenKind.EMAIL_VERIFICATION:
            return SendLimits(
                cooldown_seconds=self.settings.verification_cooldown_seconds(),
                daily_limit=self.settings.verification_daily_limit(),
                label="verification email",
            )
        return SendLimits(
            cooldown_seconds=self.settings.reset_cooldown_seconds(),
            daily_limit=self.settings.reset_daily_limit(),
            label="password reset email",
        )

    def _issue_and_send(self, db: Session, kind: TokenKind, user: User) -> None:
        """Invalidate earlier links of this kind, store a fresh one and email it."""
        user_id, email = user.id, user.email
        with atomic(db):
            token_service.invalidate_outstanding(db, kind, user_id)
            secret, _ = token_service.issue(db, kind, user_id, self._ttl(kind))

        display_name = email.split("@")[0]
        try:
            if kind == TokenKind.EMAIL_VERIFICATION:
                self.mailer.send_verification_email(
                    email, self._build_link("verify-email", secret), display_name
                )
            else:
                self.mailer.send_password_reset_email(
                    email, self._build_link("reset-password", secret), display_name
                )
        except Exception:
            logger.exception(f"Failed to send {kind.value} email for userId={user_id}")
            raise
        logger.info(f"{kind.value} email sent for userId={user_id}")

    def _revoke_family_for_untrusted_token(self, db: Session, token: str) -> None:
        """
        Pre-emptively revoke the session family named by a token that failed
        verification. The jti is read without a signature check and is used
        for nothing else.
        """
        claims = peek_unverified_claims(token)
        if claims is None or not claims.jti:
            return
        with atomic(db):
            revoked = token_service.revoke_family_of(db, claims.jti)
        if revoked:
            logger.warning(f"Revoked {revoked} refresh tokens after unverifiable token presented")

    def _revoke_all(self, db: Session, user_id: str) -> int:
        with atomic(db):
            return token_service.revoke_all(db, user_id)

    @staticmethod
    def _refresh_record_trusted(
        record: Optional[RefreshToken], token: str, user_id: str, now: datetime
    ) -> bool:
        if record is None or record.user_id != user_id:
            return False
        if record.revoked_at is not None:
            return False
        if not constant_time_equals(record.token_hash, sha256_hex(token)):
            return False
        return record.expires_at > now

    # ===== registration =====

    def register(self, db: Session, email: str, password: str) -> AuthResult:
        if user_service.find_by_email(db, email):
            logger.warning("Registration attempt with existing email")
            return AuthResult.conflict("User with this email already exists")

        try:
            user = user_service.create(db, email, get_password_hash(password), UserRole.USER)
        except IntegrityError:
            db.rollback()
            logger.warning("Registration lost a race on an existing email")
            return AuthResult.conflict("User with this email already exists")

        self._issue_and_send(db, TokenKind.EMAIL_VERIFICATION, user)
        logger.info(f"User registered, verification pending: {user.id}")
        return AuthResult.success(MessageResponse(message=REGISTERED_MESSAGE))

    def register_admin(self, db: Session, actor: Principal, email: str, password: str) -> AuthResult:
        """Create an ADMIN account and sign it in straight away (no verification gate)."""
        if not actor.is_admin:
            logger.warning(f"Non-admin {actor.user_id} attempted admin registration")
            return AuthResult.unauthorized("Admin access required")

        if user_service.find_by_email(db, email):
            logger.warning(f"Admin registration attempt with existing email by {actor.user_id}")
            return AuthResult.conflict("User with this email already exists")

        try:
            user = user_service.create(
                db, email, get_password_hash(password), UserRole.ADMIN, is_email_verified=True
            )
        except IntegrityError:
            db.rollback()
            return AuthResult.conflict("User with this email already exists")

        tokens = self._issue_session(db, user)
        logger.info(f"Admin user {tokens.user.id} registered by {actor.user_id}")
        return AuthResult.success(tokens)

    # ===== sessions =====

    def login(self, db: Session, email: str, password: str) -> AuthResult:
        user = user_service.find_by_email(db, email)
        if user is None:
            burn_password_check(password)
            logger.warning("Login failed (no user)")
            return AuthResult.unauthorized("Invalid credentials")

        if not verify_password(password, user.password_hash):
            logger.warning(f"Login failed (bad password): {user.id}")
            return AuthResult.unauthorized("Invalid credentials")

        if not user.is_email_verified:
            logger.warning(f"Login blocked, email not verified: {user.id}")
            return AuthResult.unauthorized("Email not verified")

        tokens = self._issue_session(db, user)
        logger.info(f"User logged in: {tokens.user.id}")
        return AuthResult.success(tokens)

    def refresh(self, db: Session, token: Optional[str]) -> AuthResult:
        """
        Rotate a refresh token.

        Anything other than an active, matching ledger record is treated as
        reuse and revokes every refresh token of the owner.
        """
        if not token:
            logger.warning("Refresh token missing")
            return AuthResult.unauthorized("Refresh token missing")

        claims = self.issuer.verify(token)
        if claims is None:
            self._revoke_family_for_untrusted_token(db, token)
            logger.warning("Refresh token verification failed; tokens cleared")
            return AuthResult.unauthorized("Invalid refresh token", clear_cookies=True)

        if claims.type != REFRESH_TOKEN_TYPE or not claims.sub or not claims.jti:
            logger.warning("Refresh token payload invalid")
            return AuthResult.unauthorized("Invalid refresh token", clear_cookies=True)

        user = user_service.find_by_id(db, claims.sub)
        if user is None:
            with atomic(db):
                token_service.revoke_family_of(db, claims.jti)
            logger.warning(f"Refresh failed: user not found (sub={claims.sub})")
            return AuthResult.unauthorized("User not found", clear_cookies=True)

        record = token_service.find_refresh_by_jti(db, claims.jti)
        if not self._refresh_record_trusted(record, token, user.id, utcnow()):
            revoked = self._revoke_all(db, user.id)
            logger.warning(
                f"Refresh token invalid/revoked/expired for userId={user.id}; revoked {revoked}"
            )
            return AuthResult.unauthorized("Refresh token revoked or invalid", clear_cookies=True)

        public = self._public(user)
        new_refresh, new_jti, expires_at = self.issuer.sign_refresh(user)
        successor = token_service.rotate(
            db,
            old_jti=claims.jti,
            user_id=public.id,
            new_jti=new_jti,
            new_token=new_refresh,
            expires_at=expires_at,
        )
        if successor is None:
            revoked = self._revoke_all(db, public.id)
            logger.warning(f"Concurrent refresh reuse for userId={public.id}; revoked {revoked}")
            return AuthResult.unauthorized("Refresh token revoked or invalid", clear_cookies=True)

        access = self.issuer.sign_access(user)
        logger.info(f"Refresh token rotated for userId={public.id}")
        return AuthResult.success(
            SessionTokens(access_token=access, refresh_token=new_refresh, user=public)
        )

    def authenticate(self, db: Session, token: Optional[str]) -> AuthResult:
        """Resolve an access token to a Principal; the user must still exist."""
        if not token:
            logger.warning("Access token missing")
            return AuthResult.unauthorized("No access token", clear_cookies=True)

        claims = self.issuer.verify(token)
        if claims is None:
            logger.warning("Access token verification failed or expired")
            return AuthResult.unauthorized("Access token expired", clear_cookies=True)

        if claims.type != ACCESS_TOKEN_TYPE or not claims.sub:
            logger.warning("Invalid access token type")
            return AuthResult.unauthorized("Invalid access token", clear_cookies=True)

        user = user_service.find_by_id(db, claims.sub)
        if user is None:
            logger.warning(f"Access token valid but user missing (sub={claims.sub})")
            return AuthResult.unauthorized("User not found", clear_cookies=True)

        return AuthResult.success(Principal(user_id=user.id, email=user.email, role=user.role))

    def validate(self, db: Session, token: Optional[str]) -> AuthResult:
        result = self.authenticate(db, token)
        if not result.ok:
            return result
        principal: Principal = result.value
        logger.debug(f"Access token validated for userId={principal.user_id}")
        return AuthResult.success(
            ValidateResponse(
                valid=True,
                user=PublicUser(id=principal.user_id, email=principal.email, role=principal.role),
            )
        )

    def logout(self, db: Session, token: Optional[str]) -> AuthResult:
        """Always succeeds; revokes the presenter's refresh tokens when the subject is readable."""
        claims = peek_unverified_claims(token)
        if claims is not None and claims.sub:
            revoked = self._revoke_all(db, claims.sub)
            logger.info(f"Logout revoked {revoked} refresh tokens")
        logger.info("User logged out (cookies cleared)")
        return AuthResult.success(SuccessResponse(success=True), clear_cookies=True)

    # ===== email verification =====

    def verify_email(self, db: Session, secret: str) -> AuthResult:
        user_id = None
        with atomic(db):
            record = token_service.consume(db, TokenKind.EMAIL_VERIFICATION, secret)
            if record is not None:
                user_id = record.user_id
                user_service.set_email_verified(db, user_id)

        if user_id is None:
            logger.warning("Email verification failed: invalid or expired token")
            return AuthResult.unauthorized("Invalid or expired token")

        logger.info(f"Email verified for userId={user_id}")
        return AuthResult.success(SuccessResponse(success=True))

    def resend_verification(self, db: Session, email: str) -> AuthResult:
        user = user_service.find_by_email(db, email)
        if user is None:
            logger.debug("Resend verification requested for non-existing email")
            return AuthResult.success(SuccessResponse(success=True))
        if user.is_email_verified:
            logger.debug(f"Resend verification skipped; already verified: {user.id}")
            return AuthResult.success(SuccessResponse(success=True))

        kind = TokenKind.EMAIL_VERIFICATION
        refusal = email_send_policy.check(db, kind, user.id, self._limits(kind))
        if refusal:
            logger.warning(f"Verification email throttled for userId={user.id}")
            return AuthResult.too_many_requests(refusal)

        self._issue_and_send(db, kind, user)
        return AuthResult.success(SuccessResponse(success=True))

    # ===== passwords =====

    def forgot_password(self, db: Session, email: str) -> AuthResult:
        user = user_service.find_by_email(db, email)
        if user is None:
            logger.debug("Forgot password requested for non-existing email")
            return AuthResult.success(SuccessResponse(success=True))

        kind = TokenKind.PASSWORD_RESET
        refusal = email_send_policy.check(db, kind, user.id, self._limits(kind))
        if refusal:
            logger.warning(f"Password reset email throttled for userId={user.id}")
            return AuthResult.too_many_requests(refusal)

        self._issue_and_send(db, kind, user)
        return AuthResult.success(SuccessResponse(success=True))

    def reset_password(self, db: Session, secret: str, new_password: str) -> AuthResult:
        user_id = None
        with atomic(db):
            record = token_service.consume(db, TokenKind.PASSWORD_RESET, secret)
            if record is not None:
                user_id = record.user_id
                user_service.update_password(db, user_id, get_password_hash(new_password))
                token_service.revoke_all(db, user_id)

        if user_id is None:
            logger.warning("Password reset failed: invalid or expired token")
            return AuthResult.unauthorized("Invalid or expired token")

        logger.info(f"Password reset successful for userId={user_id}")
        return AuthResult.success(SuccessResponse(success=True))

    def change_password(
        self, db: Session, principal: Principal, current_password: str, new_password: str
    ) -> AuthResult:
        user = user_service.find_by_id(db, principal.user_id)
        if user is None:
            logger.warning(f"Change password failed: user not found ({principal.user_id})")
            return AuthResult.unauthorized("User not found")

        if not verify_password(current_password, user.password_hash):
            logger.warning(f"Change password failed: incorrect current password ({user.id})")
            return AuthResult.unauthorized("Current password incorrect")

        hashed = get_password_hash(new_password)
        with atomic(db):
            user_service.update_password(db, user.id, hashed)
            revoked = token_service.revoke_all(db, user.id)

        logger.info(f"Password changed and {revoked} sessions revoked for userId={principal.user_id}")
        return AuthResult.success(SuccessResponse(success=True))


auth_service = AuthService()
