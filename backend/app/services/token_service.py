"""Token ledger: single-use capability tokens and refresh-token rotation."""

from __future__ import annotations

import enum
from datetime import datetime, timedelta
from typing import Optional, Tuple, Type, Union
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.security import generate_opaque_token, sha256_hex, utcnow
from app.models.security import EmailVerificationToken, PasswordResetToken, RefreshToken

logger = logging.getLogger(__name__)

OneTimeToken = Union[EmailVerificationToken, PasswordResetToken]


class TokenKind(str, enum.Enum):
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


_MODELS = {
    TokenKind.EMAIL_VERIFICATION: EmailVerificationToken,
    TokenKind.PASSWORD_RESET: PasswordResetToken,
}


class TokenService:
    """
    Persist and check hashed tokens.

    Methods that only stage changes leave the commit to the caller so the
    write can share a transaction with the effect it guards. ``rotate`` is
    its own transaction.
    """

    @staticmethod
    def _model(kind: TokenKind) -> Type[OneTimeToken]:
        return _MODELS[TokenKind(kind)]

    # ----- single-use tokens -----

    @staticmethod
    def issue(db: Session, kind: TokenKind, user_id: str, ttl_seconds: int) -> Tuple[str, OneTimeToken]:
        """Stage a new token row and return the cleartext secret for the link."""
        model = TokenService._model(kind)
        secret = generate_opaque_token()
        record = model(
            user_id=user_id,
            token_hash=sha256_hex(secret),
            expires_at=utcnow() + timedelta(seconds=max(0, ttl_seconds)),
        )
        db.add(record)
        db.flush()
        return secret, record

    @staticmethod
    def invalidate_outstanding(db: Session, kind: TokenKind, user_id: str) -> int:
        """Mark every unused, unexpired token of this kind for the user as used."""
        model = TokenService._model(kind)
        now = utcnow()
        return (
            db.query(model)
            .filter(
                model.user_id == user_id,
                model.used_at.is_(None),
                model.expires_at > now,
            )
            .update({model.used_at: now}, synchronize_session=False)
        )

    @staticmethod
    def consume(db: Session, kind: TokenKind, secret: str) -> Optional[OneTimeToken]:
        """
        Claim a token by its secret.

        Returns the record when it was unused and unexpired, otherwise None.
        The used-at mark is conditional, so of two concurrent consumers only
        one gets the record back.
        """
        if not secret:
            return None
        model = TokenService._model(kind)
        record = db.query(model).filter(model.token_hash == sha256_hex(secret)).first()
        now = utcnow()
        if record is None or record.used_at is not None or record.expires_at <= now:
            return None
        claimed = (
            db.query(model)
            .filter(model.id == record.id, model.used_at.is_(None))
            .update({model.used_at: now}, synchronize_session=False)
        )
        if claimed != 1:
            return None
        return record

    @staticmethod
    def latest_issued_at(db: Session, kind: TokenKind, user_id: str) -> Optional[datetime]:
        model = TokenService._model(kind)
        return (
            db.query(func.max(model.created_at))
            .filter(model.user_id == user_id)
            .scalar()
        )

    @staticmethod
    def count_issued_since(db: Session, kind: TokenKind, user_id: str, since: datetime) -> int:
        model = TokenService._model(kind)
        return (
            db.query(func.count(model.id))
            .filter(model.user_id == user_id, model.created_at >= since)
            .scalar()
        ) or 0

    # ----- refresh tokens -----

    @staticmethod
    def record_refresh(
        db: Session,
        *,
        user_id: str,
        jti: str,
        token: str,
        expires_at: datetime,
    ) -> RefreshToken:
        record = RefreshToken(
            jti=jti,
            user_id=user_id,
            token_hash=sha256_hex(token),
            expires_at=expires_at,
        )
        db.add(record)
        db.flush()
        return record

    @staticmethod
    def find_refresh_by_jti(db: Session, jti: str) -> Optional[RefreshToken]:
        if not jti:
            return None
        return db.query(RefreshToken).filter(RefreshToken.jti == jti).first()

    @staticmethod
    def rotate(
        db: Session,
        *,
        old_jti: str,
        user_id: str,
        new_jti: str,
        new_token: str,
        expires_at: datetime,
    ) -> Optional[RefreshToken]:
        """
        Insert the successor and revoke ``old_jti`` in one transaction.

        Returns None, with nothing written, when the old token was already
        revoked by the time the update ran (a concurrent rotation won).
        """
        try:
            successor = TokenService.record_refresh(
                db,
                user_id=user_id,
                jti=new_jti,
                token=new_token,
                expires_at=expires_at,
            )
            revoked = (
                db.query(RefreshToken)
                .filter(RefreshToken.jti == old_jti, RefreshToken.revoked_at.is_(None))
                .update(
                    {RefreshToken.revoked_at: utcnow(), RefreshToken.replaced_by_id: successor.id},
                    synchronize_session=False,
                )
            )
            if revoked != 1:
                db.rollback()
                logger.warning(f"Refresh rotation lost race for jti={old_jti}")
                return None
            db.commit()
        except Exception:
            db.rollback()
            raise
        return successor

    @staticmethod
    def revoke_all(db: Session, user_id: str) -> int:
        """Stage revocation of every live refresh token the user holds."""
        return (
            db.query(RefreshToken)
            .filter(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
            .update({RefreshToken.revoked_at: utcnow()}, synchronize_session=False)
        )

    @staticmethod
    def revoke_family_of(db: Session, jti: str) -> int:
        """Revoke all tokens of whoever owns ``jti``; unknown jtis are ignored."""
        record = TokenService.find_refresh_by_jti(db, jti)
        if record is None:
            return 0
        return TokenService.revoke_all(db, record.user_id)


token_service = TokenService()
