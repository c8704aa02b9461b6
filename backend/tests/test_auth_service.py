from datetime import timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from app.core.exceptions import NotificationError
from app.core.principal import Principal
from app.core.results import AuthErrorKind
from app.core.security import utcnow, verify_password
from app.models.security import EmailVerificationToken, PasswordResetToken, RefreshToken
from app.models.user import User, UserRole
from app.services.auth_service import REGISTERED_MESSAGE
from app.services.token_service import token_service


def _live_refresh_count(db, user_id):
    return (
        db.query(RefreshToken)
        .filter(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
        .count()
    )


def _backdate_sends(db, model):
    db.query(model).update(
        {model.created_at: utcnow() - timedelta(minutes=5)}, synchronize_session=False
    )
    db.commit()


# ----- registration and verification -----

def test_register_sends_verification_and_blocks_login(db, service, mailer):
    result = service.register(db, "new@example.com", "password123")

    assert result.ok
    assert result.value.message == REGISTERED_MESSAGE
    user = db.query(User).filter(User.email == "new@example.com").one()
    assert user.role == UserRole.USER
    assert not user.is_email_verified
    assert mailer.sent[0][0] == "verify"
    assert mailer.sent[0][2].startswith("http://localhost:3000/verify-email?token=")

    login = service.login(db, "new@example.com", "password123")
    assert login.error == AuthErrorKind.UNAUTHORIZED
    assert login.message == "Email not verified"


def test_register_duplicate_is_conflict(db, service, make_user):
    make_user(email="taken@example.com")
    result = service.register(db, "taken@example.com", "password123")
    assert result.error == AuthErrorKind.CONFLICT


def test_register_with_mail_failure_keeps_user(db, service, mailer):
    mailer.fail = True
    with pytest.raises(NotificationError):
        service.register(db, "new@example.com", "password123")

    assert db.query(User).filter(User.email == "new@example.com").count() == 1
    assert db.query(EmailVerificationToken).count() == 1


def test_verify_email_then_login(db, service, mailer):
    service.register(db, "new@example.com", "password123")
    token = mailer.last_token("verify")

    assert service.verify_email(db, token).ok
    assert service.verify_email(db, token).error == AuthErrorKind.UNAUTHORIZED

    login = service.login(db, "new@example.com", "password123")
    assert login.ok
    assert login.value.user.email == "new@example.com"


def test_verify_email_rejects_unknown_token(db, service):
    result = service.verify_email(db, "deadbeef.deadbeef")
    assert result.error == AuthErrorKind.UNAUTHORIZED
    assert result.message == "Invalid or expired token"


def test_resend_verification_non_enumerating(db, service, mailer, make_user):
    make_user(email="done@example.com", verified=True)

    assert service.resend_verification(db, "ghost@example.com").ok
    assert service.resend_verification(db, "done@example.com").ok
    assert mailer.sent == []


def test_resend_verification_cooldown_and_supersede(db, service, mailer):
    service.register(db, "new@example.com", "password123")
    first = mailer.last_token("verify")

    throttled = service.resend_verification(db, "new@example.com")
    assert throttled.error == AuthErrorKind.TOO_MANY_REQUESTS
    assert "before requesting another verification email" in throttled.message

    _backdate_sends(db, EmailVerificationToken)
    assert service.resend_verification(db, "new@example.com").ok
    second = mailer.last_token("verify")

    assert first != second
    assert not service.verify_email(db, first).ok
    assert service.verify_email(db, second).ok


# ----- login and sessions -----

def test_login_failures_share_message(db, service, make_user):
    make_user(email="a@example.com", password="right-password")

    unknown = service.login(db, "ghost@example.com", "right-password")
    wrong = service.login(db, "a@example.com", "wrong-password")

    assert unknown.error == wrong.error == AuthErrorKind.UNAUTHORIZED
    assert unknown.message == wrong.message == "Invalid credentials"


def test_login_records_refresh_token(db, service, make_user):
    user = make_user()
    result = service.login(db, "learner@example.com", "correct-horse")

    assert result.ok
    tokens = result.value
    assert tokens.user.id == user.id
    assert tokens.user.role == UserRole.USER
    assert _live_refresh_count(db, user.id) == 1
    claims = service.issuer.verify(tokens.refresh_token)
    assert service.authenticate(db, tokens.access_token).value.user_id == user.id
    assert db.query(RefreshToken).one().jti == claims.jti


def test_refresh_rotates_and_detects_replay(db, service, make_user):
    user = make_user()
    r1 = service.login(db, "learner@example.com", "correct-horse").value.refresh_token

    r2 = service.refresh(db, r1).value.refresh_token
    r3 = service.refresh(db, r2).value.refresh_token
    assert len({r1, r2, r3}) == 3
    assert _live_refresh_count(db, user.id) == 1

    replay = service.refresh(db, r1)
    assert replay.error == AuthErrorKind.UNAUTHORIZED
    assert replay.clear_cookies
    assert _live_refresh_count(db, user.id) == 0

    assert not service.refresh(db, r3).ok


def test_refresh_missing_token_keeps_cookies(db, service):
    result = service.refresh(db, None)
    assert result.error == AuthErrorKind.UNAUTHORIZED
    assert not result.clear_cookies


def test_refresh_with_access_token_is_rejected(db, service, make_user):
    make_user()
    tokens = service.login(db, "learner@example.com", "correct-horse").value
    result = service.refresh(db, tokens.access_token)
    assert result.error == AuthErrorKind.UNAUTHORIZED
    assert result.clear_cookies


def test_refresh_with_forged_token_revokes_named_family(db, service, make_user):
    from jose import jwt

    user = make_user()
    r1 = service.login(db, "learner@example.com", "correct-horse").value.refresh_token
    jti = service.issuer.verify(r1).jti
    forged = jwt.encode({"sub": user.id, "jti": jti, "type": "refresh"}, "attacker", algorithm="HS256")

    result = service.refresh(db, forged)

    assert result.error == AuthErrorKind.UNAUTHORIZED
    assert result.clear_cookies
    assert _live_refresh_count(db, user.id) == 0


def test_refresh_for_deleted_user(db, service, make_user):
    user = make_user()
    r1 = service.login(db, "learner@example.com", "correct-horse").value.refresh_token
    db.query(RefreshToken).delete()
    db.query(User).filter(User.id == user.id).delete()
    db.commit()

    result = service.refresh(db, r1)
    assert result.message == "User not found"
    assert result.clear_cookies


def test_logout_revokes_everything_and_always_succeeds(db, service, make_user):
    user = make_user()
    first = service.login(db, "learner@example.com", "correct-horse").value
    service.login(db, "learner@example.com", "correct-horse")
    assert _live_refresh_count(db, user.id) == 2

    result = service.logout(db, first.refresh_token)
    assert result.ok and result.clear_cookies
    assert _live_refresh_count(db, user.id) == 0

    assert service.logout(db, None).ok
    assert service.logout(db, "garbage").ok


def test_validate_and_authenticate(db, service, make_user):
    user = make_user(role=UserRole.ADMIN)
    tokens = service.login(db, "learner@example.com", "correct-horse").value

    result = service.validate(db, tokens.access_token)
    assert result.ok
    assert result.value.valid
    assert result.value.user.id == user.id

    principal = service.authenticate(db, tokens.access_token).value
    assert principal.is_admin

    missing = service.validate(db, None)
    assert missing.error == AuthErrorKind.UNAUTHORIZED and missing.clear_cookies
    wrong_type = service.authenticate(db, tokens.refresh_token)
    assert wrong_type.message == "Invalid access token"


# ----- passwords -----

def test_forgot_password_non_enumerating(db, service, mailer):
    assert service.forgot_password(db, "ghost@example.com").ok
    assert mailer.sent == []


def test_reset_password_flow_revokes_sessions(db, service, mailer, make_user):
    user = make_user()
    r1 = service.login(db, "learner@example.com", "correct-horse").value.refresh_token

    assert service.forgot_password(db, "learner@example.com").ok
    token = mailer.last_token("reset")
    assert mailer.sent[-1][2].startswith("http://localhost:3000/reset-password?token=")

    assert service.reset_password(db, token, "brand-new-pass").ok
    assert not service.reset_password(db, token, "another-pass").ok

    db.expire_all()
    assert verify_password("brand-new-pass", db.get(User, user.id).password_hash)
    assert _live_refresh_count(db, user.id) == 0
    assert not service.refresh(db, r1).ok
    assert not service.login(db, "learner@example.com", "correct-horse").ok
    assert service.login(db, "learner@example.com", "brand-new-pass").ok


def test_forgot_password_cooldown(db, service, make_user):
    make_user()
    assert service.forgot_password(db, "learner@example.com").ok
    throttled = service.forgot_password(db, "learner@example.com")
    assert throttled.error == AuthErrorKind.TOO_MANY_REQUESTS

    _backdate_sends(db, PasswordResetToken)
    assert service.forgot_password(db, "learner@example.com").ok


def test_change_password(db, service, make_user):
    user = make_user()
    service.login(db, "learner@example.com", "correct-horse")
    principal = Principal(user_id=user.id, email=user.email, role=user.role)

    wrong = service.change_password(db, principal, "not-it", "brand-new-pass")
    assert wrong.message == "Current password incorrect"
    assert _live_refresh_count(db, user.id) == 1

    assert service.change_password(db, principal, "correct-horse", "brand-new-pass").ok
    assert _live_refresh_count(db, user.id) == 0
    assert service.login(db, "learner@example.com", "brand-new-pass").ok


# ----- admin -----

def test_register_admin_requires_admin_actor(db, service, make_user):
    plain = make_user()
    actor = Principal(user_id=plain.id, email=plain.email, role=UserRole.USER)

    result = service.register_admin(db, actor, "boss@example.com", "password123")
    assert result.error == AuthErrorKind.UNAUTHORIZED
    assert db.query(User).filter(User.email == "boss@example.com").count() == 0


def test_register_admin_creates_verified_admin_session(db, service, mailer, make_user):
    admin = make_user(email="root@example.com", role=UserRole.ADMIN)
    actor = Principal(user_id=admin.id, email=admin.email, role=UserRole.ADMIN)

    result = service.register_admin(db, actor, "boss@example.com", "password123")

    assert result.ok
    assert result.value.user.role == UserRole.ADMIN
    created = db.query(User).filter(User.email == "boss@example.com").one()
    assert created.is_email_verified
    assert mailer.sent == []
    assert service.login(db, "boss@example.com", "password123").ok

    duplicate = service.register_admin(db, actor, "boss@example.com", "password123")
    assert duplicate.error == AuthErrorKind.CONFLICT


def test_register_verify_login_scenario(db, service, mailer):
    assert service.register(db, "a@x.com", "Secret123!").value.message == REGISTERED_MESSAGE
    assert service.login(db, "a@x.com", "Secret123!").error == AuthErrorKind.UNAUTHORIZED
    assert service.verify_email(db, mailer.last_token("verify")).value.success is True

    tokens = service.login(db, "a@x.com", "Secret123!").value
    assert tokens.access_token and tokens.refresh_token
    assert tokens.user.email == "a@x.com"
    assert tokens.user.role == UserRole.USER


def test_reuse_revokes_sibling_sessions(db, service, make_user):
    make_user()
    rt0 = service.login(db, "learner@example.com", "correct-horse").value.refresh_token
    rt_other = service.login(db, "learner@example.com", "correct-horse").value.refresh_token

    assert service.refresh(db, rt0).ok
    assert not service.refresh(db, rt0).ok
    assert not service.refresh(db, rt_other).ok


def test_expired_ledger_record_fails_refresh(db, service, make_user):
    user = make_user()
    r1 = service.login(db, "learner@example.com", "correct-horse").value.refresh_token
    db.query(RefreshToken).update(
        {RefreshToken.expires_at: utcnow() - timedelta(seconds=1)}, synchronize_session=False
    )
    db.commit()

    result = service.refresh(db, r1)
    assert result.error == AuthErrorKind.UNAUTHORIZED
    assert result.clear_cookies
    assert _live_refresh_count(db, user.id) == 0


def test_concurrent_refresh_loser_revokes_everything(engine, db, service, make_user, monkeypatch):
    user = make_user()
    r1 = service.login(db, "learner@example.com", "correct-horse").value.refresh_token
    sibling = service.login(db, "learner@example.com", "correct-horse").value.refresh_token

    winner_db = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    find_record = token_service.find_refresh_by_jti
    winner_results = []

    def find_then_lose_race(session, jti):
        record = find_record(session, jti)
        if session is db and not winner_results:
            # The other request rotates after this one has read the record
            winner_results.append(service.refresh(winner_db, r1))
        return record

    monkeypatch.setattr(token_service, "find_refresh_by_jti", find_then_lose_race)
    try:
        loser = service.refresh(db, r1)
    finally:
        winner_db.close()

    assert winner_results[0].ok
    assert loser.error == AuthErrorKind.UNAUTHORIZED
    assert loser.clear_cookies
    assert _live_refresh_count(db, user.id) == 0

    assert not service.refresh(db, sibling).ok
    assert not service.refresh(db, winner_results[0].value.refresh_token).ok
