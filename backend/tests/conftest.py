from typing import List, Tuple
from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.core.database import Base
from app.core.exceptions import NotificationError
from app.core.security import get_password_hash
from app.models.user import User, UserRole
from app.services.auth_service import AuthService
from app.services.rate_limiter import rate_limiter


class FakeMailer:
    """Collects outgoing links instead of talking to SMTP."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, str]] = []
        self.fail = False

    def _record(self, kind: str, to: str, link: str) -> None:
        if self.fail:
            raise NotificationError()
        self.sent.append((kind, to, link))

    def send_verification_email(self, to: str, link: str, display_name: str) -> None:
        self._record("verify", to, link)

    def send_password_reset_email(self, to: str, link: str, display_name: str) -> None:
        self._record("reset", to, link)

    def last_token(self, kind: str) -> str:
        link = [entry for entry in self.sent if entry[0] == kind][-1][2]
        return parse_qs(urlparse(link).query)["token"][0]


def make_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    monkeypatch.setattr(settings, "BCRYPT_ROUNDS", 4)


@pytest.fixture(autouse=True)
def clear_rate_limits():
    rate_limiter.reset()
    yield
    rate_limiter.reset()


@pytest.fixture
def engine():
    engine = make_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def service(mailer):
    return AuthService(mailer=mailer)


@pytest.fixture
def make_user(db):
    def _make(email="learner@example.com", password="correct-horse", role=UserRole.USER, verified=True):
        user = User(
            email=email,
            password_hash=get_password_hash(password),
            role=role,
            is_email_verified=verified,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make
