import smtplib

import pytest

from app.config import Settings
from app.core.exceptions import NotificationError
from app.services.email_service import EmailService, SMTPConnection, redact_email


class FakeSMTP:
    instances = []
    disconnect_next_send = False

    def __init__(self, host, port, timeout=None, context=None):
        self.host = host
        self.port = port
        self.started_tls = False
        self.logged_in = None
        self.sent = []
        self.closed = False
        FakeSMTP.instances.append(self)

    def starttls(self, context=None):
        self.started_tls = True

    def login(self, user, password):
        self.logged_in = (user, password)

    def noop(self):
        return 250, b"OK"

    def send_message(self, message):
        if FakeSMTP.disconnect_next_send:
            FakeSMTP.disconnect_next_send = False
            raise smtplib.SMTPServerDisconnected("gone")
        self.sent.append(message)

    def quit(self):
        self.closed = True

    def close(self):
        self.closed = True


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.disconnect_next_send = False
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    monkeypatch.setattr(smtplib, "SMTP_SSL", FakeSMTP)
    return FakeSMTP


def _settings(**overrides):
    values = dict(SMTP_HOST="smtp.test", SMTP_USER="mailer", SMTP_PASS="pw", SMTP_PORT="587")
    values.update(overrides)
    return Settings(**values)


def test_missing_config_is_reported():
    connection = SMTPConnection(Settings(SMTP_HOST="", SMTP_USER="", SMTP_PASS="", SMTP_PORT="abc"))
    assert connection.config_errors() == ["SMTP_HOST", "SMTP_USER", "SMTP_PASS", "SMTP_PORT"]


def test_send_without_config_raises(fake_smtp):
    service = EmailService(settings=Settings(SMTP_HOST="", SMTP_USER="", SMTP_PASS=""))
    with pytest.raises(NotificationError) as exc:
        service.send_verification_email("a@example.com", "http://x/verify-email?token=t", "a")
    assert "SMTP_HOST" in exc.value.message
    assert fake_smtp.instances == []


def test_connection_opened_lazily_and_reused(fake_smtp):
    service = EmailService(settings=_settings())
    assert fake_smtp.instances == []

    service.send_verification_email("a@example.com", "http://x/verify-email?token=t1", "a")
    service.send_password_reset_email("a@example.com", "http://x/reset-password?token=t2", "a")

    assert len(fake_smtp.instances) == 1
    client = fake_smtp.instances[0]
    assert client.started_tls
    assert client.logged_in == ("mailer", "pw")
    subjects = [message["Subject"] for message in client.sent]
    assert subjects == ["Verify your email", "Reset your password"]
    assert "token=t1" in client.sent[0].get_body(preferencelist=("plain",)).get_content()


def test_implicit_tls_on_port_465(fake_smtp):
    service = EmailService(settings=_settings(SMTP_PORT="465"))
    service.send_mail("a@example.com", "Hi", "text", "<p>html</p>")
    assert not fake_smtp.instances[0].started_tls


def test_reconnects_once_after_disconnect(fake_smtp):
    service = EmailService(settings=_settings())
    fake_smtp.disconnect_next_send = True

    service.send_mail("a@example.com", "Hi", "text", "<p>html</p>")

    assert len(fake_smtp.instances) == 2
    assert fake_smtp.instances[0].closed
    assert len(fake_smtp.instances[1].sent) == 1


def test_transport_error_becomes_notification_error(fake_smtp, monkeypatch):
    service = EmailService(settings=_settings())

    def boom(self, message):
        raise smtplib.SMTPDataError(554, b"rejected")

    monkeypatch.setattr(FakeSMTP, "send_message", boom)
    with pytest.raises(NotificationError):
        service.send_mail("a@example.com", "Hi", "text", "<p>html</p>")


def test_close_quits_client(fake_smtp):
    service = EmailService(settings=_settings())
    service.send_mail("a@example.com", "Hi", "text", "<p>html</p>")
    service.close()
    assert fake_smtp.instances[0].closed
    service.close()


def test_redact_email():
    assert redact_email("learner@example.com") == "le***@example.com"
    assert redact_email("nope") == "redacted"
