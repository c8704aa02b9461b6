"""Plain-text and HTML bodies for transactional email."""

from html import escape
from typing import Tuple

PRODUCT_NAME = "Kotobamichi"

_BUTTON_STYLE = (
    "display:inline-block;padding:10px 16px;background:#2563eb;color:#fff;"
    "border-radius:6px;text-decoration:none"
)


def _wrap_html(paragraphs: str) -> str:
    return (
        "<!doctype html>\n<html>\n"
        '  <body style="font-family:Arial,Helvetica,sans-serif;line-height:1.4;color:#111">\n'
        f"{paragraphs}"
        f"    <p>Thanks,<br/>The {PRODUCT_NAME} Team</p>\n"
        "  </body>\n</html>"
    )


def render_verification(name: str, link: str) -> Tuple[str, str]:
    """Return (text, html) for the email-verification message."""
    greeting = f"{name},\n\n" if name else ""
    text = (
        f"{greeting}Welcome to {PRODUCT_NAME}! Please verify your email by visiting this link: {link}\n\n"
        f"If you didn't sign up for {PRODUCT_NAME}, you can ignore this email."
    )
    safe_name = escape(name or "there")
    safe_link = escape(link, quote=True)
    html = _wrap_html(
        f"    <p>Hi {safe_name},</p>\n"
        f"    <p>Welcome to {PRODUCT_NAME}! To complete your registration, please confirm your "
        "email address by clicking the button below:</p>\n"
        f'    <p><a href="{safe_link}" style="{_BUTTON_STYLE}">Confirm Email</a></p>\n'
        "    <p>If the button doesn't work, copy and paste this URL into your browser:"
        f"<br/><code>{safe_link}</code></p>\n"
        f"    <p>If you did not sign up for an account on {PRODUCT_NAME}, you can safely ignore this email.</p>\n"
    )
    return text, html


def render_password_reset(name: str, link: str) -> Tuple[str, str]:
    """Return (text, html) for the password-reset message."""
    greeting = f"{name},\n\n" if name else ""
    text = (
        f"{greeting}You requested a password reset for your {PRODUCT_NAME} account. "
        f"Use this link to set a new password: {link}\n\n"
        "If you didn't request this, you can ignore this email; your password stays unchanged."
    )
    safe_name = escape(name or "there")
    safe_link = escape(link, quote=True)
    html = _wrap_html(
        f"    <p>Hi {safe_name},</p>\n"
        f"    <p>We received a request to reset the password for your {PRODUCT_NAME} account.</p>\n"
        f'    <p><a href="{safe_link}" style="{_BUTTON_STYLE}">Reset Password</a></p>\n'
        "    <p>If the button doesn't work, copy and paste this URL into your browser:"
        f"<br/><code>{safe_link}</code></p>\n"
        "    <p>If you didn't request this, you can safely ignore this email.</p>\n"
    )
    return text, html
