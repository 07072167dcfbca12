"""
auth/notifier.py -- Out-of-band email notifications (Notifier).

Notifier is the narrow interface the auth flows depend on:

    notifier.send("password_reset", "ama@example.com", {"name": ..., "reset_link": ...}) -> bool

It returns True when the message was handed to the mail server and False
otherwise. It does not raise for delivery problems. A failed delivery never
rolls back the state change that triggered it; the caller logs the outcome
and moves on. There is no retry.

SmtpNotifier renders Jinja2 templates (plain text and HTML per message) and
sends them over smtplib, with implicit TLS, STARTTLS or plain SMTP depending
on Settings. Template values are autoescaped in the HTML part.

Raw secrets (verification codes, reset links) are never written to the log.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from jinja2 import DictLoader, Environment, StrictUndefined, TemplateError, select_autoescape

from core.config import Settings

logger = logging.getLogger("sentinel.auth.notifier")

SUBJECTS = {
    "verification": "Verify your email address",
    "welcome": "Welcome to {app_name}",
    "password_reset": "Password reset request",
    "suspicious_login": "New sign-in to your account",
    "password_changed": "Your password was changed",
}

_TEMPLATES = {
    "verification.txt": """Hello {{ name or "there" }},

Your {{ app_name }} verification code is: {{ code }}

The code expires in {{ expires_minutes }} minutes. If you did not create an
account, you can ignore this email.
""",
    "verification.html": """<h2>Verify your email address</h2>
<p>Hello {{ name or "there" }},</p>
<p>Your {{ app_name }} verification code is:</p>
<p style="font-size: 28px; letter-spacing: 6px; font-weight: bold;">{{ code }}</p>
<p>The code expires in {{ expires_minutes }} minutes. If you did not create an account, you can ignore this email.</p>
""",
    "welcome.txt": """Hello {{ name or "there" }},

Your email is verified and your {{ app_name }} account is ready.
Sign in at {{ login_link }}
""",
    "welcome.html": """<h2>Welcome to {{ app_name }}</h2>
<p>Hello {{ name or "there" }},</p>
<p>Your email is verified and your account is ready.</p>
<p><a href="{{ login_link }}">Sign in</a></p>
""",
    "password_reset.txt": """Hello {{ name or "there" }},

You requested a password reset for your {{ app_name }} account.

Open the link below to choose a new password (valid for {{ expires_minutes }} minutes):
{{ reset_link }}

If you didn't request this, you can safely ignore this email.
""",
    "password_reset.html": """<h2>Password reset request</h2>
<p>Hello {{ name or "there" }},</p>
<p>You requested a password reset for your {{ app_name }} account.
This link is valid for {{ expires_minutes }} minutes.</p>
<p><a href="{{ reset_link }}">Reset password</a></p>
<p style="word-break: break-all; color: #6b7280;">{{ reset_link }}</p>
<p>If you didn't request this, you can safely ignore this email.</p>
""",
    "suspicious_login.txt": """Hello {{ name or "there" }},

We noticed a sign-in to your {{ app_name }} account that doesn't match your usual activity.

Device:   {{ device }}
Location: {{ location }}
Address:  {{ address }}
Time:     {{ time }}

If this was you, no action is needed. If not, reset your password immediately.
""",
    "suspicious_login.html": """<h2>New sign-in to your account</h2>
<p>Hello {{ name or "there" }},</p>
<p>We noticed a sign-in to your {{ app_name }} account that doesn't match your usual activity.</p>
<ul>
  <li>Device: {{ device }}</li>
  <li>Location: {{ location }}</li>
  <li>Address: {{ address }}</li>
  <li>Time: {{ time }}</li>
</ul>
<p>If this was you, no action is needed. If not, reset your password immediately.</p>
""",
    "password_changed.txt": """Hello {{ name or "there" }},

The password for your {{ app_name }} account was changed and all devices were signed out.
If you did not do this, contact support right away.
""",
    "password_changed.html": """<h2>Your password was changed</h2>
<p>Hello {{ name or "there" }},</p>
<p>The password for your {{ app_name }} account was changed and all devices were signed out.</p>
<p>If you did not do this, contact support right away.</p>
""",
}


class Notifier:
    """Interface for out-of-band delivery. Subclasses implement send()."""

    def send(self, template: str, recipient: str, context: dict) -> bool:
        raise NotImplementedError


class SmtpNotifier(Notifier):
    """Sends templated email through an SMTP server."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._env = Environment(
            loader=DictLoader(_TEMPLATES),
            autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    def render(self, template: str, context: dict) -> tuple[str, str, str]:
        """Return (subject, text body, html body). Unknown templates raise KeyError."""
        if template not in SUBJECTS:
            raise KeyError(f"Unknown email template: {template!r}")
        values = {"app_name": self._settings.app_name, **context}
        subject = SUBJECTS[template].format(app_name=self._settings.app_name)
        text_body = self._env.get_template(f"{template}.txt").render(**values)
        html_body = self._env.get_template(f"{template}.html").render(**values)
        return subject, text_body, html_body

    def _create_message(self, to_email: str, subject: str, text_body: str, html_body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self._settings.smtp_from_name} <{self._settings.smtp_from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))
        return msg

    def send(self, template: str, recipient: str, context: dict) -> bool:
        try:
            subject, text_body, html_body = self.render(template, context)
        except (KeyError, TemplateError) as exc:
            logger.error("Could not render %s email for %s: %s", template, recipient, exc)
            return False

        if not self._settings.smtp_enabled:
            logger.warning("SMTP disabled, %s email not sent to %s", template, recipient)
            return False
        if not self._settings.smtp_host:
            logger.error("SMTP host not configured, %s email not sent to %s", template, recipient)
            return False

        message = self._create_message(recipient, subject, text_body, html_body)
        password = self._settings.smtp_password.get_secret_value() if self._settings.smtp_password else ""
        timeout = self._settings.smtp_timeout_seconds

        try:
            if self._settings.smtp_use_tls and not self._settings.smtp_starttls:
                # Implicit TLS (port 465)
                with smtplib.SMTP_SSL(
                    self._settings.smtp_host,
                    self._settings.smtp_port,
                    context=ssl.create_default_context(),
                    timeout=timeout,
                ) as server:
                    if self._settings.smtp_user:
                        server.login(self._settings.smtp_user, password)
                    server.send_message(message)
            else:
                # STARTTLS (port 587) or plain
                with smtplib.SMTP(self._settings.smtp_host, self._settings.smtp_port, timeout=timeout) as server:
                    if self._settings.smtp_starttls:
                        server.starttls(context=ssl.create_default_context())
                    if self._settings.smtp_user:
                        server.login(self._settings.smtp_user, password)
                    server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send %s email to %s: %s", template, recipient, exc)
            return False

        logger.info("Sent %s email to %s", template, recipient)
        return True
