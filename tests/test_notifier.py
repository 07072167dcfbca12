"""Unit tests for auth/notifier.py -- SmtpNotifier rendering and delivery outcomes.

Covers:
- every template renders a subject, a text part and an HTML part
- HTML values are escaped, text values are not
- a missing template value or an unknown template fails loudly
- SMTP disabled or unconfigured returns False without connecting
- a render failure inside send() returns False instead of raising
- STARTTLS delivery path, and a server error reported as False
"""

import smtplib
from unittest.mock import MagicMock, patch

import pytest
from jinja2 import UndefinedError

from auth.notifier import SUBJECTS, SmtpNotifier
from conftest import make_settings

CONTEXTS = {
    "verification": {"name": "Ama", "code": "123456", "expires_minutes": 30},
    "welcome": {"name": "Ama", "login_link": "http://localhost:3000/login"},
    "password_reset": {"name": "Ama", "reset_link": "http://localhost:3000/reset-password?token=abc", "expires_minutes": 30},
    "suspicious_login": {
        "name": "Ama",
        "device": "Chrome 120 on macOS",
        "location": "London, England, GB",
        "address": "203.0.113.50",
        "time": "2026-03-02 09:00 UTC",
    },
    "password_changed": {"name": "Ama"},
}


def _smtp_settings(**overrides):
    values = {"smtp_enabled": True, "smtp_host": "mail.example.com", "smtp_user": "mailer", "app_name": "Sentinel"}
    values.update(overrides)
    return make_settings(**values)


class TestRender:
    @pytest.mark.parametrize("template", sorted(SUBJECTS))
    def test_every_template_renders(self, template):
        subject, text, html = SmtpNotifier(make_settings()).render(template, CONTEXTS[template])
        assert subject
        assert "Ama" in text
        assert "Ama" in html

    def test_verification_contains_code(self):
        _, text, html = SmtpNotifier(make_settings()).render("verification", CONTEXTS["verification"])
        assert "123456" in text
        assert "123456" in html
        assert "30 minutes" in text

    def test_welcome_subject_uses_app_name(self):
        subject, _, _ = SmtpNotifier(make_settings(app_name="Acme")).render("welcome", CONTEXTS["welcome"])
        assert subject == "Welcome to Acme"

    def test_html_is_escaped(self):
        ctx = dict(CONTEXTS["password_changed"], name="<script>x</script>")
        _, text, html = SmtpNotifier(make_settings()).render("password_changed", ctx)
        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "<script>" in text

    def test_missing_value_raises(self):
        with pytest.raises(UndefinedError):
            SmtpNotifier(make_settings()).render("verification", {"name": "Ama"})

    def test_unknown_template_raises(self):
        with pytest.raises(KeyError):
            SmtpNotifier(make_settings()).render("newsletter", {"name": "Ama"})


class TestSend:
    def test_missing_template_value_returns_false_without_connecting(self):
        with patch("auth.notifier.smtplib.SMTP") as smtp:
            assert SmtpNotifier(_smtp_settings()).send("verification", "ama@example.com", {"name": "Ama"}) is False
        smtp.assert_not_called()

    def test_unknown_template_returns_false(self):
        with patch("auth.notifier.smtplib.SMTP") as smtp:
            assert SmtpNotifier(_smtp_settings()).send("newsletter", "ama@example.com", {"name": "Ama"}) is False
        smtp.assert_not_called()

    def test_disabled_returns_false_without_connecting(self):
        with patch("auth.notifier.smtplib.SMTP") as smtp:
            assert SmtpNotifier(make_settings(smtp_enabled=False)).send(
                "password_changed", "ama@example.com", CONTEXTS["password_changed"]
            ) is False
        smtp.assert_not_called()

    def test_missing_host_returns_false(self):
        with patch("auth.notifier.smtplib.SMTP") as smtp:
            assert SmtpNotifier(_smtp_settings(smtp_host="")).send(
                "password_changed", "ama@example.com", CONTEXTS["password_changed"]
            ) is False
        smtp.assert_not_called()

    def test_starttls_delivery(self):
        server = MagicMock()
        with patch("auth.notifier.smtplib.SMTP") as smtp:
            smtp.return_value.__enter__.return_value = server
            sent = SmtpNotifier(_smtp_settings()).send("verification", "ama@example.com", CONTEXTS["verification"])

        assert sent is True
        smtp.assert_called_once()
        assert smtp.call_args.args[:2] == ("mail.example.com", 587)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer", "")
        message = server.send_message.call_args.args[0]
        assert message["To"] == "ama@example.com"
        assert message["Subject"] == "Verify your email address"

    def test_implicit_tls_delivery(self):
        server = MagicMock()
        with patch("auth.notifier.smtplib.SMTP_SSL") as smtp_ssl:
            smtp_ssl.return_value.__enter__.return_value = server
            sent = SmtpNotifier(_smtp_settings(smtp_use_tls=True, smtp_starttls=False, smtp_port=465)).send(
                "welcome", "ama@example.com", CONTEXTS["welcome"]
            )
        assert sent is True
        server.send_message.assert_called_once()

    def test_server_error_returns_false(self):
        with patch("auth.notifier.smtplib.SMTP") as smtp:
            smtp.return_value.__enter__.return_value.send_message.side_effect = smtplib.SMTPServerDisconnected("gone")
            sent = SmtpNotifier(_smtp_settings()).send("welcome", "ama@example.com", CONTEXTS["welcome"])
        assert sent is False

    def test_connection_refused_returns_false(self):
        with patch("auth.notifier.smtplib.SMTP", side_effect=ConnectionRefusedError()):
            sent = SmtpNotifier(_smtp_settings()).send("welcome", "ama@example.com", CONTEXTS["welcome"])
        assert sent is False
