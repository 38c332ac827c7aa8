"""
Audit Pack
Email Service.

Sends transactional mail (password reset). When SMTP is not configured the
message is logged instead of sent (dev/test mode).

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app

from auditpack.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


_TEMPLATES: dict[str, dict[str, str]] = {
    "password_reset": {
        "subject": "[Audit Pack] Reset your password",
        "html": """
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2 style="color: #1e293b;">Password reset</h2>
            <p style="color: #475569;">Hi {full_name},</p>
            <p style="color: #475569;">
                Someone asked to reset the password of your Audit Pack account.
                The link below is valid for {expires_minutes} minutes.
            </p>
            <p><a href="{reset_link}">{reset_link}</a></p>
            <p style="color: #94a3b8; font-size: 12px;">
                If you did not ask for this, ignore this email.
            </p>
        </div>
        """,
    },
}


class EmailService:
    """SMTP sender with named templates; log-only when MAIL_SERVER is unset."""

    @staticmethod
    def is_configured() -> bool:
        return bool(current_app.config.get("MAIL_SERVER"))

    @classmethod
    def send(cls, *, to_email: str, to_name: str | None = None, subject: str, html_body: str) -> bool:
        """
        Send one email.

        Returns True when handed to SMTP, False in log-only mode.
        Raises ExternalServiceError when the SMTP exchange fails.
        """
        if not cls.is_configured():
            logger.info("Email (dev mode): to=%s subject='%s'", to_email, subject)
            logger.debug("Email body (dev mode):\n%s", html_body)
            return False

        try:
            cls._send_smtp(to_email=to_email, to_name=to_name, subject=subject, html_body=html_body)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email failed: to=%s error=%s", to_email, exc)
            raise ExternalServiceError("mailer", "Email could not be sent") from exc
        logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        return True

    @classmethod
    def send_from_template(cls, *, to_email: str, to_name: str | None = None,
                           template_name: str, context: dict[str, Any]) -> bool:
        template = _TEMPLATES.get(template_name)
        if not template:
            raise KeyError(f"Email template not found: {template_name}")
        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=template["subject"].format_map(_SafeDict(context)),
            html_body=template["html"].format_map(_SafeDict(context)),
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None, subject: str, html_body: str) -> None:
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, cfg.get("MAIL_PORT", 587), timeout=30) as smtp:
            if cfg.get("MAIL_USE_TLS", True):
                smtp.starttls()
            if cfg.get("MAIL_USERNAME") and cfg.get("MAIL_PASSWORD"):
                smtp.login(cfg["MAIL_USERNAME"], cfg["MAIL_PASSWORD"])
            smtp.send_message(msg)


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
