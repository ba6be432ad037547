"""Outbound e-mail notifications.

``EmailNotifier.send`` never raises: every failure, including a missing
template, is returned as ``SendResult(success=False, error=...)`` so that
callers can treat mail as a best-effort side effect.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any, Callable, Optional

from backoffice.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: Optional[str] = None


# ── Templates ───────────────────────────────────────────────────────
# Each template takes the payload dict and returns (subject, body).


def _new_employee(data: dict[str, Any]) -> tuple[str, str]:
    return (
        "Welcome to Our Company - Your Employee Account",
        (
            f"Dear {data['full_name']},\n\n"
            "Your employee account has been created.\n\n"
            f"Temporary Employee ID: {data['temp_employee_id']}\n"
            f"Temporary Password: {data['temp_password']}\n"
            f"Login URL: {settings.LOGIN_URL}\n\n"
            "Next steps:\n"
            "  1. Log in with your temporary credentials\n"
            "  2. Set a new password when prompted\n"
            "  3. Complete KYC verification by uploading the required documents\n"
            "  4. Wait for KYC approval to receive your permanent employee ID\n\n"
            "Best regards,\nHR Team\n"
        ),
    )


def _kyc_approved(data: dict[str, Any]) -> tuple[str, str]:
    return (
        "KYC Approved - Your Permanent Employee Account is Active",
        (
            f"Dear {data['full_name']},\n\n"
            "Your KYC verification has been approved.\n\n"
            f"Permanent Employee ID: {data['permanent_employee_id']}\n"
            f"Password: {data['password']}\n"
            f"Login URL: {settings.LOGIN_URL}\n\n"
            "Attendance, leave and the full dashboard are now available.\n\n"
            "Best regards,\nHR Team\n"
        ),
    )


def _kyc_reminder(data: dict[str, Any]) -> tuple[str, str]:
    return (
        "Reminder: Complete Your KYC Verification",
        (
            f"Dear {data['full_name']},\n\n"
            "This is a reminder to complete your KYC verification.\n"
            "Please log in and upload a government ID, address proof and a "
            "recent photograph.\n\n"
            "Best regards,\nHR Team\n"
        ),
    )


TEMPLATES: dict[str, Callable[[dict[str, Any]], tuple[str, str]]] = {
    "new_employee": _new_employee,
    "kyc_approved": _kyc_approved,
    "kyc_reminder": _kyc_reminder,
}


# ── Sender ──────────────────────────────────────────────────────────


class EmailNotifier:
    """SMTP notifier; blocking smtplib calls run in a worker thread."""

    def __init__(
        self,
        *,
        enabled: Optional[bool] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.enabled = settings.MAIL_ENABLED if enabled is None else enabled
        self.timeout = settings.MAIL_TIMEOUT_SECONDS if timeout is None else timeout

    async def send(
        self,
        to_email: str,
        template_name: str,
        payload: dict[str, Any],
    ) -> SendResult:
        template = TEMPLATES.get(template_name)
        if template is None:
            logger.error("Unknown mail template %r", template_name)
            return SendResult(success=False, error=f"unknown template {template_name!r}")

        try:
            subject, body = template(payload)
        except KeyError as exc:
            logger.error("Mail template %r missing field %s", template_name, exc)
            return SendResult(success=False, error=f"missing template field {exc}")

        if not self.enabled:
            logger.info("Mail disabled; not sending %r to %s", template_name, to_email)
            return SendResult(success=False, error="mail disabled")

        try:
            # Header assignment rejects line breaks with ValueError
            message = EmailMessage()
            message["From"] = settings.MAIL_FROM
            message["To"] = to_email
            message["Subject"] = subject
            message.set_content(body)
            await asyncio.wait_for(
                asyncio.to_thread(self._deliver, message),
                timeout=self.timeout,
            )
        except (smtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
            logger.warning("Sending %r to %s failed: %s", template_name, to_email, exc)
            return SendResult(success=False, error=str(exc) or type(exc).__name__)
        except Exception as exc:
            logger.exception("Unexpected error sending %r to %s", template_name, to_email)
            return SendResult(success=False, error=str(exc) or type(exc).__name__)

        logger.info("Sent %r to %s", template_name, to_email)
        return SendResult(success=True)

    def _deliver(self, message: EmailMessage) -> None:
        smtp_cls = smtplib.SMTP_SSL if settings.SMTP_USE_SSL else smtplib.SMTP
        with smtp_cls(settings.SMTP_HOST, settings.SMTP_PORT, timeout=self.timeout) as smtp:
            if settings.SMTP_USER:
                smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            smtp.send_message(message)


_notifier = EmailNotifier()


def get_notifier() -> EmailNotifier:
    """FastAPI dependency: the process-wide notifier (overridden in tests)."""
    return _notifier
