from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from html import escape
from typing import Any, Protocol

from leadhub.core.config import Settings


logger = logging.getLogger("leadhub.email")


class Mailer(Protocol):
    def send_lead_assignment(self, recipient: dict[str, Any], lead: dict[str, Any]) -> bool: ...

    def send_status_update(
        self,
        recipient: dict[str, Any],
        lead: dict[str, Any],
        old_status: str,
        new_status: str,
    ) -> bool: ...

    def send_activity_notification(
        self,
        recipient: dict[str, Any],
        activity: dict[str, Any],
        lead: dict[str, Any],
    ) -> bool: ...


def _full_name(record: dict[str, Any]) -> str:
    return f"{record.get('first_name', '')} {record.get('last_name', '')}".strip()


def _field(label: str, value: Any) -> str:
    shown = "N/A" if value in (None, "") else value
    return f"<p><strong>{label}:</strong> {escape(str(shown))}</p>"


def _wrap(heading: str, greeting_name: str, intro: str, fields: list[str], closing: str = "") -> str:
    body = "".join(fields)
    closing_html = f"<p>{closing}</p>" if closing else ""
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f"<h2>{heading}</h2>"
        f"<p>Hello {escape(greeting_name)},</p>"
        f"<p>{intro}</p>"
        '<div style="background-color: #f5f5f5; padding: 15px; border-radius: 5px; margin: 20px 0;">'
        f"{body}</div>"
        f"{closing_html}"
        "<p>Best regards,<br>CRM System</p>"
        "</div>"
    )


def render_lead_assignment(recipient: dict[str, Any], lead: dict[str, Any]) -> tuple[str, str]:
    lead_name = _full_name(lead)
    html = _wrap(
        "New Lead Assigned",
        _full_name(recipient),
        "A new lead has been assigned to you:",
        [
            _field("Name", lead_name),
            _field("Email", lead.get("email")),
            _field("Phone", lead.get("phone")),
            _field("Company", lead.get("company")),
            _field("Status", lead.get("status")),
            _field("Estimated Value", f"${lead.get('estimated_value') or 0}"),
        ],
        closing="Please follow up with this lead as soon as possible.",
    )
    return f"New Lead Assigned: {lead_name}", html


def render_status_update(
    recipient: dict[str, Any],
    lead: dict[str, Any],
    old_status: str,
    new_status: str,
) -> tuple[str, str]:
    lead_name = _full_name(lead)
    html = _wrap(
        "Lead Status Updated",
        _full_name(recipient),
        f'The status of lead "{escape(lead_name)}" has been updated:',
        [_field("Lead", lead_name), _field("Old Status", old_status), _field("New Status", new_status)],
    )
    return f"Lead Status Updated: {lead_name}", html


def render_activity_notification(
    recipient: dict[str, Any],
    activity: dict[str, Any],
    lead: dict[str, Any],
) -> tuple[str, str]:
    lead_name = _full_name(lead)
    html = _wrap(
        "New Activity",
        _full_name(recipient),
        f'A new activity has been added to lead "{escape(lead_name)}":',
        [
            _field("Type", activity.get("type")),
            _field("Title", activity.get("title")),
            _field("Description", activity.get("description")),
            _field("Lead", lead_name),
        ],
    )
    return f"New Activity: {activity.get('title', '')}", html


class SmtpMailer:
    """Sends through an SMTP relay; an unconfigured relay or a transport error only logs."""

    def __init__(self, settings: Settings) -> None:
        self._host = settings.smtp_host
        self._port = settings.smtp_port
        self._user = settings.smtp_user
        self._password = settings.smtp_password
        self._from = settings.email_from or settings.smtp_user
        self._from_name = settings.email_from_name

    @property
    def configured(self) -> bool:
        return bool(self._user and self._password)

    def send_lead_assignment(self, recipient: dict[str, Any], lead: dict[str, Any]) -> bool:
        subject, html = render_lead_assignment(recipient, lead)
        return self._deliver(recipient, subject, html, kind="lead_assignment")

    def send_status_update(
        self,
        recipient: dict[str, Any],
        lead: dict[str, Any],
        old_status: str,
        new_status: str,
    ) -> bool:
        subject, html = render_status_update(recipient, lead, old_status, new_status)
        return self._deliver(recipient, subject, html, kind="status_update")

    def send_activity_notification(
        self,
        recipient: dict[str, Any],
        activity: dict[str, Any],
        lead: dict[str, Any],
    ) -> bool:
        subject, html = render_activity_notification(recipient, activity, lead)
        return self._deliver(recipient, subject, html, kind="activity_notification")

    def _deliver(self, recipient: dict[str, Any], subject: str, html: str, *, kind: str) -> bool:
        to_email = recipient.get("email")
        if not self.configured:
            logger.warning("email.skipped", extra={"channel": kind, "recipient": to_email})
            return False
        if not to_email:
            logger.warning("email.skipped", extra={"channel": kind, "error": "recipient has no email"})
            return False

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{self._from_name} <{self._from}>"
        msg["To"] = to_email
        msg.set_content("Your email client does not support HTML.")
        msg.add_alternative(html, subtype="html")

        try:
            with smtplib.SMTP(self._host, self._port, timeout=10) as smtp:
                smtp.ehlo()
                smtp.starttls()
                smtp.login(self._user, self._password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("email.failed", extra={"channel": kind, "recipient": to_email, "error": str(exc)[:500]})
            return False

        logger.info("email.sent", extra={"channel": kind, "recipient": to_email})
        return True


class CeleryMailer:
    """Hands messages to a Celery worker; delivery then happens through ``SmtpMailer``."""

    task_names = {
        "lead_assignment": "leadhub.tasks.send_lead_assignment_email",
        "status_update": "leadhub.tasks.send_status_update_email",
        "activity_notification": "leadhub.tasks.send_activity_notification_email",
    }

    def __init__(self, celery_app: Any) -> None:
        self._app = celery_app

    def send_lead_assignment(self, recipient: dict[str, Any], lead: dict[str, Any]) -> bool:
        return self._enqueue("lead_assignment", [recipient, lead])

    def send_status_update(
        self,
        recipient: dict[str, Any],
        lead: dict[str, Any],
        old_status: str,
        new_status: str,
    ) -> bool:
        return self._enqueue("status_update", [recipient, lead, old_status, new_status])

    def send_activity_notification(
        self,
        recipient: dict[str, Any],
        activity: dict[str, Any],
        lead: dict[str, Any],
    ) -> bool:
        return self._enqueue("activity_notification", [recipient, activity, lead])

    def _enqueue(self, kind: str, args: list[Any]) -> bool:
        self._app.send_task(self.task_names[kind], args=args)
        return True


class NullMailer:
    def send_lead_assignment(self, recipient: dict[str, Any], lead: dict[str, Any]) -> bool:
        logger.info("email.skipped", extra={"channel": "lead_assignment", "recipient": recipient.get("email")})
        return False

    def send_status_update(
        self,
        recipient: dict[str, Any],
        lead: dict[str, Any],
        old_status: str,
        new_status: str,
    ) -> bool:
        return False

    def send_activity_notification(
        self,
        recipient: dict[str, Any],
        activity: dict[str, Any],
        lead: dict[str, Any],
    ) -> bool:
        return False
