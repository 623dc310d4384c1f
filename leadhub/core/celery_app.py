from typing import Any

from celery import Celery

from leadhub.core.config import get_settings
from leadhub.notifications.mailer import SmtpMailer

settings = get_settings()

celery_app = Celery("leadhub", broker=settings.redis_url, backend=settings.redis_url)


@celery_app.task(name="leadhub.tasks.send_lead_assignment_email")
def send_lead_assignment_email(recipient: dict[str, Any], lead: dict[str, Any]) -> bool:
    return SmtpMailer(get_settings()).send_lead_assignment(recipient, lead)


@celery_app.task(name="leadhub.tasks.send_status_update_email")
def send_status_update_email(recipient: dict[str, Any], lead: dict[str, Any], old_status: str, new_status: str) -> bool:
    return SmtpMailer(get_settings()).send_status_update(recipient, lead, old_status, new_status)


@celery_app.task(name="leadhub.tasks.send_activity_notification_email")
def send_activity_notification_email(
    recipient: dict[str, Any],
    activity: dict[str, Any],
    lead: dict[str, Any],
) -> bool:
    return SmtpMailer(get_settings()).send_activity_notification(recipient, activity, lead)
