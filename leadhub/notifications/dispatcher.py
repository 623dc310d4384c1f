from __future__ import annotations

import logging
from typing import Any

from leadhub import events
from leadhub.core.config import Settings
from leadhub.core.events import InProcessEventBus, InternalEvent, event_bus
from leadhub.metrics import observe_notification_dispatched, observe_notification_failed
from leadhub.notifications.mailer import CeleryMailer, Mailer, NullMailer, SmtpMailer
from leadhub.notifications.outbox import AssignmentNotice, Outbox, RealtimeEvent
from leadhub.notifications.realtime import Emitter, SocketIOEmitter, sio


logger = logging.getLogger("leadhub.notifications")

REALTIME_EVENT_TYPE = "notification.realtime"
ASSIGNMENT_EVENT_TYPE = "notification.lead_assignment"

_emitter: Emitter = SocketIOEmitter(sio)
_mailer: Mailer = NullMailer()


def set_emitter(emitter: Emitter) -> None:
    global _emitter
    _emitter = emitter


def get_emitter() -> Emitter:
    return _emitter


def set_mailer(mailer: Mailer) -> None:
    global _mailer
    _mailer = mailer


def get_mailer() -> Mailer:
    return _mailer


def build_mailer(settings: Settings) -> Mailer:
    backend = settings.email_backend.lower()
    if backend == "smtp":
        return SmtpMailer(settings)
    if backend == "celery":
        from leadhub.core.celery_app import celery_app

        return CeleryMailer(celery_app)
    return NullMailer()


def _on_realtime_event(event: InternalEvent) -> None:
    body: dict[str, Any] = event.payload.get("payload", {})
    name = body.get("name")
    try:
        get_emitter().emit(name, body.get("data", {}))
    except Exception as exc:
        observe_notification_failed("realtime")
        logger.warning(
            "notification.dispatch_failed",
            exc_info=True,
            extra={"channel": "realtime", "event_name": name, "error": str(exc)[:500]},
        )
        return
    observe_notification_dispatched("realtime")


def _on_assignment_notice(event: InternalEvent) -> None:
    body: dict[str, Any] = event.payload.get("payload", {})
    recipient = body.get("recipient", {})
    try:
        get_mailer().send_lead_assignment(recipient, body.get("lead", {}))
    except Exception as exc:
        observe_notification_failed("email")
        logger.warning(
            "notification.dispatch_failed",
            exc_info=True,
            extra={"channel": "email", "recipient": recipient.get("email"), "error": str(exc)[:500]},
        )
        return
    observe_notification_dispatched("email")


def register_subscribers(bus: InProcessEventBus = event_bus) -> None:
    bus.subscribe(REALTIME_EVENT_TYPE, _on_realtime_event)
    bus.subscribe(ASSIGNMENT_EVENT_TYPE, _on_assignment_notice)


def dispatch_outbox(outbox: Outbox) -> int:
    """Publish every outbox message in order; returns how many were handed to the bus."""

    dispatched = 0
    for message in outbox.messages:
        if isinstance(message, RealtimeEvent):
            envelope = events.build_envelope(
                REALTIME_EVENT_TYPE,
                {"name": message.name, "data": message.payload},
                actor_user_id=outbox.actor_id,
            )
        elif isinstance(message, AssignmentNotice):
            envelope = events.build_envelope(
                ASSIGNMENT_EVENT_TYPE,
                {"recipient": message.recipient, "lead": message.lead},
                actor_user_id=outbox.actor_id,
            )
        else:
            continue
        if outbox.correlation_id is not None:
            envelope["correlation_id"] = outbox.correlation_id
        events.publish(envelope)
        dispatched += 1
    return dispatched
