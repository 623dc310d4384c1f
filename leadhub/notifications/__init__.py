from leadhub.notifications.dispatcher import (
    build_mailer,
    dispatch_outbox,
    get_emitter,
    get_mailer,
    register_subscribers,
    set_emitter,
    set_mailer,
)
from leadhub.notifications.outbox import AssignmentNotice, MutationResult, Outbox, RealtimeEvent

__all__ = [
    "AssignmentNotice",
    "MutationResult",
    "Outbox",
    "RealtimeEvent",
    "build_mailer",
    "dispatch_outbox",
    "get_emitter",
    "get_mailer",
    "register_subscribers",
    "set_emitter",
    "set_mailer",
]
