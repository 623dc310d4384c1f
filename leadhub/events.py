from __future__ import annotations

import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any

from leadhub.context import get_correlation_id
from leadhub.core.config import get_settings
from leadhub.core.events import event_bus

# Most recent envelopes only; older entries fall off the left.
published_events: deque[dict[str, Any]] = deque(maxlen=get_settings().event_log_size)


def build_envelope(event_type: str, payload: dict[str, Any], *, actor_user_id: str | None) -> dict[str, Any]:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "actor_user_id": actor_user_id,
        "correlation_id": get_correlation_id(),
        "version": 1,
        "payload": payload,
    }


def publish(envelope: dict[str, Any]) -> int:
    """Record the envelope and hand it to the in-process bus; returns the number of failed subscribers."""

    if envelope.get("correlation_id") is None:
        envelope["correlation_id"] = get_correlation_id()

    published_events.append(envelope)
    event_type = envelope.get("event_type")
    if isinstance(event_type, str) and event_type:
        return event_bus.publish(event_type, envelope)
    return 0
