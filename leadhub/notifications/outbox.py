from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar


T = TypeVar("T")


@dataclass(frozen=True)
class RealtimeEvent:
    name: str
    payload: dict[str, Any]


@dataclass(frozen=True)
class AssignmentNotice:
    """Email to the new assignee of a lead. Both parts are JSON-ready dicts."""

    recipient: dict[str, Any]
    lead: dict[str, Any]


OutboxMessage = RealtimeEvent | AssignmentNotice


@dataclass
class Outbox:
    """Side effects collected during a mutation, drained only after commit."""

    actor_id: str | None = None
    correlation_id: str | None = None
    messages: list[OutboxMessage] = field(default_factory=list)

    def emit(self, name: str, payload: dict[str, Any]) -> None:
        self.messages.append(RealtimeEvent(name=name, payload=payload))

    def notify_assignment(self, recipient: dict[str, Any], lead: dict[str, Any]) -> None:
        self.messages.append(AssignmentNotice(recipient=recipient, lead=lead))

    @property
    def realtime_events(self) -> list[RealtimeEvent]:
        return [item for item in self.messages if isinstance(item, RealtimeEvent)]

    @property
    def assignment_notices(self) -> list[AssignmentNotice]:
        return [item for item in self.messages if isinstance(item, AssignmentNotice)]

    def __len__(self) -> int:
        return len(self.messages)


@dataclass
class MutationResult(Generic[T]):
    entity: T
    outbox: Outbox
