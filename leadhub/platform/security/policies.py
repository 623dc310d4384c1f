from __future__ import annotations

from typing import Protocol
import uuid

from leadhub.core.errors import Forbidden
from leadhub.metrics import observe_access_denied
from leadhub.platform.security.context import Actor


class LeadLike(Protocol):
    assigned_to_id: uuid.UUID | None
    created_by_id: uuid.UUID


class ActivityLike(Protocol):
    user_id: uuid.UUID
    lead_id: uuid.UUID


def can_view_lead(actor: Actor, lead: LeadLike) -> bool:
    if actor.is_privileged:
        return True
    return lead.assigned_to_id == actor.id


def can_mutate_lead(actor: Actor, lead: LeadLike) -> bool:
    if actor.is_privileged:
        return True
    return lead.assigned_to_id == actor.id


def can_delete_lead(actor: Actor, lead: LeadLike) -> bool:
    if actor.is_privileged:
        return True
    return lead.created_by_id == actor.id


def can_view_activity(actor: Actor, activity: ActivityLike, lead: LeadLike) -> bool:
    if actor.is_privileged or activity.user_id == actor.id:
        return True
    return can_view_lead(actor, lead)


def can_mutate_activity(actor: Actor, activity: ActivityLike) -> bool:
    # Managers get no override here: only the author or an Admin may edit an activity.
    return actor.is_admin or activity.user_id == actor.id


def can_view_team_performance(actor: Actor) -> bool:
    return actor.is_privileged


def forbidden(resource: str, action: str, message: str = "Access denied") -> Forbidden:
    """Translate a policy denial into the error callers raise."""

    observe_access_denied(resource=resource, action=action)
    return Forbidden(message, details={"resource": resource, "action": action})
