from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from leadhub.crm.models import Activity, Lead
from leadhub.platform.security.context import Actor


@dataclass(frozen=True, slots=True)
class LeadScope:
    """Lead ids an actor may see; ``lead_ids is None`` means unrestricted."""

    lead_ids: frozenset[uuid.UUID] | None = None

    @property
    def unrestricted(self) -> bool:
        return self.lead_ids is None


UNRESTRICTED = LeadScope()


def visibility_scope(session: Session, actor: Actor) -> LeadScope:
    """Resolve the actor's visible leads against current assignment data (never cached)."""

    if actor.is_privileged:
        return UNRESTRICTED
    lead_ids = session.scalars(select(Lead.id).where(Lead.assigned_to_id == actor.id)).all()
    return LeadScope(lead_ids=frozenset(lead_ids))


def apply_lead_scope(query: Select[Any], scope: LeadScope) -> Select[Any]:
    if scope.unrestricted:
        return query
    return query.where(Lead.id.in_(sorted(scope.lead_ids or ())))


def apply_activity_scope(query: Select[Any], scope: LeadScope) -> Select[Any]:
    if scope.unrestricted:
        return query
    return query.where(Activity.lead_id.in_(sorted(scope.lead_ids or ())))
