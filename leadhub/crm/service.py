from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import Select, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from leadhub.core.auth import MAX_PASSWORD_BYTES, create_access_token, hash_password, verify_password
from leadhub.core.config import get_settings
from leadhub.core.errors import Conflict, Internal, NotFound, ServiceError, Unauthorized, ValidationFailed
from leadhub.crm.models import ACTIVITY_TYPES, LEAD_STATUSES, ROLES, Activity, ActivityType, Lead, LeadStatus, Role, User, utcnow
from leadhub.crm.schemas import (
    ActivityCreate,
    ActivityListResponse,
    ActivityRead,
    ActivityUpdate,
    AuthResponse,
    LeadBrief,
    LeadCreate,
    LeadDetailRead,
    LeadListResponse,
    LeadRead,
    LeadUpdate,
    LoginRequest,
    Pagination,
    RegisterRequest,
    UserCreate,
    UserDetailRead,
    UserListResponse,
    UserRead,
    UserSummary,
    UserUpdate,
)
from leadhub.metrics import observe_activity_mutation, observe_lead_mutation
from leadhub.notifications.outbox import MutationResult, Outbox
from leadhub.otel import get_tracer
from leadhub.platform.security import (
    Actor,
    apply_activity_scope,
    apply_lead_scope,
    can_delete_lead,
    can_mutate_activity,
    can_mutate_lead,
    can_view_activity,
    can_view_lead,
    forbidden,
    visibility_scope,
)


logger = logging.getLogger("leadhub.crm")
tracer = get_tracer("leadhub.crm")

# Newest first; equal timestamps fall back to the primary key.
ACTIVITY_NEWEST_FIRST = (Activity.created_at.desc(), Activity.id.desc())


def resolve_page(page: int | None, limit: int | None) -> tuple[int, int]:
    settings = get_settings()
    resolved_page = max(page or 1, 1)
    resolved_limit = min(max(limit or settings.default_page_size, 1), settings.max_page_size)
    return resolved_page, resolved_limit


def build_pagination(total: int, page: int, limit: int) -> Pagination:
    return Pagination(total=total, page=page, limit=limit, pages=math.ceil(total / limit) if limit else 0)


def _count(session: Session, stmt: Select[Any]) -> int:
    return int(session.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0)


def _sort_clause(columns: dict[str, Any], sort_by: str | None, sort_order: str | None) -> Any:
    key = sort_by or "created_at"
    column = columns.get(key)
    if column is None:
        raise ValidationFailed.for_field("sort_by", f"sort_by must be one of: {', '.join(columns)}")
    direction = (sort_order or "desc").lower()
    if direction not in {"asc", "desc"}:
        raise ValidationFailed.for_field("sort_order", "sort_order must be one of: asc, desc")
    return column.asc() if direction == "asc" else column.desc()


def validate_lead_status(value: str | None) -> str:
    if value not in LEAD_STATUSES:
        raise ValidationFailed.for_field("status", f"Status must be one of: {', '.join(LEAD_STATUSES)}")
    return value


def validate_activity_type(value: str | None) -> str:
    if value not in ACTIVITY_TYPES:
        raise ValidationFailed.for_field("type", f"Type must be one of: {', '.join(ACTIVITY_TYPES)}")
    return value


def validate_role(role: str) -> str:
    if role not in ROLES:
        raise ValidationFailed.for_field("role", f"Role must be one of: {', '.join(ROLES)}")
    return role


def ensure_email_free(session: Session, email: str) -> None:
    if session.scalar(select(User.id).where(User.email == email)) is not None:
        raise Conflict("Email is already registered", details={"field": "email"})


def _check_password_bytes(password: str) -> None:
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationFailed.for_field("password", f"Password must be at most {MAX_PASSWORD_BYTES} bytes")


@contextmanager
def _transaction(session: Session) -> Iterator[None]:
    """Commit the enclosed writes, or roll all of them back."""

    try:
        yield
        session.commit()
    except ServiceError:
        session.rollback()
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("crm.persistence_failed", extra={"error": str(exc)[:500]})
        raise Internal("Failed to persist changes") from exc


def _actor_ref(actor: Actor) -> dict[str, Any]:
    return {"id": str(actor.id), "email": actor.email, "role": actor.role}


def _recipient(user: User) -> dict[str, Any]:
    return {
        "id": str(user.id),
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
    }


def _new_outbox(actor: Actor) -> Outbox:
    return Outbox(actor_id=str(actor.id), correlation_id=actor.correlation_id)


def user_summary(user: User | None) -> UserSummary | None:
    if user is None:
        return None
    return UserSummary.model_validate(user)


def lead_to_read(lead: Lead) -> LeadRead:
    return LeadRead.model_validate(
        {
            "id": lead.id,
            "first_name": lead.first_name,
            "last_name": lead.last_name,
            "email": lead.email,
            "phone": lead.phone,
            "company": lead.company,
            "title": lead.title,
            "status": lead.status,
            "source": lead.source,
            "estimated_value": float(lead.estimated_value or 0),
            "notes": lead.notes,
            "assigned_to_id": lead.assigned_to_id,
            "created_by_id": lead.created_by_id,
            "assigned_to": user_summary(lead.assigned_to),
            "created_by": user_summary(lead.created_by),
            "created_at": lead.created_at,
            "updated_at": lead.updated_at,
            "row_version": lead.row_version,
        }
    )


def activity_to_read(activity: Activity, *, include_lead: bool = True) -> ActivityRead:
    return ActivityRead.model_validate(
        {
            "id": activity.id,
            "type": activity.type,
            "title": activity.title,
            "description": activity.description,
            "lead_id": activity.lead_id,
            "user_id": activity.user_id,
            "scheduled_at": activity.scheduled_at,
            "metadata": dict(activity.details or {}),
            "created_at": activity.created_at,
            "updated_at": activity.updated_at,
            "lead": LeadBrief.model_validate(activity.lead) if include_lead and activity.lead is not None else None,
            "user": user_summary(activity.user),
        }
    )


class LeadService:
    sortable_fields = {
        "created_at": Lead.created_at,
        "updated_at": Lead.updated_at,
        "first_name": Lead.first_name,
        "last_name": Lead.last_name,
        "company": Lead.company,
        "status": Lead.status,
        "estimated_value": Lead.estimated_value,
    }

    def list_leads(
        self,
        session: Session,
        actor: Actor,
        *,
        filters: dict[str, Any],
        page: int | None = None,
        limit: int | None = None,
        sort_by: str | None = None,
        sort_order: str | None = None,
    ) -> LeadListResponse:
        page, limit = resolve_page(page, limit)
        order_clause = _sort_clause(self.sortable_fields, sort_by, sort_order)

        stmt: Select[tuple[Lead]] = apply_lead_scope(select(Lead), visibility_scope(session, actor))
        if filters.get("status"):
            stmt = stmt.where(Lead.status == filters["status"])
        if filters.get("assigned_to_id"):
            stmt = stmt.where(Lead.assigned_to_id == filters["assigned_to_id"])
        if filters.get("search"):
            pattern = f"%{filters['search']}%"
            stmt = stmt.where(
                or_(
                    Lead.first_name.ilike(pattern),
                    Lead.last_name.ilike(pattern),
                    Lead.email.ilike(pattern),
                    Lead.company.ilike(pattern),
                )
            )

        total = _count(session, stmt)
        leads = session.scalars(
            stmt.options(selectinload(Lead.assigned_to), selectinload(Lead.created_by))
            .order_by(order_clause, Lead.id)
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return LeadListResponse(leads=[lead_to_read(item) for item in leads], pagination=build_pagination(total, page, limit))

    def get_lead(self, session: Session, actor: Actor, lead_id: uuid.UUID) -> LeadDetailRead:
        lead = self._get_lead(session, lead_id)
        if not can_view_lead(actor, lead):
            raise forbidden("lead", "view")

        activities = session.scalars(
            select(Activity)
            .options(selectinload(Activity.user))
            .where(Activity.lead_id == lead.id)
            .order_by(*ACTIVITY_NEWEST_FIRST)
        ).all()
        return LeadDetailRead.model_validate(
            {
                **lead_to_read(lead).model_dump(),
                "activities": [activity_to_read(item, include_lead=False) for item in activities],
            }
        )

    def create_lead(self, session: Session, actor: Actor, dto: LeadCreate) -> MutationResult[LeadRead]:
        status = validate_lead_status(dto.status) if dto.status is not None else LeadStatus.NEW.value
        if dto.assigned_to_id is not None:
            self._resolve_assignee(session, dto.assigned_to_id)

        with tracer.start_as_current_span("lead.create") as span:
            with _transaction(session):
                lead = Lead(
                    first_name=dto.first_name,
                    last_name=dto.last_name,
                    email=str(dto.email),
                    phone=dto.phone,
                    company=dto.company,
                    title=dto.title,
                    status=status,
                    source=dto.source,
                    estimated_value=dto.estimated_value if dto.estimated_value is not None else Decimal("0"),
                    notes=dto.notes,
                    assigned_to_id=dto.assigned_to_id or actor.id,
                    created_by_id=actor.id,
                )
                session.add(lead)
                session.flush()
                session.add(
                    Activity(
                        type=ActivityType.STATUS_CHANGE.value,
                        title="Lead Created",
                        description=f'Lead "{lead.full_name}" was created',
                        lead_id=lead.id,
                        user_id=actor.id,
                        details={"status": lead.status},
                    )
                )
            span.set_attribute("lead.id", str(lead.id))

        created = self._reload(session, lead.id)
        lead_read = lead_to_read(created)
        lead_payload = lead_read.model_dump(mode="json")

        outbox = _new_outbox(actor)
        outbox.emit("lead:created", {"lead": lead_payload, "created_by": _actor_ref(actor)})
        if created.assigned_to_id != actor.id and created.assigned_to is not None:
            outbox.notify_assignment(_recipient(created.assigned_to), lead_payload)

        observe_lead_mutation("create")
        logger.info(
            "lead.created",
            extra={"lead_id": str(created.id), "actor_id": str(actor.id), "assigned_to_id": str(created.assigned_to_id)},
        )
        return MutationResult(entity=lead_read, outbox=outbox)

    def update_lead(
        self,
        session: Session,
        actor: Actor,
        lead_id: uuid.UUID,
        dto: LeadUpdate,
    ) -> MutationResult[LeadRead]:
        lead = self._get_lead(session, lead_id)
        if not can_mutate_lead(actor, lead):
            raise forbidden("lead", "update")

        payload = dto.model_dump(exclude_unset=True)
        expected_version = payload.pop("row_version", None)
        for required in ("first_name", "last_name", "email", "status"):
            if required in payload and payload[required] is None:
                raise ValidationFailed.for_field(required, f"{required} cannot be null")
        if "status" in payload:
            validate_lead_status(payload["status"])
        if "email" in payload:
            payload["email"] = str(payload["email"])

        new_assignee: User | None = None
        if payload.get("assigned_to_id") is not None:
            new_assignee = self._resolve_assignee(session, payload["assigned_to_id"])

        old_status = lead.status
        old_assigned_to_id = lead.assigned_to_id
        status_changed = "status" in payload and payload["status"] != old_status
        assignee_changed = "assigned_to_id" in payload and payload["assigned_to_id"] != old_assigned_to_id

        with tracer.start_as_current_span("lead.update") as span:
            span.set_attribute("lead.id", str(lead.id))
            stamped_at = utcnow()
            with _transaction(session):
                self._write(session, lead, payload, expected_version)
                if status_changed:
                    session.add(self._status_activity(lead.id, actor, old_status, payload["status"], at=stamped_at))
                if assignee_changed:
                    # Strictly after the status entry so newest-first reads are stable.
                    session.add(
                        self._reassign_activity(
                            lead.id,
                            actor,
                            old_assigned_to_id,
                            new_assignee,
                            at=stamped_at + timedelta(microseconds=1),
                        )
                    )

        updated = self._reload(session, lead.id)
        lead_read = lead_to_read(updated)
        lead_payload = lead_read.model_dump(mode="json")

        outbox = _new_outbox(actor)
        if assignee_changed and new_assignee is not None:
            outbox.notify_assignment(_recipient(new_assignee), lead_payload)
        outbox.emit("lead:updated", {"lead": lead_payload, "updated_by": _actor_ref(actor)})

        observe_lead_mutation("update")
        logger.info(
            "lead.updated",
            extra={
                "lead_id": str(lead.id),
                "actor_id": str(actor.id),
                "old_status": old_status if status_changed else None,
                "new_status": payload["status"] if status_changed else None,
            },
        )
        return MutationResult(entity=lead_read, outbox=outbox)

    def delete_lead(self, session: Session, actor: Actor, lead_id: uuid.UUID) -> MutationResult[uuid.UUID]:
        lead = self._get_lead(session, lead_id)
        if not can_delete_lead(actor, lead):
            raise forbidden("lead", "delete")

        with tracer.start_as_current_span("lead.delete") as span:
            span.set_attribute("lead.id", str(lead_id))
            with _transaction(session):
                session.delete(lead)

        outbox = _new_outbox(actor)
        outbox.emit("lead:deleted", {"lead_id": str(lead_id), "deleted_by": _actor_ref(actor)})
        observe_lead_mutation("delete")
        logger.info("lead.deleted", extra={"lead_id": str(lead_id), "actor_id": str(actor.id)})
        return MutationResult(entity=lead_id, outbox=outbox)

    def assign_lead(
        self,
        session: Session,
        actor: Actor,
        lead_id: uuid.UUID,
        assigned_to_id: uuid.UUID,
    ) -> MutationResult[LeadRead]:
        """Reassign a lead. Any authenticated user may do this; the assignee must be an active user."""

        lead = self._get_lead(session, lead_id)
        assignee = self._resolve_assignee(session, assigned_to_id)
        old_assigned_to_id = lead.assigned_to_id

        with tracer.start_as_current_span("lead.assign") as span:
            span.set_attribute("lead.id", str(lead.id))
            with _transaction(session):
                self._write(session, lead, {"assigned_to_id": assignee.id}, None)
                session.add(self._reassign_activity(lead.id, actor, old_assigned_to_id, assignee))

        updated = self._reload(session, lead.id)
        lead_read = lead_to_read(updated)
        lead_payload = lead_read.model_dump(mode="json")

        outbox = _new_outbox(actor)
        outbox.notify_assignment(_recipient(assignee), lead_payload)
        outbox.emit(
            "lead:assigned",
            {
                "lead": lead_payload,
                "assigned_to": UserSummary.model_validate(assignee).model_dump(mode="json"),
                "assigned_by": _actor_ref(actor),
            },
        )

        observe_lead_mutation("assign")
        logger.info(
            "lead.assigned",
            extra={"lead_id": str(lead.id), "actor_id": str(actor.id), "assigned_to_id": str(assignee.id)},
        )
        return MutationResult(entity=lead_read, outbox=outbox)

    def set_status(self, session: Session, actor: Actor, lead_id: uuid.UUID, status: str) -> MutationResult[LeadRead]:
        validate_lead_status(status)
        lead = self._get_lead(session, lead_id)
        if not can_mutate_lead(actor, lead):
            raise forbidden("lead", "set_status")

        old_status = lead.status
        outbox = _new_outbox(actor)
        if old_status == status:
            return MutationResult(entity=lead_to_read(lead), outbox=outbox)

        with tracer.start_as_current_span("lead.set_status") as span:
            span.set_attribute("lead.id", str(lead.id))
            with _transaction(session):
                self._write(session, lead, {"status": status}, None)
                session.add(self._status_activity(lead.id, actor, old_status, status))

        lead_read = lead_to_read(self._reload(session, lead.id))
        outbox.emit(
            "lead:statusUpdated",
            {
                "lead": lead_read.model_dump(mode="json"),
                "old_status": old_status,
                "new_status": status,
                "updated_by": _actor_ref(actor),
            },
        )

        observe_lead_mutation("set_status")
        logger.info(
            "lead.status_updated",
            extra={"lead_id": str(lead.id), "actor_id": str(actor.id), "old_status": old_status, "new_status": status},
        )
        return MutationResult(entity=lead_read, outbox=outbox)

    def _get_lead(self, session: Session, lead_id: uuid.UUID) -> Lead:
        lead = session.get(Lead, lead_id)
        if lead is None:
            raise NotFound("Lead not found")
        return lead

    def _reload(self, session: Session, lead_id: uuid.UUID) -> Lead:
        lead = session.scalar(
            select(Lead)
            .options(selectinload(Lead.assigned_to), selectinload(Lead.created_by))
            .where(Lead.id == lead_id)
            .execution_options(populate_existing=True)
        )
        if lead is None:
            raise NotFound("Lead not found")
        return lead

    def _resolve_assignee(self, session: Session, user_id: uuid.UUID) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        if not user.is_active:
            raise ValidationFailed.for_field("assigned_to_id", "Assigned user is inactive")
        return user

    def _write(self, session: Session, lead: Lead, values: dict[str, Any], expected_version: int | None) -> None:
        stmt = update(Lead).where(Lead.id == lead.id)
        if expected_version is not None:
            stmt = stmt.where(Lead.row_version == expected_version)
        result = session.execute(
            stmt.values(**values, updated_at=utcnow(), row_version=Lead.row_version + 1).execution_options(
                synchronize_session=False
            )
        )
        if result.rowcount == 0:
            raise Conflict("Lead was modified by another request", details={"row_version": lead.row_version})
        session.refresh(lead)

    def _status_activity(
        self,
        lead_id: uuid.UUID,
        actor: Actor,
        old_status: str,
        new_status: str,
        *,
        at: datetime | None = None,
    ) -> Activity:
        return Activity(
            created_at=at or utcnow(),
            type=ActivityType.STATUS_CHANGE.value,
            title="Status Updated",
            description=f'Status changed from "{old_status}" to "{new_status}"',
            lead_id=lead_id,
            user_id=actor.id,
            details={"oldStatus": old_status, "newStatus": new_status},
        )

    def _reassign_activity(
        self,
        lead_id: uuid.UUID,
        actor: Actor,
        old_assigned_to_id: uuid.UUID | None,
        new_assignee: User | None,
        *,
        at: datetime | None = None,
    ) -> Activity:
        description = f"Lead reassigned to {new_assignee.full_name}" if new_assignee is not None else "Lead unassigned"
        return Activity(
            created_at=at or utcnow(),
            type=ActivityType.STATUS_CHANGE.value,
            title="Lead Reassigned",
            description=description,
            lead_id=lead_id,
            user_id=actor.id,
            details={
                "oldAssignedTo": str(old_assigned_to_id) if old_assigned_to_id is not None else None,
                "newAssignedTo": str(new_assignee.id) if new_assignee is not None else None,
            },
        )


class ActivityService:
    sortable_fields = {
        "created_at": Activity.created_at,
        "scheduled_at": Activity.scheduled_at,
        "type": Activity.type,
        "title": Activity.title,
    }

    def list_activities(
        self,
        session: Session,
        actor: Actor,
        *,
        filters: dict[str, Any],
        page: int | None = None,
        limit: int | None = None,
        sort_by: str | None = None,
        sort_order: str | None = None,
    ) -> ActivityListResponse:
        page, limit = resolve_page(page, limit)
        order_clause = _sort_clause(self.sortable_fields, sort_by, sort_order)
        if filters.get("type"):
            validate_activity_type(filters["type"])

        stmt: Select[tuple[Activity]] = apply_activity_scope(select(Activity), visibility_scope(session, actor))
        if filters.get("type"):
            stmt = stmt.where(Activity.type == filters["type"])
        if filters.get("lead_id"):
            stmt = stmt.where(Activity.lead_id == filters["lead_id"])
        if filters.get("user_id"):
            stmt = stmt.where(Activity.user_id == filters["user_id"])
        return self._page(session, stmt, (order_clause, Activity.id), page, limit)

    def list_for_lead(
        self,
        session: Session,
        actor: Actor,
        lead_id: uuid.UUID,
        *,
        page: int | None = None,
        limit: int | None = None,
    ) -> ActivityListResponse:
        lead = session.get(Lead, lead_id)
        if lead is None:
            raise NotFound("Lead not found")
        if not can_view_lead(actor, lead):
            raise forbidden("activity", "list")

        page, limit = resolve_page(page, limit)
        stmt: Select[tuple[Activity]] = select(Activity).where(Activity.lead_id == lead_id)
        return self._page(session, stmt, ACTIVITY_NEWEST_FIRST, page, limit)

    def get_activity(self, session: Session, actor: Actor, activity_id: uuid.UUID) -> ActivityRead:
        activity = self._get_activity(session, activity_id)
        if not can_view_activity(actor, activity, activity.lead):
            raise forbidden("activity", "view")
        return activity_to_read(activity)

    def create_activity(self, session: Session, actor: Actor, dto: ActivityCreate) -> MutationResult[ActivityRead]:
        validate_activity_type(dto.type)
        lead = session.get(Lead, dto.lead_id)
        if lead is None:
            raise NotFound("Lead not found")
        if not can_view_lead(actor, lead):
            raise forbidden("activity", "create")

        with _transaction(session):
            activity = Activity(
                type=dto.type,
                title=dto.title,
                description=dto.description,
                lead_id=lead.id,
                user_id=actor.id,
                scheduled_at=dto.scheduled_at,
                details=dict(dto.metadata),
            )
            session.add(activity)

        activity_read = activity_to_read(self._get_activity(session, activity.id))
        outbox = _new_outbox(actor)
        outbox.emit("activity:created", {"activity": activity_read.model_dump(mode="json"), "user": _actor_ref(actor)})

        observe_activity_mutation("create")
        logger.info(
            "activity.created",
            extra={"activity_id": str(activity.id), "lead_id": str(lead.id), "actor_id": str(actor.id)},
        )
        return MutationResult(entity=activity_read, outbox=outbox)

    def update_activity(
        self,
        session: Session,
        actor: Actor,
        activity_id: uuid.UUID,
        dto: ActivityUpdate,
    ) -> MutationResult[ActivityRead]:
        activity = self._get_activity(session, activity_id)
        if not can_mutate_activity(actor, activity):
            raise forbidden("activity", "update")

        payload = dto.model_dump(exclude_unset=True)
        for required in ("type", "title"):
            if required in payload and payload[required] is None:
                raise ValidationFailed.for_field(required, f"{required} cannot be null")
        if "type" in payload:
            validate_activity_type(payload["type"])
        if "metadata" in payload:
            payload["details"] = dict(payload.pop("metadata") or {})

        with _transaction(session):
            for key, value in payload.items():
                setattr(activity, key, value)
            activity.updated_at = utcnow()

        activity_read = activity_to_read(self._get_activity(session, activity.id))
        outbox = _new_outbox(actor)
        outbox.emit(
            "activity:updated",
            {"activity": activity_read.model_dump(mode="json"), "updated_by": _actor_ref(actor)},
        )

        observe_activity_mutation("update")
        logger.info("activity.updated", extra={"activity_id": str(activity.id), "actor_id": str(actor.id)})
        return MutationResult(entity=activity_read, outbox=outbox)

    def delete_activity(self, session: Session, actor: Actor, activity_id: uuid.UUID) -> MutationResult[uuid.UUID]:
        activity = self._get_activity(session, activity_id)
        if not can_mutate_activity(actor, activity):
            raise forbidden("activity", "delete")

        lead_id = activity.lead_id
        with _transaction(session):
            session.delete(activity)

        outbox = _new_outbox(actor)
        outbox.emit(
            "activity:deleted",
            {"activity_id": str(activity_id), "lead_id": str(lead_id), "deleted_by": _actor_ref(actor)},
        )
        observe_activity_mutation("delete")
        logger.info("activity.deleted", extra={"activity_id": str(activity_id), "actor_id": str(actor.id)})
        return MutationResult(entity=activity_id, outbox=outbox)

    def _get_activity(self, session: Session, activity_id: uuid.UUID) -> Activity:
        activity = session.scalar(
            select(Activity)
            .options(selectinload(Activity.lead), selectinload(Activity.user))
            .where(Activity.id == activity_id)
        )
        if activity is None:
            raise NotFound("Activity not found")
        return activity

    def _page(
        self,
        session: Session,
        stmt: Select[tuple[Activity]],
        ordering: tuple[Any, ...],
        page: int,
        limit: int,
    ) -> ActivityListResponse:
        total = _count(session, stmt)
        activities = session.scalars(
            stmt.options(selectinload(Activity.lead), selectinload(Activity.user))
            .order_by(*ordering)
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return ActivityListResponse(
            activities=[activity_to_read(item) for item in activities],
            pagination=build_pagination(total, page, limit),
        )


class UserService:
    def list_users(
        self,
        session: Session,
        actor: Actor,
        *,
        role: str | None = None,
        search: str | None = None,
        page: int | None = None,
        limit: int | None = None,
    ) -> UserListResponse:
        if not actor.is_privileged:
            raise forbidden("user", "list")
        page, limit = resolve_page(page, limit)

        stmt: Select[tuple[User]] = select(User)
        if role:
            stmt = stmt.where(User.role == role)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(User.first_name.ilike(pattern), User.last_name.ilike(pattern), User.email.ilike(pattern))
            )

        total = _count(session, stmt)
        users = session.scalars(
            stmt.order_by(User.created_at.desc(), User.id).offset((page - 1) * limit).limit(limit)
        ).all()
        return UserListResponse(
            users=[UserRead.model_validate(item) for item in users],
            pagination=build_pagination(total, page, limit),
        )

    def get_user(self, session: Session, actor: Actor, user_id: uuid.UUID) -> UserDetailRead:
        if user_id != actor.id and not actor.is_privileged:
            raise forbidden("user", "view")
        user = self._get_user(session, user_id)
        leads = session.scalars(
            select(Lead).where(Lead.assigned_to_id == user.id).order_by(Lead.created_at.desc())
        ).all()
        return UserDetailRead.model_validate(
            {
                **UserRead.model_validate(user).model_dump(),
                "assigned_leads": [LeadBrief.model_validate(item) for item in leads],
            }
        )

    def profile(self, session: Session, actor: Actor) -> UserRead:
        return UserRead.model_validate(self._get_user(session, actor.id))

    def create_user(self, session: Session, actor: Actor, dto: UserCreate) -> UserRead:
        if not actor.is_admin:
            raise forbidden("user", "create")
        validate_role(dto.role)
        ensure_email_free(session, str(dto.email))
        if dto.password is not None:
            _check_password_bytes(dto.password)

        with _transaction(session):
            user = User(
                email=str(dto.email),
                first_name=dto.first_name,
                last_name=dto.last_name,
                role=dto.role,
                is_active=dto.is_active,
                password_hash=hash_password(dto.password) if dto.password is not None else None,
            )
            session.add(user)

        logger.info("user.created", extra={"user_id": str(user.id), "actor_id": str(actor.id)})
        return UserRead.model_validate(user)

    def update_user(self, session: Session, actor: Actor, user_id: uuid.UUID, dto: UserUpdate) -> UserRead:
        if user_id != actor.id and not actor.is_admin:
            raise forbidden("user", "update")
        user = self._get_user(session, user_id)

        payload = dto.model_dump(exclude_unset=True)
        if ("role" in payload or "is_active" in payload) and not actor.is_admin:
            raise forbidden("user", "update", "Only an Admin may change role or active state")
        if "email" in payload and user_id != actor.id:
            raise forbidden("user", "update", "Users may only change their own email")
        for required in ("email", "first_name", "last_name", "role", "is_active"):
            if required in payload and payload[required] is None:
                raise ValidationFailed.for_field(required, f"{required} cannot be null")
        if "role" in payload:
            validate_role(payload["role"])
        if "email" in payload:
            payload["email"] = str(payload["email"])
            if payload["email"] != user.email:
                ensure_email_free(session, payload["email"])

        with _transaction(session):
            for key, value in payload.items():
                setattr(user, key, value)
            user.updated_at = utcnow()

        logger.info("user.updated", extra={"user_id": str(user.id), "actor_id": str(actor.id)})
        return UserRead.model_validate(user)

    def delete_user(self, session: Session, actor: Actor, user_id: uuid.UUID) -> None:
        if not actor.is_admin:
            raise forbidden("user", "delete")
        if user_id == actor.id:
            raise ValidationFailed.for_field("id", "You cannot delete your own account")
        user = self._get_user(session, user_id)

        created_leads = int(session.scalar(select(func.count()).where(Lead.created_by_id == user.id)) or 0)
        authored_activities = int(session.scalar(select(func.count()).where(Activity.user_id == user.id)) or 0)
        if created_leads or authored_activities:
            raise Conflict(
                "User has created leads or authored activities",
                details={"created_leads": created_leads, "authored_activities": authored_activities},
            )

        with _transaction(session):
            session.execute(
                update(Lead)
                .where(Lead.assigned_to_id == user.id)
                .values(assigned_to_id=None, updated_at=utcnow(), row_version=Lead.row_version + 1)
                .execution_options(synchronize_session=False)
            )
            session.delete(user)

        logger.info("user.deleted", extra={"user_id": str(user_id), "actor_id": str(actor.id)})

    def _get_user(self, session: Session, user_id: uuid.UUID) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        return user


class AuthService:
    """Self-service registration and password login, both answered with a bearer token."""

    def register(self, session: Session, dto: RegisterRequest) -> AuthResponse:
        validate_role(dto.role)
        _check_password_bytes(dto.password)
        # Elevated roles are only self-assignable while the directory is empty.
        if dto.role != Role.SALES_EXECUTIVE.value and session.scalar(select(func.count(User.id))):
            raise forbidden("user", "register", "Only an Admin may grant the Admin or Manager role")
        ensure_email_free(session, str(dto.email))

        with _transaction(session):
            user = User(
                email=str(dto.email),
                first_name=dto.first_name,
                last_name=dto.last_name,
                role=dto.role,
                password_hash=hash_password(dto.password),
            )
            session.add(user)

        logger.info("auth.registered", extra={"user_id": str(user.id)})
        return self._issue(user)

    def login(self, session: Session, dto: LoginRequest) -> AuthResponse:
        user = session.scalar(select(User).where(User.email == str(dto.email)))
        if user is None or not user.is_active or not verify_password(dto.password, user.password_hash):
            logger.warning("auth.login_failed", extra={"user_id": str(user.id) if user is not None else None})
            raise Unauthorized("Invalid email or password")

        logger.info("auth.logged_in", extra={"user_id": str(user.id)})
        return self._issue(user)

    def _issue(self, user: User) -> AuthResponse:
        return AuthResponse(user=UserRead.model_validate(user), token=create_access_token(user.id, user.role))
