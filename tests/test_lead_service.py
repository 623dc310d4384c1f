from __future__ import annotations

import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from leadhub.core.errors import Conflict, Forbidden, NotFound, ValidationFailed
from leadhub.crm.models import Activity, Lead, User
from leadhub.crm.schemas import LeadCreate, LeadUpdate
from leadhub.crm.service import LeadService

from factories import actor_for, lead_payload


service = LeadService()


def _activities(session: Session, lead_id: uuid.UUID) -> list[Activity]:
    return list(
        session.scalars(select(Activity).where(Activity.lead_id == lead_id).order_by(Activity.created_at, Activity.title))
    )


def _create(session: Session, creator: User, **overrides: object) -> uuid.UUID:
    result = service.create_lead(session, actor_for(creator), LeadCreate(**lead_payload(**overrides)))
    return result.entity.id


def test_create_defaults_assignee_to_creator_without_notice(db_session: Session, users: dict[str, User]) -> None:
    result = service.create_lead(db_session, actor_for(users["exec1"]), LeadCreate(**lead_payload()))

    assert result.entity.assigned_to_id == users["exec1"].id
    assert result.entity.created_by_id == users["exec1"].id
    assert result.entity.status == "New"
    assert result.entity.assigned_to is not None
    assert result.entity.assigned_to.email == users["exec1"].email
    assert result.outbox.assignment_notices == []
    assert [event.name for event in result.outbox.realtime_events] == ["lead:created"]

    activities = _activities(db_session, result.entity.id)
    assert len(activities) == 1
    assert activities[0].type == "Status Change"
    assert activities[0].title == "Lead Created"
    assert activities[0].description == 'Lead "Jamie Smith" was created'
    assert activities[0].details == {"status": "New"}


def test_create_for_other_user_queues_exactly_one_notice(db_session: Session, users: dict[str, User]) -> None:
    result = service.create_lead(
        db_session,
        actor_for(users["admin"]),
        LeadCreate(**lead_payload(assigned_to_id=str(users["exec1"].id))),
    )

    notices = result.outbox.assignment_notices
    assert len(notices) == 1
    assert notices[0].recipient["email"] == users["exec1"].email
    assert notices[0].lead["id"] == str(result.entity.id)


def test_create_rejects_unknown_status_and_inactive_assignee(db_session: Session, users: dict[str, User]) -> None:
    with pytest.raises(ValidationFailed) as invalid_status:
        service.create_lead(db_session, actor_for(users["admin"]), LeadCreate(**lead_payload(status="Maybe")))
    assert invalid_status.value.errors[0]["field"] == "status"

    with pytest.raises(ValidationFailed):
        service.create_lead(
            db_session,
            actor_for(users["admin"]),
            LeadCreate(**lead_payload(assigned_to_id=str(users["inactive"].id))),
        )

    with pytest.raises(NotFound):
        service.create_lead(
            db_session,
            actor_for(users["admin"]),
            LeadCreate(**lead_payload(assigned_to_id=str(uuid.uuid4()))),
        )
    assert db_session.scalars(select(Lead)).all() == []


def test_update_status_and_assignee_produces_two_activities_in_order(
    db_session: Session,
    users: dict[str, User],
) -> None:
    lead_id = _create(db_session, users["admin"])

    result = service.update_lead(
        db_session,
        actor_for(users["admin"]),
        lead_id,
        LeadUpdate(status="Qualified", assigned_to_id=users["exec2"].id),
    )

    activities = {item.title: item for item in _activities(db_session, lead_id)}
    assert set(activities) == {"Lead Created", "Status Updated", "Lead Reassigned"}
    assert activities["Status Updated"].created_at < activities["Lead Reassigned"].created_at
    assert activities["Status Updated"].details == {"oldStatus": "New", "newStatus": "Qualified"}
    assert activities["Lead Reassigned"].details == {"oldAssignedTo": str(users["admin"].id), "newAssignedTo": str(users["exec2"].id)}
    assert activities["Lead Reassigned"].description == "Lead reassigned to Tia Trader"

    assert len(result.outbox.assignment_notices) == 1
    assert result.outbox.assignment_notices[0].recipient["id"] == str(users["exec2"].id)
    assert [event.name for event in result.outbox.realtime_events] == ["lead:updated"]
    assert result.entity.row_version == 2


def test_update_with_identical_status_adds_no_activity(db_session: Session, users: dict[str, User]) -> None:
    lead_id = _create(db_session, users["admin"])

    result = service.update_lead(db_session, actor_for(users["admin"]), lead_id, LeadUpdate(status="New", notes="hi"))

    assert [item.title for item in _activities(db_session, lead_id)] == ["Lead Created"]
    assert result.entity.notes == "hi"
    assert [event.name for event in result.outbox.realtime_events] == ["lead:updated"]


def test_update_with_stale_row_version_conflicts(db_session: Session, users: dict[str, User]) -> None:
    lead_id = _create(db_session, users["admin"])
    service.update_lead(db_session, actor_for(users["admin"]), lead_id, LeadUpdate(notes="first", row_version=1))

    with pytest.raises(Conflict):
        service.update_lead(db_session, actor_for(users["admin"]), lead_id, LeadUpdate(status="Won", row_version=1))

    lead = db_session.get(Lead, lead_id)
    assert lead is not None
    assert lead.status == "New"
    assert [item.title for item in _activities(db_session, lead_id)] == ["Lead Created"]


def test_sales_executive_cannot_update_unassigned_lead(db_session: Session, users: dict[str, User]) -> None:
    lead_id = _create(db_session, users["admin"], assigned_to_id=str(users["exec2"].id))

    with pytest.raises(Forbidden):
        service.update_lead(db_session, actor_for(users["exec1"]), lead_id, LeadUpdate(notes="nope"))


def test_set_status_validates_and_records_transition(db_session: Session, users: dict[str, User]) -> None:
    lead_id = _create(db_session, users["exec1"])

    with pytest.raises(ValidationFailed) as exc_info:
        service.set_status(db_session, actor_for(users["exec1"]), lead_id, "Closed")
    assert exc_info.value.message == (
        "Status must be one of: New, Contacted, Qualified, Proposal, Negotiation, Won, Lost"
    )

    result = service.set_status(db_session, actor_for(users["exec1"]), lead_id, "Contacted")
    assert result.entity.status == "Contacted"
    event = result.outbox.realtime_events[0]
    assert event.name == "lead:statusUpdated"
    assert event.payload["old_status"] == "New"
    assert event.payload["new_status"] == "Contacted"

    unchanged = service.set_status(db_session, actor_for(users["exec1"]), lead_id, "Contacted")
    assert len(unchanged.outbox) == 0
    status_activities = [item for item in _activities(db_session, lead_id) if item.title == "Status Updated"]
    assert len(status_activities) == 1


def test_assign_bypasses_mutation_policy_but_requires_active_user(
    db_session: Session,
    users: dict[str, User],
) -> None:
    lead_id = _create(db_session, users["admin"], assigned_to_id=str(users["exec2"].id))

    with pytest.raises(NotFound):
        service.assign_lead(db_session, actor_for(users["exec1"]), lead_id, uuid.uuid4())
    with pytest.raises(ValidationFailed):
        service.assign_lead(db_session, actor_for(users["exec1"]), lead_id, users["inactive"].id)

    result = service.assign_lead(db_session, actor_for(users["exec1"]), lead_id, users["exec1"].id)
    assert result.entity.assigned_to_id == users["exec1"].id
    assert len(result.outbox.assignment_notices) == 1
    assert [event.name for event in result.outbox.realtime_events] == ["lead:assigned"]
    assert _activities(db_session, lead_id)[-1].title == "Lead Reassigned"


def test_delete_cascades_activities(db_session: Session, users: dict[str, User]) -> None:
    lead_id = _create(db_session, users["exec1"])
    service.set_status(db_session, actor_for(users["exec1"]), lead_id, "Won")
    assert len(_activities(db_session, lead_id)) == 2

    result = service.delete_lead(db_session, actor_for(users["exec1"]), lead_id)

    assert result.entity == lead_id
    assert db_session.get(Lead, lead_id) is None
    assert _activities(db_session, lead_id) == []
    assert result.outbox.realtime_events[0].payload["lead_id"] == str(lead_id)


def test_sales_executive_cannot_delete_lead_created_by_someone_else(
    db_session: Session,
    users: dict[str, User],
) -> None:
    lead_id = _create(db_session, users["admin"], assigned_to_id=str(users["exec1"].id))

    with pytest.raises(Forbidden):
        service.delete_lead(db_session, actor_for(users["exec1"]), lead_id)
    service.delete_lead(db_session, actor_for(users["manager"]), lead_id)
    assert db_session.get(Lead, lead_id) is None
