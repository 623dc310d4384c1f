from __future__ import annotations

import uuid

from factories import lead_payload


def _lead_for(test_client, assignee_id) -> str:
    response = test_client.post("/api/v1/leads", json=lead_payload(assigned_to_id=str(assignee_id)))
    assert response.status_code == 201
    return response.json()["id"]


def _activity(test_client, lead_id: str, **overrides) -> dict:
    payload = {"type": "Note", "title": "Left voicemail", "lead_id": lead_id}
    payload.update(overrides)
    response = test_client.post("/api/v1/activities", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_create_activity_on_assigned_lead(client, users, emitter) -> None:
    test_client, set_actor = client
    lead_id = _lead_for(test_client, users["exec1"].id)
    emitter.emitted.clear()

    set_actor("exec1")
    created = _activity(test_client, lead_id, type="Meeting", metadata={"room": "B2"})

    assert created["user"]["id"] == str(users["exec1"].id)
    assert created["lead"]["id"] == lead_id
    assert created["metadata"] == {"room": "B2"}
    assert emitter.names() == ["activity:created"]


def test_create_activity_requires_visible_lead_and_known_type(client, users) -> None:
    test_client, set_actor = client
    lead_id = _lead_for(test_client, users["exec1"].id)

    set_actor("exec2")
    denied = test_client.post("/api/v1/activities", json={"type": "Note", "title": "x", "lead_id": lead_id})
    assert denied.status_code == 403

    set_actor("exec1")
    bad_type = test_client.post("/api/v1/activities", json={"type": "Fax", "title": "x", "lead_id": lead_id})
    assert bad_type.status_code == 422
    assert bad_type.json()["details"][0]["field"] == "type"

    missing = test_client.post(
        "/api/v1/activities",
        json={"type": "Note", "title": "x", "lead_id": str(uuid.uuid4())},
    )
    assert missing.status_code == 404


def test_only_author_or_admin_may_edit_or_delete(client, users, emitter) -> None:
    test_client, set_actor = client
    lead_id = _lead_for(test_client, users["exec1"].id)
    set_actor("exec1")
    activity = _activity(test_client, lead_id)

    set_actor("manager")
    assert test_client.patch(f"/api/v1/activities/{activity['id']}", json={"title": "edited"}).status_code == 403
    assert test_client.delete(f"/api/v1/activities/{activity['id']}").status_code == 403

    set_actor("exec1")
    edited = test_client.patch(f"/api/v1/activities/{activity['id']}", json={"title": "Call back Friday"})
    assert edited.status_code == 200
    assert edited.json()["title"] == "Call back Friday"

    set_actor("admin")
    emitter.emitted.clear()
    deleted = test_client.delete(f"/api/v1/activities/{activity['id']}")
    assert deleted.status_code == 200
    assert emitter.names() == ["activity:deleted"]
    assert emitter.emitted[0][1]["lead_id"] == lead_id


def test_activity_visibility_follows_lead_assignment(client, users) -> None:
    test_client, set_actor = client
    lead_id = _lead_for(test_client, users["exec1"].id)
    activity = _activity(test_client, lead_id)

    set_actor("exec1")
    assert test_client.get(f"/api/v1/activities/{activity['id']}").status_code == 200

    set_actor("exec2")
    assert test_client.get(f"/api/v1/activities/{activity['id']}").status_code == 403
    assert test_client.get(f"/api/v1/activities/lead/{lead_id}").status_code == 403
    assert test_client.get("/api/v1/activities").json()["pagination"]["total"] == 0

    set_actor("admin")
    reassigned = test_client.patch(f"/api/v1/leads/{lead_id}/assign", json={"assigned_to_id": str(users["exec2"].id)})
    assert reassigned.status_code == 200

    set_actor("exec2")
    assert test_client.get(f"/api/v1/activities/{activity['id']}").status_code == 200
    listed = test_client.get(f"/api/v1/activities/lead/{lead_id}").json()
    titles = {item["title"] for item in listed["activities"]}
    assert titles == {"Lead Created", "Left voicemail", "Lead Reassigned"}


def test_list_filters_by_type_and_rejects_unknown_type(client, users) -> None:
    test_client, _ = client
    lead_id = _lead_for(test_client, users["exec1"].id)
    _activity(test_client, lead_id, type="Call", title="First call")
    _activity(test_client, lead_id, type="Email", title="Sent deck")

    calls = test_client.get("/api/v1/activities", params={"type": "Call"}).json()
    assert [item["title"] for item in calls["activities"]] == ["First call"]

    by_lead = test_client.get("/api/v1/activities", params={"lead_id": lead_id}).json()
    assert by_lead["pagination"]["total"] == 3

    invalid = test_client.get("/api/v1/activities", params={"type": "Fax"})
    assert invalid.status_code == 422


def test_lead_activity_pages_are_newest_first_without_overlap(client, users) -> None:
    test_client, _ = client
    lead_id = _lead_for(test_client, users["exec1"].id)
    updated = test_client.patch(
        f"/api/v1/leads/{lead_id}",
        json={"status": "Contacted", "assigned_to_id": str(users["exec2"].id)},
    )
    assert updated.status_code == 200

    first = test_client.get(f"/api/v1/activities/lead/{lead_id}", params={"page": 1, "limit": 2}).json()
    second = test_client.get(f"/api/v1/activities/lead/{lead_id}", params={"page": 2, "limit": 2}).json()

    assert [item["title"] for item in first["activities"]] == ["Lead Reassigned", "Status Updated"]
    assert [item["title"] for item in second["activities"]] == ["Lead Created"]
    assert first["pagination"]["total"] == 3
