import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from src.api.main import app
from src.api.routers import commitments as commitments_router
from src.api.routers.commitments import reset_commitment_workflow_service_for_tests


def _create_payload(**overrides) -> dict:
    payload = {
        "created_by": "user_1",
        "title": "Website redesign",
        "scope_title": "Marketing site",
        "amount": "150000",
        "deliverables": [{"text": "Homepage"}, {"text": "About page"}, {"text": "  "}],
        "client_id": "cl_01",
        "client_snapshot": {"name": "Asha Rao", "email": "asha@example.com"},
    }
    payload.update(overrides)
    return payload


def _create(client: TestClient, **overrides) -> dict:
    response = client.post("/commitments", json=_create_payload(**overrides))
    assert response.status_code == 201
    return response.json()["commitment"]


def _send_approval(client: TestClient, commitment_id: str) -> str:
    response = client.post(
        f"/commitments/{commitment_id}/approval-link", json={"actor_id": "user_1"}
    )
    assert response.status_code == 200
    return response.json()["link"]["token"]


def test_create_commitment_returns_draft_with_derived_fields():
    with TestClient(app) as client:
        response = client.post("/commitments", json=_create_payload())

    assert response.status_code == 201
    body = response.json()
    commitment = body["commitment"]
    assert commitment["status"] == "DRAFT"
    assert commitment["version"] == 1
    assert commitment["root_commitment_id"] == commitment["commitment_id"]
    assert commitment["is_current"] is True
    assert [item["text"] for item in commitment["deliverables"]] == ["Homepage", "About page"]
    assert commitment["progress"]["total"] == 2
    assert "SEND_APPROVAL" in commitment["allowed_actions"]
    assert body["latest_event"]["event_type"] == "COMMITMENT_CREATED"


def test_create_commitment_replays_idempotency_key_and_rejects_mismatch():
    with TestClient(app) as client:
        headers = {"Idempotency-Key": "create-001"}
        first = client.post("/commitments", json=_create_payload(), headers=headers)
        replay = client.post("/commitments", json=_create_payload(), headers=headers)
        conflict = client.post(
            "/commitments", json=_create_payload(title="Other"), headers=headers
        )

    assert first.status_code == 201
    assert replay.status_code == 201
    assert replay.json()["commitment"]["commitment_id"] == first.json()["commitment"][
        "commitment_id"
    ]
    assert conflict.status_code == 409
    assert conflict.json()["detail"]["code"] == "IDEMPOTENCY_KEY_CONFLICT"


def test_create_commitment_rejects_blank_title():
    with TestClient(app) as client:
        response = client.post("/commitments", json=_create_payload(title="   "))

    assert response.status_code == 422


def test_get_commitment_returns_404_for_unknown_id():
    with TestClient(app) as client:
        response = client.get("/commitments/cm_missing")

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "NOT_FOUND"


def test_lifecycle_through_delivery_and_close():
    with TestClient(app) as client:
        commitment_id = _create(client)["commitment_id"]
        token = _send_approval(client, commitment_id)

        approved = client.post(f"/public/approve/{token}", json={"action": "approve"})
        assert approved.status_code == 200
        assert approved.json()["status"] == "IN_PROGRESS"

        delivered = client.post(
            f"/commitments/{commitment_id}/deliver", json={"actor_id": "user_1"}
        )
        assert delivered.json()["commitment"]["status"] == "DELIVERED"

        acceptance = client.post(
            f"/commitments/{commitment_id}/acceptance-link", json={"actor_id": "user_1"}
        )
        assert acceptance.status_code == 200
        accept_token = acceptance.json()["link"]["token"]
        assert acceptance.json()["link"]["purpose"] == "ACCEPTANCE"

        accepted = client.post(f"/public/accept/{accept_token}", json={"action": "accept"})
        assert accepted.json()["status"] == "ACCEPTED"

        closed = client.post(f"/commitments/{commitment_id}/close", json={"actor_id": "user_1"})
        assert closed.json()["commitment"]["status"] == "CLOSED"

        history = client.get(f"/commitments/{commitment_id}/history").json()
        assert [event["event_type"] for event in history["events"]] == [
            "COMMITMENT_CREATED",
            "APPROVAL_LINK_SENT",
            "CLIENT_APPROVED",
            "MARKED_DELIVERED",
            "ACCEPTANCE_LINK_SENT",
            "CLIENT_ACCEPTED",
            "COMMITMENT_CLOSED",
        ]


def test_invalid_transitions_map_to_422():
    with TestClient(app) as client:
        commitment_id = _create(client)["commitment_id"]

        deliver = client.post(f"/commitments/{commitment_id}/deliver", json={"actor_id": "user_1"})
        close = client.post(f"/commitments/{commitment_id}/close", json={"actor_id": "user_1"})

    assert deliver.status_code == 422
    assert deliver.json()["detail"]["code"] == "INVALID_STATE_TRANSITION"
    assert close.status_code == 422


def test_update_enforces_field_locks_and_assign_records_event():
    with TestClient(app) as client:
        commitment_id = _create(client)["commitment_id"]
        edited = client.patch(
            f"/commitments/{commitment_id}",
            json={"actor_id": "user_1", "amount": "175000"},
        )
        assert edited.status_code == 200
        assert edited.json()["latest_event"]["event_type"] == "COMMITMENT_UPDATED"

        _send_approval(client, commitment_id)
        locked = client.patch(
            f"/commitments/{commitment_id}",
            json={"actor_id": "user_1", "title": "Too late"},
        )
        assigned = client.post(
            f"/commitments/{commitment_id}/assign",
            json={"actor_id": "user_1", "assigned_to_user_id": "user_2"},
        )

    assert locked.status_code == 422
    assert "COMMITMENT_FIELDS_LOCKED" in locked.json()["detail"]["message"]
    assert assigned.status_code == 200
    assert assigned.json()["commitment"]["assigned_to_user_id"] == "user_2"


def test_change_request_accept_creates_new_version_and_freezes_previous():
    with TestClient(app) as client:
        commitment_id = _create(client)["commitment_id"]
        token = _send_approval(client, commitment_id)
        requested = client.post(
            f"/public/approve/{token}",
            json={"action": "request_change", "comment": "Add a blog page"},
        )
        assert requested.status_code == 200
        change_request_id = requested.json()["change_request_id"]

        listed = client.get(f"/commitments/{commitment_id}/change-requests").json()
        assert [item["status"] for item in listed["items"]] == ["OPEN"]

        accepted = client.post(
            f"/commitments/{commitment_id}/change-requests/{change_request_id}/accept",
            json={
                "actor_id": "user_1",
                "resolution_note": "Added",
                "overrides": {"deliverables": [{"text": "Blog page"}]},
            },
        )
        assert accepted.status_code == 200
        body = accepted.json()
        new_id = body["commitment"]["commitment_id"]
        assert body["commitment"]["version"] == 2
        assert body["commitment"]["status"] == "AWAITING_CLIENT_APPROVAL"
        assert body["previous_commitment"]["status"] == "CHANGE_REQUEST_CREATED"
        assert body["previous_commitment"]["is_current"] is False
        assert body["link"]["commitment_version"] == 2

        again = client.post(
            f"/commitments/{commitment_id}/change-requests/{change_request_id}/accept",
            json={"actor_id": "user_1"},
        )
        frozen_cancel = client.post(
            f"/commitments/{commitment_id}/cancel", json={"actor_id": "user_1"}
        )
        versions = client.get(f"/commitments/chains/{commitment_id}/versions").json()

    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "CHANGE_REQUEST_ALREADY_RESOLVED"
    assert frozen_cancel.status_code == 422
    assert [(item["version"], item["is_current"]) for item in versions["items"]] == [
        (1, False),
        (2, True),
    ]
    assert versions["items"][1]["commitment_id"] == new_id


def test_change_request_reject_returns_to_awaiting_approval():
    with TestClient(app) as client:
        commitment_id = _create(client)["commitment_id"]
        token = _send_approval(client, commitment_id)
        change_request_id = client.post(
            f"/public/approve/{token}",
            json={"action": "request_change", "comment": "Cheaper please"},
        ).json()["change_request_id"]

        rejected = client.post(
            f"/commitments/{commitment_id}/change-requests/{change_request_id}/reject",
            json={"actor_id": "user_1", "resolution_note": "Price is final"},
        )
        missing = client.post(
            f"/commitments/{commitment_id}/change-requests/cr_missing/reject",
            json={"actor_id": "user_1"},
        )

    assert rejected.status_code == 200
    assert rejected.json()["commitment"]["status"] == "AWAITING_CLIENT_APPROVAL"
    assert rejected.json()["change_request"]["status"] == "REJECTED"
    assert missing.status_code == 404


def test_list_commitments_filters_by_legacy_status_and_paginates():
    with TestClient(app) as client:
        first = _create(client)["commitment_id"]
        _create(client, client_id="cl_02")
        _send_approval(client, first)

        pending = client.get("/commitments", params={"status": "PENDING_APPROVAL"}).json()
        by_client = client.get("/commitments", params={"client_id": "cl_02"}).json()
        page = client.get("/commitments", params={"limit": 1}).json()
        bad_limit = client.get("/commitments", params={"limit": 0})

    assert [item["commitment_id"] for item in pending["items"]] == [first]
    assert len(by_client["items"]) == 1
    assert len(page["items"]) == 1
    assert page["next_cursor"] == page["items"][0]["commitment_id"]
    assert bad_limit.status_code == 422


def test_timeline_endpoint_orders_entries():
    with TestClient(app) as client:
        commitment_id = _create(client)["commitment_id"]
        _send_approval(client, commitment_id)

        newest = client.get(f"/commitments/{commitment_id}/timeline").json()
        oldest = client.get(
            f"/commitments/{commitment_id}/timeline", params={"order": "oldest"}
        ).json()
        invalid = client.get(f"/commitments/{commitment_id}/timeline", params={"order": "up"})

    assert [item["kind"] for item in oldest["items"]] == ["created", "sent"]
    assert [item["kind"] for item in newest["items"]] == ["sent", "created"]
    assert invalid.status_code == 422


def test_workflow_disabled_hides_internal_routes(monkeypatch):
    monkeypatch.setenv("COMMITMENT_WORKFLOW_ENABLED", "false")
    with TestClient(app) as client:
        response = client.post("/commitments", json=_create_payload())

    assert response.status_code == 404
    assert response.json()["detail"] == "COMMITMENT_WORKFLOW_DISABLED"


def test_repository_init_failures_map_to_503(monkeypatch):
    reset_commitment_workflow_service_for_tests()

    def _raise_runtime():
        raise RuntimeError("COMMITMENT_POSTGRES_DSN_REQUIRED")

    monkeypatch.setattr(commitments_router.commitments_config, "build_repository", _raise_runtime)
    with pytest.raises(HTTPException) as runtime_exc:
        commitments_router.get_commitment_repository()
    assert runtime_exc.value.status_code == 503
    assert runtime_exc.value.detail == "COMMITMENT_POSTGRES_DSN_REQUIRED"

    def _raise_value():
        raise ValueError("bad dsn")

    monkeypatch.setattr(commitments_router.commitments_config, "build_repository", _raise_value)
    with pytest.raises(HTTPException) as value_exc:
        commitments_router.get_commitment_repository()
    assert value_exc.value.detail == "COMMITMENT_POSTGRES_CONNECTION_FAILED"

    with TestClient(app) as client:
        response = client.get("/commitments")
    assert response.status_code == 503


def test_supportability_config_reports_backend_and_flags(monkeypatch):
    monkeypatch.setenv("COMMITMENT_LINK_TTL_HOURS", "24")
    monkeypatch.setenv("COMMITMENT_NEW_VERSION_STATUS", "DRAFT")
    with TestClient(app) as client:
        ready = client.get("/commitments/supportability/config").json()

    assert ready["store_backend"] == "POSTGRES"
    assert ready["backend_ready"] is True
    assert ready["link_ttl_hours"] == 24
    assert ready["new_version_status"] == "DRAFT"
    assert ready["public_links_enabled"] is True

    monkeypatch.delenv("COMMITMENT_POSTGRES_DSN")
    with TestClient(app) as client:
        broken = client.get("/commitments/supportability/config").json()

    assert broken["backend_ready"] is False
    assert broken["backend_init_error"] == "COMMITMENT_POSTGRES_DSN_REQUIRED"
