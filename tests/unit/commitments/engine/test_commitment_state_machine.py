from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from src.core.commitments.errors import CommitmentTransitionError
from src.core.commitments.models import ChangeRequestRecord, CommitmentRecord
from src.core.commitments.state_machine import (
    COMMITMENT_TRANSITIONS,
    allowed_actions,
    resolve_transition,
)
from src.core.commitments.status import (
    COMMITMENT_STATUSES,
    legacy_status_name,
    normalize_commitment_status,
)

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _record(status: str, *, frozen: bool = False) -> CommitmentRecord:
    return CommitmentRecord(
        commitment_id="cm_001",
        root_commitment_id="cm_001",
        version=1,
        status=status,
        title="Website redesign",
        created_by="user_1",
        created_at=NOW,
        updated_at=NOW,
        frozen=frozen,
    )


@pytest.mark.parametrize(
    ("status", "action", "expected"),
    [
        ("DRAFT", "SEND_APPROVAL", "AWAITING_CLIENT_APPROVAL"),
        ("INTERNAL_REVIEW", "SEND_APPROVAL", "AWAITING_CLIENT_APPROVAL"),
        ("AWAITING_CLIENT_APPROVAL", "RESEND_APPROVAL", "AWAITING_CLIENT_APPROVAL"),
        ("AWAITING_CLIENT_APPROVAL", "APPROVE", "IN_PROGRESS"),
        ("AWAITING_CLIENT_APPROVAL", "REQUEST_CHANGE", "CHANGE_REQUEST_CREATED"),
        ("CHANGE_REQUEST_CREATED", "REJECT_CHANGE_REQUEST", "AWAITING_CLIENT_APPROVAL"),
        ("IN_PROGRESS", "MARK_DELIVERED", "DELIVERED"),
        ("DELIVERED", "ACCEPT", "ACCEPTED"),
        ("DELIVERED", "REQUEST_FIX", "IN_PROGRESS"),
        ("ACCEPTED", "CLOSE", "CLOSED"),
    ],
)
def test_resolve_transition_follows_lifecycle(status, action, expected):
    assert resolve_transition(_record(status), action) == expected


@pytest.mark.parametrize(
    ("status", "action"),
    [
        ("DRAFT", "APPROVE"),
        ("IN_PROGRESS", "APPROVE"),
        ("AWAITING_CLIENT_APPROVAL", "SEND_APPROVAL"),
        ("DELIVERED", "MARK_DELIVERED"),
        ("IN_PROGRESS", "CLOSE"),
        ("CLOSED", "CANCEL"),
        ("CANCELLED", "CANCEL"),
    ],
)
def test_resolve_transition_rejects_guard_failures(status, action):
    with pytest.raises(CommitmentTransitionError):
        resolve_transition(_record(status), action)


@pytest.mark.parametrize("status", ["DRAFT", "IN_PROGRESS", "DELIVERED", "ACCEPTED"])
def test_cancel_is_allowed_from_any_open_status(status):
    assert resolve_transition(_record(status), "CANCEL") == "CANCELLED"


def test_frozen_commitment_allows_nothing():
    frozen = _record("CHANGE_REQUEST_CREATED", frozen=True)

    with pytest.raises(CommitmentTransitionError, match="superseded"):
        resolve_transition(frozen, "REJECT_CHANGE_REQUEST")
    assert allowed_actions(frozen) == []


def test_allowed_actions_include_cancel_until_terminal():
    assert set(allowed_actions(_record("DRAFT"))) == {
        "SUBMIT_INTERNAL_REVIEW",
        "SEND_APPROVAL",
        "RESEND_APPROVAL",
        "CANCEL",
    }
    assert allowed_actions(_record("CLOSED")) == []


def test_transition_table_only_uses_known_statuses():
    for (status, _), target in COMMITMENT_TRANSITIONS.items():
        assert status in COMMITMENT_STATUSES
        assert target in COMMITMENT_STATUSES


@pytest.mark.parametrize(
    ("wire", "canonical"),
    [
        ("PENDING_APPROVAL", "AWAITING_CLIENT_APPROVAL"),
        ("change_requested", "CHANGE_REQUEST_CREATED"),
        (" PENDING_ACCEPTANCE ", "DELIVERED"),
        ("COMPLETED", "ACCEPTED"),
        ("IN_PROGRESS", "IN_PROGRESS"),
    ],
)
def test_legacy_status_names_normalize_to_canonical(wire, canonical):
    assert normalize_commitment_status(wire) == canonical
    assert _record(wire).status == canonical


def test_legacy_status_name_round_trip_and_unknown_status_rejected():
    assert legacy_status_name("DELIVERED") == "PENDING_ACCEPTANCE"
    assert legacy_status_name("DRAFT") is None

    with pytest.raises(ValidationError):
        _record("SHIPPED")


def test_change_request_previous_status_is_normalized():
    record = ChangeRequestRecord(
        change_request_id="cr_001",
        commitment_id="cm_001",
        commitment_version=1,
        status="OPEN",
        reason="fix header",
        requested_by={"type": "CLIENT"},
        previous_status="PENDING_APPROVAL",
        created_at=NOW,
    )

    assert record.previous_status == "AWAITING_CLIENT_APPROVAL"
