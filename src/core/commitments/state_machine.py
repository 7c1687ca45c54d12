from typing import Literal

from src.core.commitments.errors import CommitmentTransitionError
from src.core.commitments.models import CommitmentRecord
from src.core.commitments.status import CommitmentStatus

CommitmentAction = Literal[
    "SUBMIT_INTERNAL_REVIEW",
    "SEND_APPROVAL",
    "RESEND_APPROVAL",
    "APPROVE",
    "REQUEST_CHANGE",
    "ACCEPT_CHANGE_REQUEST",
    "REJECT_CHANGE_REQUEST",
    "MARK_DELIVERED",
    "SEND_ACCEPTANCE",
    "RESEND_ACCEPTANCE",
    "ACCEPT",
    "REQUEST_FIX",
    "CLOSE",
    "CANCEL",
]

TERMINAL_STATUSES: frozenset[CommitmentStatus] = frozenset({"CLOSED", "CANCELLED"})

# An accepted change request leaves the superseded version in CHANGE_REQUEST_CREATED.
COMMITMENT_TRANSITIONS: dict[tuple[CommitmentStatus, CommitmentAction], CommitmentStatus] = {
    ("DRAFT", "SUBMIT_INTERNAL_REVIEW"): "INTERNAL_REVIEW",
    ("DRAFT", "SEND_APPROVAL"): "AWAITING_CLIENT_APPROVAL",
    ("INTERNAL_REVIEW", "SEND_APPROVAL"): "AWAITING_CLIENT_APPROVAL",
    ("DRAFT", "RESEND_APPROVAL"): "AWAITING_CLIENT_APPROVAL",
    ("INTERNAL_REVIEW", "RESEND_APPROVAL"): "AWAITING_CLIENT_APPROVAL",
    ("AWAITING_CLIENT_APPROVAL", "RESEND_APPROVAL"): "AWAITING_CLIENT_APPROVAL",
    ("AWAITING_CLIENT_APPROVAL", "APPROVE"): "IN_PROGRESS",
    ("AWAITING_CLIENT_APPROVAL", "REQUEST_CHANGE"): "CHANGE_REQUEST_CREATED",
    ("CHANGE_REQUEST_CREATED", "ACCEPT_CHANGE_REQUEST"): "CHANGE_REQUEST_CREATED",
    ("CHANGE_REQUEST_CREATED", "REJECT_CHANGE_REQUEST"): "AWAITING_CLIENT_APPROVAL",
    ("IN_PROGRESS", "MARK_DELIVERED"): "DELIVERED",
    ("DELIVERED", "SEND_ACCEPTANCE"): "DELIVERED",
    ("DELIVERED", "RESEND_ACCEPTANCE"): "DELIVERED",
    ("DELIVERED", "ACCEPT"): "ACCEPTED",
    ("DELIVERED", "REQUEST_FIX"): "IN_PROGRESS",
    ("ACCEPTED", "CLOSE"): "CLOSED",
}


def resolve_transition(
    commitment: CommitmentRecord, action: CommitmentAction
) -> CommitmentStatus:
    """Return the status ``action`` moves ``commitment`` to, or raise.

    Superseded (frozen) chain members accept no action at all.
    """
    if commitment.frozen:
        raise CommitmentTransitionError(
            f"{action} not allowed: commitment {commitment.commitment_id} is superseded"
        )
    if action == "CANCEL":
        if commitment.status in TERMINAL_STATUSES:
            raise CommitmentTransitionError(f"CANCEL not allowed from {commitment.status}")
        return "CANCELLED"
    next_status = COMMITMENT_TRANSITIONS.get((commitment.status, action))
    if next_status is None:
        raise CommitmentTransitionError(f"{action} not allowed from {commitment.status}")
    return next_status


def allowed_actions(commitment: CommitmentRecord) -> list[CommitmentAction]:
    if commitment.frozen:
        return []
    actions: list[CommitmentAction] = [
        action for (status, action) in COMMITMENT_TRANSITIONS if status == commitment.status
    ]
    if commitment.status not in TERMINAL_STATUSES:
        actions.append("CANCEL")
    return actions
