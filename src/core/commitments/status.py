from typing import Any, Literal, Optional, get_args

CommitmentStatus = Literal[
    "DRAFT",
    "INTERNAL_REVIEW",
    "AWAITING_CLIENT_APPROVAL",
    "IN_PROGRESS",
    "CHANGE_REQUEST_CREATED",
    "DELIVERED",
    "ACCEPTED",
    "CLOSED",
    "CANCELLED",
]

COMMITMENT_STATUSES: tuple[str, ...] = get_args(CommitmentStatus)

# Older clients still send and read these names.
LEGACY_STATUS_ALIASES: dict[str, CommitmentStatus] = {
    "PENDING_APPROVAL": "AWAITING_CLIENT_APPROVAL",
    "CHANGE_REQUESTED": "CHANGE_REQUEST_CREATED",
    "PENDING_ACCEPTANCE": "DELIVERED",
    "COMPLETED": "ACCEPTED",
}

LEGACY_STATUS_NAMES: dict[str, str] = {
    canonical: legacy for legacy, canonical in LEGACY_STATUS_ALIASES.items()
}


def normalize_commitment_status(value: Any) -> Any:
    """Map a wire status (canonical or legacy) onto the canonical vocabulary.

    Unknown values are returned untouched so pydantic reports them against the
    ``CommitmentStatus`` literal.
    """
    if not isinstance(value, str):
        return value
    normalized = value.strip().upper()
    return LEGACY_STATUS_ALIASES.get(normalized, normalized)


def legacy_status_name(status: CommitmentStatus) -> Optional[str]:
    return LEGACY_STATUS_NAMES.get(status)
