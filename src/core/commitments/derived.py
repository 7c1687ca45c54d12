from datetime import datetime, timedelta

from src.core.commitments.models import CommitmentRecord, DeliverableProgress, RiskLevel

DEFAULT_STALE_AFTER_DAYS = 7

_DONE_DELIVERABLE_STATUSES = {"DELIVERED", "ACCEPTED"}
_WAITING_ON_CLIENT_STATUSES = {"AWAITING_CLIENT_APPROVAL", "DELIVERED", "CHANGE_REQUEST_CREATED"}


def deliverable_progress(commitment: CommitmentRecord) -> DeliverableProgress:
    total = len(commitment.deliverables)
    done = sum(
        1 for item in commitment.deliverables if item.status in _DONE_DELIVERABLE_STATUSES
    )
    percent = round(done * 100 / total) if total else 0
    return DeliverableProgress(done=done, total=total, percent=percent)


def risk_level(
    commitment: CommitmentRecord,
    *,
    now: datetime,
    stale_after_days: int = DEFAULT_STALE_AFTER_DAYS,
) -> RiskLevel:
    """Follow-up risk shown on dashboards; never persisted.

    Cancelled work and anything stuck on the client past the stale window is HIGH.
    Work waiting on the client inside the window is LOW. Superseded versions carry none.
    """
    if commitment.frozen:
        return "NONE"
    if commitment.status == "CANCELLED":
        return "HIGH"
    if commitment.status not in _WAITING_ON_CLIENT_STATUSES:
        return "NONE"
    if now - commitment.updated_at > timedelta(days=stale_after_days):
        return "HIGH"
    return "LOW"
