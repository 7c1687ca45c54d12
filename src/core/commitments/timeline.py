"""Read-only audit timeline for a single commitment.

Entries come from three sources, in this precedence: the commitment's own lifecycle
timestamps, its history events, then its change requests. Two entries with the same
kind and timestamp are the same fact seen twice and only the first one is kept.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Iterator, Optional, Sequence

from src.core.commitments.models import (
    ActorType,
    ChangeRequestRecord,
    CommitmentHistoryEventRecord,
    CommitmentRecord,
    TimelineKind,
    TimelineOrder,
)

_BY_TEAM = "By Team"
_BY_CLIENT = "By Client"

_COMMITMENT_FIELDS: tuple[tuple[str, TimelineKind, str, str], ...] = (
    ("created_at", "created", "Commitment created", _BY_TEAM),
    ("approval_sent_at", "sent", "Approval link sent to client", _BY_TEAM),
    ("approved_at", "approved", "Client approved scope", _BY_CLIENT),
    ("delivered_at", "delivered", "Marked as delivered", _BY_TEAM),
    ("accepted_at", "accepted", "Client accepted deliverables", _BY_CLIENT),
)

_HISTORY_KINDS: dict[str, tuple[TimelineKind, str]] = {
    "COMMITMENT_CREATED": ("created", "Commitment created"),
    "APPROVAL_LINK_SENT": ("sent", "Approval link sent to client"),
    "APPROVAL_LINK_RESENT": ("reminder", "Approval reminder sent"),
    "CLIENT_APPROVED": ("approved", "Client approved scope"),
    "CLIENT_REQUESTED_CHANGE": ("change-requested", "Client requested changes"),
    "CHANGE_REQUEST_ACCEPTED": ("change-requested", "Change request accepted"),
    "CHANGE_REQUEST_REJECTED": ("change-requested", "Change request rejected"),
    "TERMS_UPDATED_NEW_VERSION": ("change-requested", "Terms updated, re-approval required"),
    "MARKED_DELIVERED": ("delivered", "Marked as delivered"),
    "MARKED_DELIVERED_AUTO_ACCEPTED": ("delivered", "Marked as delivered"),
    "ACCEPTANCE_LINK_SENT": ("sent", "Acceptance link sent to client"),
    "ACCEPTANCE_LINK_RESENT": ("reminder", "Acceptance reminder sent"),
    "CLIENT_ACCEPTED": ("accepted", "Client accepted deliverables"),
    "CLIENT_REQUESTED_FIX": ("change-requested", "Client requested fixes"),
}


@dataclass(frozen=True)
class TimelineItem:
    kind: TimelineKind
    title: str
    subtitle: Optional[str]
    at: datetime


def _subtitle(actor_type: ActorType) -> str:
    return _BY_CLIENT if actor_type == "CLIENT" else _BY_TEAM


def _from_commitment(commitment: CommitmentRecord) -> Iterator[TimelineItem]:
    for field_name, kind, title, subtitle in _COMMITMENT_FIELDS:
        at = getattr(commitment, field_name)
        if at is not None:
            yield TimelineItem(kind=kind, title=title, subtitle=subtitle, at=at)


def _from_history(history: Iterable[CommitmentHistoryEventRecord]) -> Iterator[TimelineItem]:
    for event in history:
        if event.event_type == "NEW_VERSION_CREATED":
            kind: TimelineKind = "change-requested"
            source = "change request" if "change_request_id" in event.meta else "terms update"
            title = f"New version created from {source} (v{event.commitment_version})"
        elif event.event_type in _HISTORY_KINDS:
            kind, title = _HISTORY_KINDS[event.event_type]
        else:
            continue
        yield TimelineItem(
            kind=kind, title=title, subtitle=_subtitle(event.actor_type), at=event.created_at
        )


def _from_change_requests(
    change_requests: Iterable[ChangeRequestRecord],
) -> Iterator[TimelineItem]:
    for change_request in change_requests:
        yield TimelineItem(
            kind="change-requested",
            title="Client requested changes",
            subtitle=_subtitle(change_request.requested_by.type),
            at=change_request.created_at,
        )
        if change_request.resolved_at is not None and change_request.status != "OPEN":
            yield TimelineItem(
                kind="change-requested",
                title=f"Change request {change_request.status.lower()}",
                subtitle=_BY_TEAM,
                at=change_request.resolved_at,
            )


class CommitmentTimeline:
    """Restartable view: every iteration rebuilds the entries from the inputs."""

    def __init__(
        self,
        *,
        commitment: CommitmentRecord,
        history: Sequence[CommitmentHistoryEventRecord] = (),
        change_requests: Sequence[ChangeRequestRecord] = (),
        order: TimelineOrder = "newest",
    ) -> None:
        if order not in ("newest", "oldest"):
            raise ValueError(f"unsupported timeline order: {order}")
        self._commitment = commitment
        self._history = tuple(history)
        self._change_requests = tuple(change_requests)
        self._order = order

    @property
    def order(self) -> TimelineOrder:
        return self._order

    def __iter__(self) -> Iterator[TimelineItem]:
        return iter(self._build())

    def _build(self) -> list[TimelineItem]:
        seen: set[tuple[str, datetime]] = set()
        items: list[TimelineItem] = []
        sources = (
            _from_commitment(self._commitment),
            _from_history(self._history),
            _from_change_requests(self._change_requests),
        )
        for source in sources:
            for item in source:
                key = (item.kind, item.at)
                if key in seen:
                    continue
                seen.add(key)
                items.append(item)
        return sorted(items, key=lambda item: item.at, reverse=self._order == "newest")


def reconstruct_timeline(
    commitment: CommitmentRecord,
    history: Sequence[CommitmentHistoryEventRecord] = (),
    change_requests: Sequence[ChangeRequestRecord] = (),
    order: TimelineOrder = "newest",
) -> CommitmentTimeline:
    return CommitmentTimeline(
        commitment=commitment,
        history=history,
        change_requests=change_requests,
        order=order,
    )
