from copy import deepcopy
from datetime import datetime
from threading import Lock
from typing import Optional

from src.core.commitments.errors import (
    ChangeRequestAlreadyResolvedError,
    CommitmentConcurrencyError,
    LinkAlreadyUsedError,
)
from src.core.commitments.models import (
    ChangeRequestRecord,
    CommitmentHistoryEventRecord,
    CommitmentIdempotencyRecord,
    CommitmentRecord,
    CommitmentTransitionResult,
    SecureLinkRecord,
)
from src.core.commitments.repository import CommitmentRepository
from src.core.commitments.status import CommitmentStatus


class InMemoryCommitmentRepository(CommitmentRepository):
    def __init__(self) -> None:
        self._lock = Lock()
        self._commitments: dict[str, CommitmentRecord] = {}
        self._events: dict[str, list[CommitmentHistoryEventRecord]] = {}
        self._change_requests: dict[str, ChangeRequestRecord] = {}
        self._links: dict[str, SecureLinkRecord] = {}
        self._idempotency: dict[str, CommitmentIdempotencyRecord] = {}

    def get_idempotency(
        self, *, idempotency_key: str
    ) -> Optional[CommitmentIdempotencyRecord]:
        with self._lock:
            record = self._idempotency.get(idempotency_key)
            return deepcopy(record) if record is not None else None

    def save_idempotency(self, record: CommitmentIdempotencyRecord) -> None:
        with self._lock:
            self._idempotency[record.idempotency_key] = deepcopy(record)

    def create_commitment(
        self, *, commitment: CommitmentRecord, event: CommitmentHistoryEventRecord
    ) -> None:
        with self._lock:
            self._commitments[commitment.commitment_id] = deepcopy(commitment)
            self._events.setdefault(event.commitment_id, []).append(deepcopy(event))

    def get_commitment(self, *, commitment_id: str) -> Optional[CommitmentRecord]:
        with self._lock:
            commitment = self._commitments.get(commitment_id)
            return deepcopy(commitment) if commitment is not None else None

    def list_commitments(
        self,
        *,
        status: Optional[CommitmentStatus],
        client_id: Optional[str],
        assigned_to_user_id: Optional[str],
        include_superseded: bool,
        limit: int,
        cursor: Optional[str],
    ) -> tuple[list[CommitmentRecord], Optional[str]]:
        with self._lock:
            rows = list(self._commitments.values())

        rows = sorted(rows, key=lambda x: (x.created_at, x.commitment_id), reverse=True)

        if not include_superseded:
            rows = [row for row in rows if not row.frozen]
        if status is not None:
            rows = [row for row in rows if row.status == status]
        if client_id is not None:
            rows = [row for row in rows if row.client_id == client_id]
        if assigned_to_user_id is not None:
            rows = [row for row in rows if row.assigned_to_user_id == assigned_to_user_id]

        if cursor:
            row_ids = [row.commitment_id for row in rows]
            if cursor not in row_ids:
                return [], None
            rows = rows[row_ids.index(cursor) + 1 :]

        page = rows[:limit]
        next_cursor = page[-1].commitment_id if len(rows) > limit else None
        return [deepcopy(row) for row in page], next_cursor

    def list_chain(self, *, root_commitment_id: str) -> list[CommitmentRecord]:
        with self._lock:
            rows = [
                deepcopy(row)
                for row in self._commitments.values()
                if row.root_commitment_id == root_commitment_id
            ]
        return sorted(rows, key=lambda x: x.version)

    def transition_commitment(
        self,
        *,
        commitment: CommitmentRecord,
        expected_status: CommitmentStatus,
        expected_updated_at: datetime,
        event: CommitmentHistoryEventRecord,
        change_request: Optional[ChangeRequestRecord] = None,
        new_link: Optional[SecureLinkRecord] = None,
        consumed_link_id: Optional[str] = None,
    ) -> CommitmentTransitionResult:
        with self._lock:
            self._check_current(
                commitment_id=commitment.commitment_id,
                expected_status=expected_status,
                expected_updated_at=expected_updated_at,
            )
            consumed: Optional[SecureLinkRecord] = None
            if consumed_link_id is not None:
                consumed = self._links.get(consumed_link_id)
                if consumed is None or consumed.used_at is not None:
                    raise LinkAlreadyUsedError("link has already been used")
            if change_request is not None and change_request.status == "OPEN":
                if any(
                    row.commitment_id == change_request.commitment_id and row.status == "OPEN"
                    for row in self._change_requests.values()
                ):
                    raise CommitmentConcurrencyError(
                        f"commitment {change_request.commitment_id} already has an open "
                        "change request"
                    )

            if consumed is not None:
                consumed.used_at = event.created_at
            if new_link is not None:
                self._links[new_link.link_id] = deepcopy(new_link)
            if change_request is not None:
                self._change_requests[change_request.change_request_id] = deepcopy(
                    change_request
                )
            self._events.setdefault(event.commitment_id, []).append(deepcopy(event))
            self._commitments[commitment.commitment_id] = deepcopy(commitment)

        return CommitmentTransitionResult(
            commitment=deepcopy(commitment),
            event=deepcopy(event),
            change_request=deepcopy(change_request) if change_request is not None else None,
        )

    def resolve_change_request(
        self,
        *,
        change_request: ChangeRequestRecord,
        commitment: CommitmentRecord,
        expected_status: CommitmentStatus,
        expected_updated_at: datetime,
        events: list[CommitmentHistoryEventRecord],
        new_commitment: Optional[CommitmentRecord] = None,
        new_link: Optional[SecureLinkRecord] = None,
    ) -> None:
        with self._lock:
            stored = self._change_requests.get(change_request.change_request_id)
            if stored is None or stored.status != "OPEN":
                raise ChangeRequestAlreadyResolvedError(
                    f"change request {change_request.change_request_id} is already resolved"
                )
            self._check_current(
                commitment_id=commitment.commitment_id,
                expected_status=expected_status,
                expected_updated_at=expected_updated_at,
            )
            self._change_requests[change_request.change_request_id] = deepcopy(change_request)
            self._store_chain_update(
                commitment=commitment,
                events=events,
                new_commitment=new_commitment,
                new_link=new_link,
            )

    def supersede_commitment(
        self,
        *,
        commitment: CommitmentRecord,
        expected_status: CommitmentStatus,
        expected_updated_at: datetime,
        events: list[CommitmentHistoryEventRecord],
        new_commitment: CommitmentRecord,
        new_link: Optional[SecureLinkRecord] = None,
    ) -> None:
        with self._lock:
            self._check_current(
                commitment_id=commitment.commitment_id,
                expected_status=expected_status,
                expected_updated_at=expected_updated_at,
            )
            self._store_chain_update(
                commitment=commitment,
                events=events,
                new_commitment=new_commitment,
                new_link=new_link,
            )

    def list_events(self, *, commitment_id: str) -> list[CommitmentHistoryEventRecord]:
        with self._lock:
            events = self._events.get(commitment_id, [])
            return [deepcopy(event) for event in events]

    def get_change_request(self, *, change_request_id: str) -> Optional[ChangeRequestRecord]:
        with self._lock:
            change_request = self._change_requests.get(change_request_id)
            return deepcopy(change_request) if change_request is not None else None

    def list_change_requests(self, *, commitment_id: str) -> list[ChangeRequestRecord]:
        with self._lock:
            rows = [
                deepcopy(row)
                for row in self._change_requests.values()
                if row.commitment_id == commitment_id
            ]
        return sorted(rows, key=lambda x: x.created_at)

    def get_link_by_token_hash(self, *, token_hash: str) -> Optional[SecureLinkRecord]:
        with self._lock:
            link = next(
                (row for row in self._links.values() if row.token_hash == token_hash), None
            )
            return deepcopy(link) if link is not None else None

    def _check_current(
        self,
        *,
        commitment_id: str,
        expected_status: CommitmentStatus,
        expected_updated_at: datetime,
    ) -> None:
        stored = self._commitments.get(commitment_id)
        if (
            stored is None
            or stored.frozen
            or stored.status != expected_status
            or stored.updated_at != expected_updated_at
        ):
            raise CommitmentConcurrencyError(
                f"commitment {commitment_id} changed since it was read"
            )

    def _store_chain_update(
        self,
        *,
        commitment: CommitmentRecord,
        events: list[CommitmentHistoryEventRecord],
        new_commitment: Optional[CommitmentRecord],
        new_link: Optional[SecureLinkRecord],
    ) -> None:
        self._commitments[commitment.commitment_id] = deepcopy(commitment)
        if new_commitment is not None:
            self._commitments[new_commitment.commitment_id] = deepcopy(new_commitment)
        if new_link is not None:
            self._links[new_link.link_id] = deepcopy(new_link)
        for event in events:
            self._events.setdefault(event.commitment_id, []).append(deepcopy(event))
