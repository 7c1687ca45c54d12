from datetime import datetime
from typing import Optional, Protocol

from src.core.commitments.models import (
    ChangeRequestRecord,
    CommitmentHistoryEventRecord,
    CommitmentIdempotencyRecord,
    CommitmentRecord,
    CommitmentTransitionResult,
    SecureLinkRecord,
)
from src.core.commitments.status import CommitmentStatus


class CommitmentRepository(Protocol):
    """Persistence contract for commitments and their audit trail.

    ``transition_commitment`` and ``resolve_change_request`` are the only writers of
    existing commitments. Both compare the stored status and ``updated_at`` with the
    expected values and raise ``CommitmentConcurrencyError`` when another writer won.
    """

    def get_idempotency(
        self, *, idempotency_key: str
    ) -> Optional[CommitmentIdempotencyRecord]: ...

    def save_idempotency(self, record: CommitmentIdempotencyRecord) -> None: ...

    def create_commitment(
        self, *, commitment: CommitmentRecord, event: CommitmentHistoryEventRecord
    ) -> None: ...

    def get_commitment(self, *, commitment_id: str) -> Optional[CommitmentRecord]: ...

    def list_commitments(
        self,
        *,
        status: Optional[CommitmentStatus],
        client_id: Optional[str],
        assigned_to_user_id: Optional[str],
        include_superseded: bool,
        limit: int,
        cursor: Optional[str],
    ) -> tuple[list[CommitmentRecord], Optional[str]]: ...

    def list_chain(self, *, root_commitment_id: str) -> list[CommitmentRecord]: ...

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
    ) -> CommitmentTransitionResult: ...

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
    ) -> None: ...

    def supersede_commitment(
        self,
        *,
        commitment: CommitmentRecord,
        expected_status: CommitmentStatus,
        expected_updated_at: datetime,
        events: list[CommitmentHistoryEventRecord],
        new_commitment: CommitmentRecord,
        new_link: Optional[SecureLinkRecord] = None,
    ) -> None: ...

    def list_events(self, *, commitment_id: str) -> list[CommitmentHistoryEventRecord]: ...

    def get_change_request(self, *, change_request_id: str) -> Optional[ChangeRequestRecord]: ...

    def list_change_requests(self, *, commitment_id: str) -> list[ChangeRequestRecord]: ...

    def get_link_by_token_hash(self, *, token_hash: str) -> Optional[SecureLinkRecord]: ...
