from concurrent.futures import ThreadPoolExecutor

import pytest

from src.core.commitments.errors import (
    ChangeRequestAlreadyResolvedError,
    CommitmentConcurrencyError,
    CommitmentLifecycleError,
    CommitmentTransitionError,
    LinkAlreadyUsedError,
)
from src.core.commitments.models import ChangeRequestAcceptRequest, ChangeRequestRejectRequest
from tests.factories import action, build_service, create_request


def test_concurrent_approvals_with_one_token_have_exactly_one_winner():
    service, repository, _ = build_service()
    commitment_id = service.create_commitment(payload=create_request()).commitment.commitment_id
    token = service.send_approval(commitment_id=commitment_id, payload=action()).link.token

    def _approve(_):
        try:
            return service.approve(commitment_id=commitment_id, token=token)
        except CommitmentLifecycleError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=4) as pool:
        outcomes = list(pool.map(_approve, range(4)))

    winners = [outcome for outcome in outcomes if not isinstance(outcome, Exception)]
    losers = [outcome for outcome in outcomes if isinstance(outcome, Exception)]
    assert len(winners) == 1
    assert all(
        isinstance(
            loser, (CommitmentConcurrencyError, CommitmentTransitionError, LinkAlreadyUsedError)
        )
        for loser in losers
    )
    events = repository.list_events(commitment_id=commitment_id)
    assert [event.event_type for event in events].count("CLIENT_APPROVED") == 1


def test_stale_writer_is_rejected_and_nothing_is_written():
    service, repository, clock = build_service()
    commitment_id = service.create_commitment(payload=create_request()).commitment.commitment_id
    stale = repository.get_commitment(commitment_id=commitment_id)
    clock.advance(minutes=1)
    service.submit_internal_review(commitment_id=commitment_id, payload=action())
    event = repository.list_events(commitment_id=commitment_id)[-1]

    with pytest.raises(CommitmentConcurrencyError):
        repository.transition_commitment(
            commitment=stale.model_copy(update={"status": "CANCELLED"}),
            expected_status=stale.status,
            expected_updated_at=stale.updated_at,
            event=event.model_copy(update={"event_id": "che_stale"}),
        )

    assert repository.get_commitment(commitment_id=commitment_id).status == "INTERNAL_REVIEW"
    assert len(repository.list_events(commitment_id=commitment_id)) == 2


def test_change_request_is_resolved_at_most_once():
    service, repository, clock = build_service()
    commitment_id = service.create_commitment(payload=create_request()).commitment.commitment_id
    token = service.send_approval(commitment_id=commitment_id, payload=action()).link.token
    change = service.request_change(commitment_id=commitment_id, token=token, comment="fix header")
    open_request = repository.get_change_request(change_request_id=change.change_request_id)
    before = repository.get_commitment(commitment_id=commitment_id)

    clock.advance(minutes=1)
    service.reject_change_request(
        commitment_id=commitment_id,
        change_request_id=change.change_request_id,
        payload=ChangeRequestRejectRequest(actor_id="user_1"),
    )

    with pytest.raises(ChangeRequestAlreadyResolvedError):
        repository.resolve_change_request(
            change_request=open_request.model_copy(update={"status": "ACCEPTED"}),
            commitment=before.model_copy(update={"frozen": True}),
            expected_status=before.status,
            expected_updated_at=before.updated_at,
            events=[],
        )
    with pytest.raises(ChangeRequestAlreadyResolvedError):
        service.accept_change_request(
            commitment_id=commitment_id,
            change_request_id=change.change_request_id,
            payload=ChangeRequestAcceptRequest(actor_id="user_1"),
        )
    assert len(repository.list_chain(root_commitment_id=commitment_id)) == 1


def test_reads_return_copies():
    service, repository, _ = build_service()
    commitment_id = service.create_commitment(payload=create_request()).commitment.commitment_id

    loaded = repository.get_commitment(commitment_id=commitment_id)
    loaded.status = "CLOSED"
    loaded.deliverables.clear()

    stored = repository.get_commitment(commitment_id=commitment_id)
    assert stored.status == "DRAFT"
    assert len(stored.deliverables) == 2


def test_listing_pages_newest_first_and_unknown_cursor_is_empty():
    service, repository, clock = build_service()
    ids = []
    for index in range(5):
        ids.append(
            service.create_commitment(payload=create_request(title=f"Job {index}"))
            .commitment.commitment_id
        )
        clock.advance(minutes=1)

    collected = []
    cursor = None
    while True:
        page, cursor = repository.list_commitments(
            status=None,
            client_id=None,
            assigned_to_user_id=None,
            include_superseded=False,
            limit=2,
            cursor=cursor,
        )
        collected.extend(row.commitment_id for row in page)
        if cursor is None:
            break

    assert collected == list(reversed(ids))
    assert repository.list_commitments(
        status=None,
        client_id=None,
        assigned_to_user_id=None,
        include_superseded=False,
        limit=2,
        cursor="cm_missing",
    ) == ([], None)
