import hashlib
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from src.core.commitments.derived import (
    DEFAULT_STALE_AFTER_DAYS,
    deliverable_progress,
    risk_level,
)
from src.core.commitments.errors import (
    ChangeRequestAlreadyResolvedError,
    CommitmentIdempotencyConflictError,
    CommitmentNotFoundError,
    CommitmentTransitionError,
    CommitmentValidationError,
    LinkAlreadyUsedError,
    LinkExpiredError,
    LinkInvalidError,
    LinkVersionMismatchError,
)
from src.core.commitments.models import (
    AcceptAction,
    ActorType,
    ApprovalRules,
    ApproveAction,
    ChangeRequest,
    ChangeRequestAcceptRequest,
    ChangeRequestListResponse,
    ChangeRequestRecord,
    ChangeRequestRejectRequest,
    ChangeRequestRequester,
    ChangeRequestResolutionResponse,
    CommitmentActionRequest,
    CommitmentActionResponse,
    CommitmentAssignRequest,
    CommitmentCreateRequest,
    CommitmentDetail,
    CommitmentHistoryEvent,
    CommitmentHistoryEventRecord,
    CommitmentHistoryEventType,
    CommitmentHistoryResponse,
    CommitmentIdempotencyRecord,
    CommitmentLinkIssued,
    CommitmentListResponse,
    CommitmentRecord,
    CommitmentSummary,
    CommitmentTimelineResponse,
    CommitmentTransitionResult,
    CommitmentUpdateRequest,
    CommitmentVersionItem,
    CommitmentVersionsResponse,
    LinkPurpose,
    PublicActionResponse,
    PublicCommitmentView,
    PublicLinkInfoResponse,
    RequestChangeAction,
    RequestFixAction,
    TimelineEntry,
    TimelineOrder,
)
from src.core.commitments.notifications import (
    CommitmentNotification,
    CommitmentNotifier,
    LoggingCommitmentNotifier,
    NotificationKind,
    dispatch_notification,
)
from src.core.commitments.repository import CommitmentRepository
from src.core.commitments.state_machine import (
    CommitmentAction,
    allowed_actions,
    resolve_transition,
)
from src.core.commitments.status import (
    CommitmentStatus,
    legacy_status_name,
    normalize_commitment_status,
)
from src.core.commitments.timeline import reconstruct_timeline
from src.core.commitments.tokens import (
    IssuedLink,
    LinkTokenClaims,
    LinkTokenService,
    SecureLinkTokenService,
)

logger = logging.getLogger(__name__)

NEW_VERSION_STATUSES: frozenset[CommitmentStatus] = frozenset(
    {"DRAFT", "AWAITING_CLIENT_APPROVAL"}
)

_TERM_FIELDS = frozenset(
    {
        "title",
        "scope_title",
        "scope_description",
        "amount",
        "currency",
        "attachments",
        "approval_rules",
    }
)

# Statuses in which each editable field may still change.
_EDITABLE_IN: dict[str, frozenset[str]] = {
    **{field: frozenset({"DRAFT", "INTERNAL_REVIEW"}) for field in _TERM_FIELDS},
    "deliverables": frozenset({"DRAFT", "INTERNAL_REVIEW", "IN_PROGRESS"}),
    "payment_terms": frozenset({"DRAFT", "INTERNAL_REVIEW", "IN_PROGRESS", "DELIVERED"}),
    "milestones": frozenset({"DRAFT", "INTERNAL_REVIEW", "IN_PROGRESS", "DELIVERED"}),
}

_DONE_DELIVERABLE_STATUSES = {"DELIVERED", "ACCEPTED"}

# Agreed terms the client signs off on; progress fields on each item are excluded.
_REAPPROVAL_FIELDS = ("payment_terms", "milestones")
_PROGRESS_FIELDS = {"status", "paid_at", "completed_at"}


class CommitmentWorkflowService:
    def __init__(
        self,
        *,
        repository: CommitmentRepository,
        link_tokens: Optional[LinkTokenService] = None,
        notifier: Optional[CommitmentNotifier] = None,
        new_version_status: CommitmentStatus = "AWAITING_CLIENT_APPROVAL",
        require_deliverables_complete: bool = False,
        risk_stale_after_days: int = DEFAULT_STALE_AFTER_DAYS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if new_version_status not in NEW_VERSION_STATUSES:
            raise ValueError(f"unsupported new version status: {new_version_status}")
        self._repository = repository
        self._clock = clock or _utc_now
        self._link_tokens = link_tokens or SecureLinkTokenService(
            repository=repository, clock=self._clock
        )
        self._notifier = notifier or LoggingCommitmentNotifier()
        self._new_version_status = new_version_status
        self._require_deliverables_complete = require_deliverables_complete
        self._risk_stale_after_days = risk_stale_after_days

    @property
    def new_version_status(self) -> CommitmentStatus:
        return self._new_version_status

    @property
    def require_deliverables_complete(self) -> bool:
        return self._require_deliverables_complete

    def create_commitment(
        self,
        *,
        payload: CommitmentCreateRequest,
        idempotency_key: Optional[str] = None,
    ) -> CommitmentActionResponse:
        request_hash = _request_hash(payload)
        if idempotency_key:
            existing = self._repository.get_idempotency(idempotency_key=idempotency_key)
            if existing is not None:
                if existing.request_hash != request_hash:
                    raise CommitmentIdempotencyConflictError("request hash mismatch")
                return self._read_create_response(commitment_id=existing.commitment_id)

        now = self._clock()
        commitment_id = f"cm_{uuid.uuid4().hex[:12]}"
        commitment = CommitmentRecord(
            commitment_id=commitment_id,
            root_commitment_id=commitment_id,
            previous_commitment_id=None,
            version=1,
            status="DRAFT",
            title=payload.title,
            scope_title=payload.scope_title,
            scope_description=payload.scope_description,
            amount=payload.amount,
            currency=payload.currency,
            attachments=payload.attachments,
            payment_terms=payload.payment_terms,
            milestones=payload.milestones,
            deliverables=payload.deliverables,
            approval_rules=payload.approval_rules,
            assigned_to_user_id=payload.assigned_to_user_id,
            client_id=payload.client_id,
            client_snapshot=payload.client_snapshot,
            created_by=payload.created_by,
            created_at=now,
            updated_at=now,
        )
        event = self._new_event(
            commitment=commitment,
            event_type="COMMITMENT_CREATED",
            actor_type="USER",
            actor=payload.created_by,
            created_at=now,
        )
        self._repository.create_commitment(commitment=commitment, event=event)
        if idempotency_key:
            self._repository.save_idempotency(
                CommitmentIdempotencyRecord(
                    idempotency_key=idempotency_key,
                    request_hash=request_hash,
                    commitment_id=commitment_id,
                    created_at=now,
                )
            )
        logger.info(
            "commitment.created",
            extra={"extra_fields": {"commitment_id": commitment_id, "actor": payload.created_by}},
        )
        return CommitmentActionResponse(
            commitment=self._to_detail(commitment), latest_event=self._to_event(event)
        )

    def get_commitment(self, *, commitment_id: str) -> CommitmentDetail:
        return self._to_detail(self._load(commitment_id))

    def list_commitments(
        self,
        *,
        status: Optional[str] = None,
        client_id: Optional[str] = None,
        assigned_to_user_id: Optional[str] = None,
        include_superseded: bool = False,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> CommitmentListResponse:
        rows, next_cursor = self._repository.list_commitments(
            status=normalize_commitment_status(status) if status is not None else None,
            client_id=client_id,
            assigned_to_user_id=assigned_to_user_id,
            include_superseded=include_superseded,
            limit=limit,
            cursor=cursor,
        )
        return CommitmentListResponse(
            items=[self._to_summary(row) for row in rows], next_cursor=next_cursor
        )

    def update_commitment(
        self, *, commitment_id: str, payload: CommitmentUpdateRequest
    ) -> CommitmentActionResponse:
        commitment = self._load(commitment_id)
        if commitment.frozen:
            raise CommitmentTransitionError(
                f"UPDATE not allowed: commitment {commitment_id} is superseded"
            )
        changes = payload.provided_changes()
        if not changes:
            raise CommitmentValidationError("no changes provided")
        locked = sorted(
            field for field in changes if commitment.status not in _EDITABLE_IN[field]
        )
        if locked:
            raise CommitmentValidationError(
                f"COMMITMENT_FIELDS_LOCKED in {commitment.status}: {', '.join(locked)}"
            )
        if _requires_reapproval(commitment, changes):
            return self._update_as_new_version(
                commitment=commitment, changes=changes, actor_id=payload.actor_id
            )

        now = self._clock()
        updated = commitment.model_copy(deep=True)
        _apply_term_changes(updated, changes)
        updated.updated_at = now
        event = self._new_event(
            commitment=updated,
            event_type="COMMITMENT_UPDATED",
            actor_type="USER",
            actor=payload.actor_id,
            created_at=now,
            meta={"fields": sorted(changes)},
        )
        result = self._repository.transition_commitment(
            commitment=updated,
            expected_status=commitment.status,
            expected_updated_at=commitment.updated_at,
            event=event,
        )
        return self._to_action_response(result)

    def assign_commitment(
        self, *, commitment_id: str, payload: CommitmentAssignRequest
    ) -> CommitmentActionResponse:
        commitment = self._load(commitment_id)
        if commitment.frozen:
            raise CommitmentTransitionError(
                f"ASSIGN not allowed: commitment {commitment_id} is superseded"
            )
        now = self._clock()
        updated = commitment.model_copy(deep=True)
        updated.assigned_to_user_id = payload.assigned_to_user_id
        updated.updated_at = now
        event = self._new_event(
            commitment=updated,
            event_type="COMMITMENT_ASSIGNED",
            actor_type="USER",
            actor=payload.actor_id,
            created_at=now,
            meta={"assigned_to_user_id": payload.assigned_to_user_id},
        )
        result = self._repository.transition_commitment(
            commitment=updated,
            expected_status=commitment.status,
            expected_updated_at=commitment.updated_at,
            event=event,
        )
        return self._to_action_response(result)

    def submit_internal_review(
        self, *, commitment_id: str, payload: CommitmentActionRequest
    ) -> CommitmentActionResponse:
        result = self._apply_transition(
            commitment=self._load(commitment_id),
            action="SUBMIT_INTERNAL_REVIEW",
            event_type="INTERNAL_REVIEW_SUBMITTED",
            actor_type="USER",
            actor=payload.actor_id,
            message=payload.note,
        )
        return self._to_action_response(result)

    def send_approval(
        self, *, commitment_id: str, payload: CommitmentActionRequest, resend: bool = False
    ) -> CommitmentActionResponse:
        commitment = self._load(commitment_id)
        action: CommitmentAction = "RESEND_APPROVAL" if resend else "SEND_APPROVAL"
        resolve_transition(commitment, action)
        link = self._link_tokens.issue(
            commitment_id=commitment.commitment_id,
            version=commitment.version,
            purpose="APPROVAL",
        )

        def _mark_sent(updated: CommitmentRecord, now: datetime) -> None:
            updated.approval_sent_at = now

        result = self._apply_transition(
            commitment=commitment,
            action=action,
            event_type="APPROVAL_LINK_RESENT" if resend else "APPROVAL_LINK_SENT",
            actor_type="USER",
            actor=payload.actor_id,
            message=payload.note,
            meta={"link_id": link.record.link_id},
            mutate=_mark_sent,
            new_link=link,
        )
        self._notify(
            kind="APPROVAL_REMINDER" if resend else "APPROVAL_REQUESTED",
            commitment=result.commitment,
            link=link,
        )
        return self._to_action_response(result, link=link)

    def resend_approval(
        self, *, commitment_id: str, payload: CommitmentActionRequest
    ) -> CommitmentActionResponse:
        return self.send_approval(commitment_id=commitment_id, payload=payload, resend=True)

    def mark_delivered(
        self, *, commitment_id: str, payload: CommitmentActionRequest
    ) -> CommitmentActionResponse:
        commitment = self._load(commitment_id)
        resolve_transition(commitment, "MARK_DELIVERED")
        if self._require_deliverables_complete:
            pending = [
                item.text
                for item in commitment.deliverables
                if item.status not in _DONE_DELIVERABLE_STATUSES
            ]
            if pending:
                raise CommitmentValidationError(
                    f"DELIVERABLES_INCOMPLETE: {len(pending)} deliverable(s) not delivered"
                )
        auto_accept = not commitment.approval_rules.acceptance_required

        def _mark_delivered(updated: CommitmentRecord, now: datetime) -> None:
            updated.delivered_at = now
            if auto_accept:
                updated.status = "ACCEPTED"
                updated.accepted_at = now

        result = self._apply_transition(
            commitment=commitment,
            action="MARK_DELIVERED",
            event_type="MARKED_DELIVERED_AUTO_ACCEPTED" if auto_accept else "MARKED_DELIVERED",
            actor_type="USER",
            actor=payload.actor_id,
            message=payload.note,
            mutate=_mark_delivered,
        )
        return self._to_action_response(result)

    def send_acceptance(
        self, *, commitment_id: str, payload: CommitmentActionRequest, resend: bool = False
    ) -> CommitmentActionResponse:
        commitment = self._load(commitment_id)
        action: CommitmentAction = "RESEND_ACCEPTANCE" if resend else "SEND_ACCEPTANCE"
        resolve_transition(commitment, action)
        if not commitment.approval_rules.acceptance_required:
            raise CommitmentTransitionError(
                f"{action} not allowed: acceptance is not required for {commitment_id}"
            )
        link = self._link_tokens.issue(
            commitment_id=commitment.commitment_id,
            version=commitment.version,
            purpose="ACCEPTANCE",
        )
        result = self._apply_transition(
            commitment=commitment,
            action=action,
            event_type="ACCEPTANCE_LINK_RESENT" if resend else "ACCEPTANCE_LINK_SENT",
            actor_type="USER",
            actor=payload.actor_id,
            message=payload.note,
            meta={"link_id": link.record.link_id},
            new_link=link,
        )
        self._notify(
            kind="ACCEPTANCE_REMINDER" if resend else "ACCEPTANCE_REQUESTED",
            commitment=result.commitment,
            link=link,
        )
        return self._to_action_response(result, link=link)

    def resend_acceptance(
        self, *, commitment_id: str, payload: CommitmentActionRequest
    ) -> CommitmentActionResponse:
        return self.send_acceptance(commitment_id=commitment_id, payload=payload, resend=True)

    def close_commitment(
        self, *, commitment_id: str, payload: CommitmentActionRequest
    ) -> CommitmentActionResponse:
        def _mark_closed(updated: CommitmentRecord, now: datetime) -> None:
            updated.closed_at = now

        result = self._apply_transition(
            commitment=self._load(commitment_id),
            action="CLOSE",
            event_type="COMMITMENT_CLOSED",
            actor_type="USER",
            actor=payload.actor_id,
            message=payload.note,
            mutate=_mark_closed,
        )
        return self._to_action_response(result)

    def cancel_commitment(
        self, *, commitment_id: str, payload: CommitmentActionRequest
    ) -> CommitmentActionResponse:
        commitment = self._load(commitment_id)
        change_request = (
            self._repository.get_change_request(change_request_id=commitment.change_request_id)
            if commitment.change_request_id is not None
            else None
        )
        if change_request is not None and change_request.status == "OPEN":
            return self._cancel_with_open_change_request(
                commitment=commitment, change_request=change_request, payload=payload
            )

        def _mark_cancelled(updated: CommitmentRecord, now: datetime) -> None:
            updated.cancelled_at = now

        result = self._apply_transition(
            commitment=commitment,
            action="CANCEL",
            event_type="COMMITMENT_CANCELLED",
            actor_type="USER",
            actor=payload.actor_id,
            message=payload.note,
            mutate=_mark_cancelled,
        )
        return self._to_action_response(result)

    def approve(
        self,
        *,
        commitment_id: str,
        token: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> PublicActionResponse:
        claims, commitment = self._authorize_client_action(
            token=token, purpose="APPROVAL", commitment_id=commitment_id
        )

        def _mark_approved(updated: CommitmentRecord, now: datetime) -> None:
            updated.approved_at = now

        meta: dict[str, Any] = {"link_id": claims.link_id}
        if email:
            meta["email"] = email
        result = self._apply_transition(
            commitment=commitment,
            action="APPROVE",
            event_type="CLIENT_APPROVED",
            actor_type="CLIENT",
            actor=self._client_display_name(commitment, name),
            meta=meta,
            mutate=_mark_approved,
            consumed_link_id=claims.link_id,
        )
        return self._to_public_response(result, action="approve")

    def request_change(
        self,
        *,
        commitment_id: str,
        token: str,
        comment: Optional[str],
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> PublicActionResponse:
        claims, commitment = self._authorize_client_action(
            token=token, purpose="APPROVAL", commitment_id=commitment_id
        )
        resolve_transition(commitment, "REQUEST_CHANGE")
        reason = _required_comment(comment, field_name="comment")
        if self._open_change_request(commitment.commitment_id) is not None:
            raise CommitmentTransitionError(
                f"REQUEST_CHANGE not allowed: {commitment.commitment_id} has an open change request"
            )
        now = self._clock()
        snapshot = commitment.client_snapshot
        change_request = ChangeRequestRecord(
            change_request_id=f"cr_{uuid.uuid4().hex[:12]}",
            commitment_id=commitment.commitment_id,
            commitment_version=commitment.version,
            status="OPEN",
            reason=reason,
            requested_by=ChangeRequestRequester(
                type="CLIENT",
                name=name or (snapshot.name if snapshot else None),
                email=email or (snapshot.email if snapshot else None),
            ),
            previous_status=commitment.status,
            created_at=now,
        )

        def _link_change_request(updated: CommitmentRecord, _now: datetime) -> None:
            updated.change_request_id = change_request.change_request_id

        result = self._apply_transition(
            commitment=commitment,
            action="REQUEST_CHANGE",
            event_type="CLIENT_REQUESTED_CHANGE",
            actor_type="CLIENT",
            actor=self._client_display_name(commitment, name),
            message=reason,
            meta={
                "change_request_id": change_request.change_request_id,
                "link_id": claims.link_id,
            },
            mutate=_link_change_request,
            change_request=change_request,
            consumed_link_id=claims.link_id,
            now=now,
        )
        return self._to_public_response(result, action="request_change")

    def accept(
        self,
        *,
        commitment_id: str,
        token: str,
        comment: Optional[str] = None,
    ) -> PublicActionResponse:
        claims, commitment = self._authorize_client_action(
            token=token, purpose="ACCEPTANCE", commitment_id=commitment_id
        )

        def _mark_accepted(updated: CommitmentRecord, now: datetime) -> None:
            updated.accepted_at = now

        result = self._apply_transition(
            commitment=commitment,
            action="ACCEPT",
            event_type="CLIENT_ACCEPTED",
            actor_type="CLIENT",
            actor=self._client_display_name(commitment, None),
            message=comment.strip() if comment and comment.strip() else None,
            meta={"link_id": claims.link_id},
            mutate=_mark_accepted,
            consumed_link_id=claims.link_id,
        )
        return self._to_public_response(result, action="accept")

    def request_fix(
        self,
        *,
        commitment_id: str,
        token: str,
        comment: Optional[str],
    ) -> PublicActionResponse:
        claims, commitment = self._authorize_client_action(
            token=token, purpose="ACCEPTANCE", commitment_id=commitment_id
        )
        resolve_transition(commitment, "REQUEST_FIX")
        reason = _required_comment(comment, field_name="comment")

        def _reopen(updated: CommitmentRecord, _now: datetime) -> None:
            updated.delivered_at = None
            updated.accepted_at = None

        result = self._apply_transition(
            commitment=commitment,
            action="REQUEST_FIX",
            event_type="CLIENT_REQUESTED_FIX",
            actor_type="CLIENT",
            actor=self._client_display_name(commitment, None),
            message=reason,
            meta={"link_id": claims.link_id},
            mutate=_reopen,
            consumed_link_id=claims.link_id,
        )
        return self._to_public_response(result, action="request_fix")

    def get_approval_info(self, *, token: str) -> PublicLinkInfoResponse:
        return self._link_info(token=token, purpose="APPROVAL")

    def get_acceptance_info(self, *, token: str) -> PublicLinkInfoResponse:
        return self._link_info(token=token, purpose="ACCEPTANCE")

    def post_approval(
        self, *, token: str, action: Union[ApproveAction, RequestChangeAction]
    ) -> PublicActionResponse:
        _, commitment = self._authorize_client_action(token=token, purpose="APPROVAL")
        if isinstance(action, ApproveAction):
            return self.approve(
                commitment_id=commitment.commitment_id,
                token=token,
                name=action.name,
                email=action.email,
            )
        return self.request_change(
            commitment_id=commitment.commitment_id,
            token=token,
            comment=action.comment,
            name=action.name,
            email=action.email,
        )

    def post_acceptance(
        self, *, token: str, action: Union[AcceptAction, RequestFixAction]
    ) -> PublicActionResponse:
        _, commitment = self._authorize_client_action(token=token, purpose="ACCEPTANCE")
        if isinstance(action, AcceptAction):
            return self.accept(
                commitment_id=commitment.commitment_id, token=token, comment=action.comment
            )
        return self.request_fix(
            commitment_id=commitment.commitment_id, token=token, comment=action.comment
        )

    def accept_change_request(
        self,
        *,
        commitment_id: str,
        change_request_id: str,
        payload: ChangeRequestAcceptRequest,
    ) -> ChangeRequestResolutionResponse:
        change_request = self._load_open_change_request(
            commitment_id=commitment_id, change_request_id=change_request_id
        )
        commitment = self._load(commitment_id)
        resolve_transition(commitment, "ACCEPT_CHANGE_REQUEST")

        now = self._clock()
        new_commitment, superseded = _next_version(
            commitment,
            changes=payload.overrides.provided_changes(),
            status=self._new_version_status,
            actor_id=payload.actor_id,
            now=now,
        )
        link: Optional[IssuedLink] = None
        if new_commitment.status == "AWAITING_CLIENT_APPROVAL":
            link = self._issue_new_version_link(new_commitment, now=now)

        resolved = change_request.model_copy(deep=True)
        resolved.status = "ACCEPTED"
        resolved.resolved_at = now
        resolved.resolved_by = payload.actor_id
        resolved.resolution_note = payload.resolution_note
        resolved.created_version_id = new_commitment.commitment_id

        events = [
            self._new_event(
                commitment=superseded,
                event_type="CHANGE_REQUEST_ACCEPTED",
                actor_type="USER",
                actor=payload.actor_id,
                created_at=now,
                message=payload.resolution_note,
                meta={
                    "change_request_id": change_request_id,
                    "new_commitment_id": new_commitment.commitment_id,
                },
            ),
            self._new_event(
                commitment=new_commitment,
                event_type="NEW_VERSION_CREATED",
                actor_type="USER",
                actor=payload.actor_id,
                created_at=now,
                meta={
                    "change_request_id": change_request_id,
                    "previous_commitment_id": commitment.commitment_id,
                },
            ),
        ]
        if link is not None:
            events.append(
                self._new_event(
                    commitment=new_commitment,
                    event_type="APPROVAL_LINK_SENT",
                    actor_type="SYSTEM",
                    actor=payload.actor_id,
                    created_at=now,
                    meta={"link_id": link.record.link_id},
                )
            )

        self._repository.resolve_change_request(
            change_request=resolved,
            commitment=superseded,
            expected_status=commitment.status,
            expected_updated_at=commitment.updated_at,
            events=events,
            new_commitment=new_commitment,
            new_link=link.record if link is not None else None,
        )
        logger.info(
            "commitment.change_request.accepted",
            extra={
                "extra_fields": {
                    "commitment_id": commitment.commitment_id,
                    "change_request_id": change_request_id,
                    "new_commitment_id": new_commitment.commitment_id,
                    "new_version": new_commitment.version,
                }
            },
        )
        if link is not None:
            self._notify(kind="APPROVAL_REQUESTED", commitment=new_commitment, link=link)
        return ChangeRequestResolutionResponse(
            change_request=self._to_change_request(resolved),
            commitment=self._to_detail(new_commitment),
            previous_commitment=self._to_detail(superseded),
            link=self._to_link(link) if link is not None else None,
        )

    def reject_change_request(
        self,
        *,
        commitment_id: str,
        change_request_id: str,
        payload: ChangeRequestRejectRequest,
    ) -> ChangeRequestResolutionResponse:
        change_request = self._load_open_change_request(
            commitment_id=commitment_id, change_request_id=change_request_id
        )
        commitment = self._load(commitment_id)
        next_status = resolve_transition(commitment, "REJECT_CHANGE_REQUEST")

        now = self._clock()
        updated = commitment.model_copy(deep=True)
        updated.status = next_status
        updated.change_request_id = None
        updated.updated_at = now

        resolved = change_request.model_copy(deep=True)
        resolved.status = "REJECTED"
        resolved.resolved_at = now
        resolved.resolved_by = payload.actor_id
        resolved.resolution_note = payload.resolution_note

        event = self._new_event(
            commitment=updated,
            event_type="CHANGE_REQUEST_REJECTED",
            actor_type="USER",
            actor=payload.actor_id,
            created_at=now,
            message=payload.resolution_note,
            meta={"change_request_id": change_request_id},
        )
        self._repository.resolve_change_request(
            change_request=resolved,
            commitment=updated,
            expected_status=commitment.status,
            expected_updated_at=commitment.updated_at,
            events=[event],
        )
        return ChangeRequestResolutionResponse(
            change_request=self._to_change_request(resolved),
            commitment=self._to_detail(updated),
        )

    def list_change_requests(self, *, commitment_id: str) -> ChangeRequestListResponse:
        self._load(commitment_id)
        rows = self._repository.list_change_requests(commitment_id=commitment_id)
        rows = sorted(rows, key=lambda row: row.created_at, reverse=True)
        return ChangeRequestListResponse(
            commitment_id=commitment_id,
            items=[self._to_change_request(row) for row in rows],
        )

    def get_history(self, *, commitment_id: str) -> CommitmentHistoryResponse:
        self._load(commitment_id)
        events = self._repository.list_events(commitment_id=commitment_id)
        return CommitmentHistoryResponse(
            commitment_id=commitment_id,
            events=[self._to_event(event) for event in events],
        )

    def list_versions(self, *, root_commitment_id: str) -> CommitmentVersionsResponse:
        chain = self._repository.list_chain(root_commitment_id=root_commitment_id)
        if not chain:
            member = self._repository.get_commitment(commitment_id=root_commitment_id)
            if member is None:
                raise CommitmentNotFoundError(f"commitment chain {root_commitment_id} not found")
            chain = self._repository.list_chain(root_commitment_id=member.root_commitment_id)
        chain = sorted(chain, key=lambda row: row.version)
        return CommitmentVersionsResponse(
            root_commitment_id=chain[0].root_commitment_id,
            items=[
                CommitmentVersionItem(
                    commitment_id=row.commitment_id,
                    version=row.version,
                    status=row.status,
                    is_current=not row.frozen,
                    created_at=row.created_at.isoformat(),
                    frozen_at=_optional_iso(row.frozen_at),
                    superseded_by_commitment_id=row.superseded_by_commitment_id,
                )
                for row in chain
            ],
        )

    def get_timeline(
        self, *, commitment_id: str, order: TimelineOrder = "newest"
    ) -> CommitmentTimelineResponse:
        commitment = self._load(commitment_id)
        timeline = reconstruct_timeline(
            commitment,
            history=self._repository.list_events(commitment_id=commitment_id),
            change_requests=self._repository.list_change_requests(commitment_id=commitment_id),
            order=order,
        )
        return CommitmentTimelineResponse(
            commitment_id=commitment_id,
            order=timeline.order,
            items=[
                TimelineEntry(
                    kind=item.kind,
                    title=item.title,
                    subtitle=item.subtitle,
                    at=item.at.isoformat(),
                )
                for item in timeline
            ],
        )

    def _update_as_new_version(
        self, *, commitment: CommitmentRecord, changes: dict[str, Any], actor_id: str
    ) -> CommitmentActionResponse:
        """Agreed terms changed after the client saw them: supersede and ask again."""
        now = self._clock()
        new_commitment, superseded = _next_version(
            commitment,
            changes=changes,
            status="AWAITING_CLIENT_APPROVAL",
            actor_id=actor_id,
            now=now,
        )
        link = self._issue_new_version_link(new_commitment, now=now)
        fields = sorted(changes)
        link_event = self._new_event(
            commitment=new_commitment,
            event_type="APPROVAL_LINK_SENT",
            actor_type="SYSTEM",
            actor=actor_id,
            created_at=now,
            meta={"link_id": link.record.link_id},
        )
        events = [
            self._new_event(
                commitment=superseded,
                event_type="TERMS_UPDATED_NEW_VERSION",
                actor_type="USER",
                actor=actor_id,
                created_at=now,
                meta={"fields": fields, "new_commitment_id": new_commitment.commitment_id},
            ),
            self._new_event(
                commitment=new_commitment,
                event_type="NEW_VERSION_CREATED",
                actor_type="USER",
                actor=actor_id,
                created_at=now,
                meta={"fields": fields, "previous_commitment_id": commitment.commitment_id},
            ),
            link_event,
        ]
        self._repository.supersede_commitment(
            commitment=superseded,
            expected_status=commitment.status,
            expected_updated_at=commitment.updated_at,
            events=events,
            new_commitment=new_commitment,
            new_link=link.record,
        )
        logger.info(
            "commitment.terms.reapproval_required",
            extra={
                "extra_fields": {
                    "commitment_id": commitment.commitment_id,
                    "new_commitment_id": new_commitment.commitment_id,
                    "new_version": new_commitment.version,
                    "fields": fields,
                }
            },
        )
        self._notify(kind="APPROVAL_REQUESTED", commitment=new_commitment, link=link)
        return CommitmentActionResponse(
            commitment=self._to_detail(new_commitment),
            latest_event=self._to_event(link_event),
            link=self._to_link(link),
        )

    def _cancel_with_open_change_request(
        self,
        *,
        commitment: CommitmentRecord,
        change_request: ChangeRequestRecord,
        payload: CommitmentActionRequest,
    ) -> CommitmentActionResponse:
        next_status = resolve_transition(commitment, "CANCEL")
        now = self._clock()
        updated = commitment.model_copy(deep=True)
        updated.status = next_status
        updated.cancelled_at = now
        updated.change_request_id = None
        updated.updated_at = now

        resolved = change_request.model_copy(deep=True)
        resolved.status = "REJECTED"
        resolved.resolved_at = now
        resolved.resolved_by = payload.actor_id
        resolved.resolution_note = payload.note or "Commitment cancelled"

        event = self._new_event(
            commitment=updated,
            event_type="COMMITMENT_CANCELLED",
            actor_type="USER",
            actor=payload.actor_id,
            created_at=now,
            message=payload.note,
            meta={"change_request_id": change_request.change_request_id},
        )
        self._repository.resolve_change_request(
            change_request=resolved,
            commitment=updated,
            expected_status=commitment.status,
            expected_updated_at=commitment.updated_at,
            events=[event],
        )
        return CommitmentActionResponse(
            commitment=self._to_detail(updated),
            latest_event=self._to_event(event),
            change_request=self._to_change_request(resolved),
        )

    def _issue_new_version_link(self, commitment: CommitmentRecord, *, now: datetime) -> IssuedLink:
        link = self._link_tokens.issue(
            commitment_id=commitment.commitment_id,
            version=commitment.version,
            purpose="APPROVAL",
        )
        commitment.approval_sent_at = now
        return link

    def _apply_transition(
        self,
        *,
        commitment: CommitmentRecord,
        action: CommitmentAction,
        event_type: CommitmentHistoryEventType,
        actor_type: ActorType,
        actor: Optional[str],
        message: Optional[str] = None,
        meta: Optional[dict[str, Any]] = None,
        mutate: Optional[Callable[[CommitmentRecord, datetime], None]] = None,
        change_request: Optional[ChangeRequestRecord] = None,
        new_link: Optional[IssuedLink] = None,
        consumed_link_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CommitmentTransitionResult:
        next_status = resolve_transition(commitment, action)
        now = now or self._clock()
        updated = commitment.model_copy(deep=True)
        updated.status = next_status
        updated.updated_at = now
        if mutate is not None:
            mutate(updated, now)
        event = self._new_event(
            commitment=updated,
            event_type=event_type,
            actor_type=actor_type,
            actor=actor,
            created_at=now,
            message=message,
            meta=meta,
        )
        result = self._repository.transition_commitment(
            commitment=updated,
            expected_status=commitment.status,
            expected_updated_at=commitment.updated_at,
            event=event,
            change_request=change_request,
            new_link=new_link.record if new_link is not None else None,
            consumed_link_id=consumed_link_id,
        )
        logger.info(
            "commitment.transition",
            extra={
                "extra_fields": {
                    "commitment_id": commitment.commitment_id,
                    "commitment_version": commitment.version,
                    "action": action,
                    "from_status": commitment.status,
                    "to_status": result.commitment.status,
                }
            },
        )
        return result

    def _authorize_client_action(
        self,
        *,
        token: str,
        purpose: LinkPurpose,
        commitment_id: Optional[str] = None,
    ) -> tuple[LinkTokenClaims, CommitmentRecord]:
        claims = self._verify_link(token=token, purpose=purpose)
        if claims.expired:
            raise LinkExpiredError(f"link expired at {claims.expires_at.isoformat()}")
        if claims.used:
            raise LinkAlreadyUsedError("link has already been used")
        commitment = self._resolve_link_target(claims)
        if commitment_id is not None and commitment_id not in {
            claims.commitment_id,
            commitment.commitment_id,
        }:
            raise LinkInvalidError("link does not belong to this commitment")
        if claims.version != commitment.version:
            raise LinkVersionMismatchError(
                f"link issued for version {claims.version}, current version is "
                f"{commitment.version}"
            )
        return claims, commitment

    def _link_info(self, *, token: str, purpose: LinkPurpose) -> PublicLinkInfoResponse:
        claims = self._verify_link(token=token, purpose=purpose)
        if claims.expired:
            raise LinkExpiredError(f"link expired at {claims.expires_at.isoformat()}")
        commitment = self._resolve_link_target(claims)
        return PublicLinkInfoResponse(
            ok=not claims.used,
            purpose=claims.purpose,
            version_ok=claims.version == commitment.version,
            link_version=claims.version,
            legacy_status=legacy_status_name(commitment.status),
            link_expires_at=claims.expires_at.isoformat(),
            commitment=self._to_public_view(commitment),
            client=commitment.client_snapshot,
        )

    def _verify_link(self, *, token: str, purpose: LinkPurpose) -> LinkTokenClaims:
        claims = self._link_tokens.verify(token)
        if claims.purpose != purpose:
            raise LinkInvalidError(f"link is not an {purpose.lower()} link")
        return claims

    def _resolve_link_target(self, claims: LinkTokenClaims) -> CommitmentRecord:
        commitment = self._repository.get_commitment(commitment_id=claims.commitment_id)
        if commitment is None:
            raise LinkInvalidError("linked commitment no longer exists")
        if not commitment.frozen:
            return commitment
        chain = self._repository.list_chain(root_commitment_id=commitment.root_commitment_id)
        current = [row for row in chain if not row.frozen]
        return current[0] if current else commitment

    def _load(self, commitment_id: str) -> CommitmentRecord:
        commitment = self._repository.get_commitment(commitment_id=commitment_id)
        if commitment is None:
            raise CommitmentNotFoundError(f"commitment {commitment_id} not found")
        return commitment

    def _load_open_change_request(
        self, *, commitment_id: str, change_request_id: str
    ) -> ChangeRequestRecord:
        change_request = self._repository.get_change_request(change_request_id=change_request_id)
        if change_request is None or change_request.commitment_id != commitment_id:
            raise CommitmentNotFoundError(
                f"change request {change_request_id} not found for commitment {commitment_id}"
            )
        if change_request.status != "OPEN":
            raise ChangeRequestAlreadyResolvedError(
                f"change request {change_request_id} is {change_request.status}"
            )
        return change_request

    def _open_change_request(self, commitment_id: str) -> Optional[ChangeRequestRecord]:
        rows = self._repository.list_change_requests(commitment_id=commitment_id)
        return next((row for row in rows if row.status == "OPEN"), None)

    def _read_create_response(self, *, commitment_id: str) -> CommitmentActionResponse:
        commitment = self._repository.get_commitment(commitment_id=commitment_id)
        events = self._repository.list_events(commitment_id=commitment_id)
        if commitment is None or not events:
            raise CommitmentNotFoundError(
                f"idempotency referent {commitment_id} not found"
            )
        return CommitmentActionResponse(
            commitment=self._to_detail(commitment), latest_event=self._to_event(events[0])
        )

    def _notify(
        self, *, kind: NotificationKind, commitment: CommitmentRecord, link: IssuedLink
    ) -> None:
        snapshot = commitment.client_snapshot
        dispatch_notification(
            self._notifier,
            CommitmentNotification(
                kind=kind,
                commitment_id=commitment.commitment_id,
                commitment_version=commitment.version,
                title=commitment.title,
                url=link.url,
                recipient_email=snapshot.email if snapshot else None,
                recipient_name=snapshot.name if snapshot else None,
            ),
        )

    def _new_event(
        self,
        *,
        commitment: CommitmentRecord,
        event_type: CommitmentHistoryEventType,
        actor_type: ActorType,
        actor: Optional[str],
        created_at: datetime,
        message: Optional[str] = None,
        meta: Optional[dict[str, Any]] = None,
    ) -> CommitmentHistoryEventRecord:
        return CommitmentHistoryEventRecord(
            event_id=f"che_{uuid.uuid4().hex[:12]}",
            commitment_id=commitment.commitment_id,
            commitment_version=commitment.version,
            event_type=event_type,
            actor_type=actor_type,
            actor=actor,
            message=message,
            created_at=created_at,
            meta=meta or {},
        )

    def _client_display_name(self, commitment: CommitmentRecord, name: Optional[str]) -> str:
        if name and name.strip():
            return name.strip()
        if commitment.client_snapshot is not None and commitment.client_snapshot.name:
            return commitment.client_snapshot.name
        return "Client"

    def _to_action_response(
        self, result: CommitmentTransitionResult, *, link: Optional[IssuedLink] = None
    ) -> CommitmentActionResponse:
        return CommitmentActionResponse(
            commitment=self._to_detail(result.commitment),
            latest_event=self._to_event(result.event),
            link=self._to_link(link) if link is not None else None,
            change_request=(
                self._to_change_request(result.change_request)
                if result.change_request is not None
                else None
            ),
        )

    def _to_public_response(
        self, result: CommitmentTransitionResult, *, action: str
    ) -> PublicActionResponse:
        return PublicActionResponse(
            ok=True,
            action=action,
            commitment_id=result.commitment.commitment_id,
            version=result.commitment.version,
            status=result.commitment.status,
            change_request_id=(
                result.change_request.change_request_id
                if result.change_request is not None
                else None
            ),
        )

    def _to_detail(self, commitment: CommitmentRecord) -> CommitmentDetail:
        return CommitmentDetail(
            commitment_id=commitment.commitment_id,
            root_commitment_id=commitment.root_commitment_id,
            previous_commitment_id=commitment.previous_commitment_id,
            version=commitment.version,
            status=commitment.status,
            is_current=not commitment.frozen,
            title=commitment.title,
            scope_title=commitment.scope_title,
            scope_description=commitment.scope_description,
            amount=commitment.amount,
            currency=commitment.currency,
            attachments=commitment.attachments,
            payment_terms=commitment.payment_terms,
            milestones=commitment.milestones,
            deliverables=commitment.deliverables,
            approval_rules=commitment.approval_rules,
            assigned_to_user_id=commitment.assigned_to_user_id,
            client_id=commitment.client_id,
            client_snapshot=commitment.client_snapshot,
            created_by=commitment.created_by,
            created_at=commitment.created_at.isoformat(),
            updated_at=commitment.updated_at.isoformat(),
            approval_sent_at=_optional_iso(commitment.approval_sent_at),
            approved_at=_optional_iso(commitment.approved_at),
            delivered_at=_optional_iso(commitment.delivered_at),
            accepted_at=_optional_iso(commitment.accepted_at),
            closed_at=_optional_iso(commitment.closed_at),
            cancelled_at=_optional_iso(commitment.cancelled_at),
            change_request_id=commitment.change_request_id,
            frozen_at=_optional_iso(commitment.frozen_at),
            superseded_by_commitment_id=commitment.superseded_by_commitment_id,
            progress=deliverable_progress(commitment),
            risk_level=risk_level(
                commitment, now=self._clock(), stale_after_days=self._risk_stale_after_days
            ),
            allowed_actions=list(allowed_actions(commitment)),
        )

    def _to_summary(self, commitment: CommitmentRecord) -> CommitmentSummary:
        return CommitmentSummary(
            commitment_id=commitment.commitment_id,
            root_commitment_id=commitment.root_commitment_id,
            version=commitment.version,
            status=commitment.status,
            title=commitment.title,
            client_id=commitment.client_id,
            assigned_to_user_id=commitment.assigned_to_user_id,
            created_by=commitment.created_by,
            created_at=commitment.created_at.isoformat(),
            updated_at=commitment.updated_at.isoformat(),
            progress_percent=deliverable_progress(commitment).percent,
            risk_level=risk_level(
                commitment, now=self._clock(), stale_after_days=self._risk_stale_after_days
            ),
        )

    def _to_public_view(self, commitment: CommitmentRecord) -> PublicCommitmentView:
        return PublicCommitmentView(
            commitment_id=commitment.commitment_id,
            version=commitment.version,
            status=commitment.status,
            title=commitment.title,
            scope_title=commitment.scope_title,
            scope_description=commitment.scope_description,
            amount=commitment.amount,
            currency=commitment.currency,
            attachments=commitment.attachments,
            payment_terms=commitment.payment_terms,
            milestones=commitment.milestones,
            deliverables=commitment.deliverables,
            approval_rules=commitment.approval_rules,
            approval_sent_at=_optional_iso(commitment.approval_sent_at),
            delivered_at=_optional_iso(commitment.delivered_at),
        )

    def _to_event(self, event: CommitmentHistoryEventRecord) -> CommitmentHistoryEvent:
        return CommitmentHistoryEvent(
            event_id=event.event_id,
            commitment_id=event.commitment_id,
            commitment_version=event.commitment_version,
            event_type=event.event_type,
            actor_type=event.actor_type,
            actor=event.actor,
            message=event.message,
            created_at=event.created_at.isoformat(),
            meta=event.meta,
        )

    def _to_change_request(self, change_request: ChangeRequestRecord) -> ChangeRequest:
        return ChangeRequest(
            change_request_id=change_request.change_request_id,
            commitment_id=change_request.commitment_id,
            commitment_version=change_request.commitment_version,
            status=change_request.status,
            reason=change_request.reason,
            requested_by=change_request.requested_by,
            previous_status=change_request.previous_status,
            created_at=change_request.created_at.isoformat(),
            resolved_at=_optional_iso(change_request.resolved_at),
            resolved_by=change_request.resolved_by,
            resolution_note=change_request.resolution_note,
            created_version_id=change_request.created_version_id,
        )

    def _to_link(self, link: IssuedLink) -> CommitmentLinkIssued:
        return CommitmentLinkIssued(
            purpose=link.record.purpose,
            url=link.url,
            token=link.token,
            commitment_version=link.record.commitment_version,
            expires_at=link.record.expires_at.isoformat(),
        )


def _apply_term_changes(commitment: CommitmentRecord, changes: dict[str, Any]) -> None:
    for field, value in changes.items():
        if field == "title":
            if value is None or not value.strip():
                raise CommitmentValidationError("title must not be blank")
            value = value.strip()
        elif field == "amount" and value is not None and value < 0:
            raise CommitmentValidationError("amount must not be negative")
        elif field == "currency":
            value = value or "INR"
        elif field == "approval_rules" and value is None:
            value = ApprovalRules()
        elif field in {"attachments", "payment_terms", "milestones", "deliverables"}:
            value = list(value or [])
        setattr(commitment, field, value)


def _next_version(
    commitment: CommitmentRecord,
    *,
    changes: dict[str, Any],
    status: CommitmentStatus,
    actor_id: str,
    now: datetime,
) -> tuple[CommitmentRecord, CommitmentRecord]:
    """Return the successor of ``commitment`` and the frozen copy it replaces."""
    new_commitment = commitment.model_copy(deep=True)
    _apply_term_changes(new_commitment, changes)
    new_commitment.commitment_id = f"cm_{uuid.uuid4().hex[:12]}"
    new_commitment.previous_commitment_id = commitment.commitment_id
    new_commitment.version = commitment.version + 1
    new_commitment.status = status
    new_commitment.created_by = actor_id
    new_commitment.created_at = now
    new_commitment.updated_at = now
    new_commitment.approval_sent_at = None
    new_commitment.approved_at = None
    new_commitment.delivered_at = None
    new_commitment.accepted_at = None
    new_commitment.closed_at = None
    new_commitment.cancelled_at = None
    new_commitment.change_request_id = None
    new_commitment.frozen = False
    new_commitment.frozen_at = None
    new_commitment.superseded_by_commitment_id = None

    superseded = commitment.model_copy(deep=True)
    superseded.frozen = True
    superseded.frozen_at = now
    superseded.superseded_by_commitment_id = new_commitment.commitment_id
    superseded.updated_at = now
    return new_commitment, superseded


def _requires_reapproval(commitment: CommitmentRecord, changes: dict[str, Any]) -> bool:
    if not commitment.approval_rules.re_approval_on_changes:
        return False
    if commitment.approval_sent_at is None and commitment.approved_at is None:
        return False
    return any(
        _agreed_terms(changes[field]) != _agreed_terms(getattr(commitment, field))
        for field in _REAPPROVAL_FIELDS
        if field in changes
    )


def _agreed_terms(items: Optional[list[Any]]) -> list[dict[str, Any]]:
    return [item.model_dump(mode="json", exclude=_PROGRESS_FIELDS) for item in items or []]


def _required_comment(comment: Optional[str], *, field_name: str) -> str:
    value = (comment or "").strip()
    if not value:
        raise CommitmentValidationError(f"{field_name} must not be blank")
    return value


def _optional_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _request_hash(payload: CommitmentCreateRequest) -> str:
    canonical = json.dumps(payload.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
    return f"sha256:{hashlib.sha256(canonical.encode('utf-8')).hexdigest()}"
