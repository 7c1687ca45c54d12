from typing import Annotated, Optional

from fastapi import Depends, Header, Path, Query, status

from src.api.routers import commitments as shared
from src.api.routers.commitment_http_errors import raise_commitment_http_exception
from src.core.commitments import (
    ChangeRequestAcceptRequest,
    ChangeRequestRejectRequest,
    ChangeRequestResolutionResponse,
    CommitmentActionRequest,
    CommitmentActionResponse,
    CommitmentAssignRequest,
    CommitmentCreateRequest,
    CommitmentDetail,
    CommitmentLifecycleError,
    CommitmentListResponse,
    CommitmentUpdateRequest,
    CommitmentWorkflowService,
)

CommitmentIdPath = Annotated[
    str,
    Path(description="Commitment identifier.", examples=["cm_3f2a9c1d0b7e"]),
]
ChangeRequestIdPath = Annotated[
    str,
    Path(description="Change request identifier.", examples=["cr_8d1e0a4b6c2f"]),
]
WorkflowService = Annotated[
    CommitmentWorkflowService, Depends(shared.get_commitment_workflow_service)
]


@shared.router.post(
    "/commitments",
    response_model=CommitmentActionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Commitment",
    description=(
        "Creates version 1 of a commitment chain in DRAFT and records the creation event. "
        "Replaying the same Idempotency-Key with the same payload returns the original."
    ),
)
def create_commitment(
    payload: CommitmentCreateRequest,
    service: WorkflowService,
    idempotency_key: Annotated[
        Optional[str],
        Header(
            alias="Idempotency-Key",
            description="Optional idempotency key for create deduplication.",
            examples=["commitment-create-001"],
        ),
    ] = None,
) -> CommitmentActionResponse:
    shared.assert_workflow_enabled()
    try:
        return service.create_commitment(payload=payload, idempotency_key=idempotency_key)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)


@shared.router.get(
    "/commitments",
    response_model=CommitmentListResponse,
    status_code=status.HTTP_200_OK,
    summary="List Commitments",
    description="Lists current commitments newest first. Legacy status names are accepted.",
)
def list_commitments(
    service: WorkflowService,
    status_filter: Annotated[
        Optional[str],
        Query(alias="status", description="Status filter.", examples=["PENDING_APPROVAL"]),
    ] = None,
    client_id: Annotated[Optional[str], Query(description="Client filter.")] = None,
    assigned_to_user_id: Annotated[Optional[str], Query(description="Assignee filter.")] = None,
    include_superseded: Annotated[
        bool, Query(description="Include frozen chain members.")
    ] = False,
    limit: Annotated[int, Query(ge=1, le=200, description="Page size.")] = 50,
    cursor: Annotated[Optional[str], Query(description="Pagination cursor.")] = None,
) -> CommitmentListResponse:
    shared.assert_workflow_enabled()
    return service.list_commitments(
        status=status_filter,
        client_id=client_id,
        assigned_to_user_id=assigned_to_user_id,
        include_superseded=include_superseded,
        limit=limit,
        cursor=cursor,
    )


@shared.router.get(
    "/commitments/{commitment_id}",
    response_model=CommitmentDetail,
    status_code=status.HTTP_200_OK,
    summary="Get Commitment",
    description="Returns the commitment with derived progress, risk, and allowed actions.",
)
def get_commitment(
    commitment_id: CommitmentIdPath, service: WorkflowService
) -> CommitmentDetail:
    shared.assert_workflow_enabled()
    try:
        return service.get_commitment(commitment_id=commitment_id)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)


@shared.router.patch(
    "/commitments/{commitment_id}",
    response_model=CommitmentActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Update Commitment Terms",
    description=(
        "Patches terms. Core terms are editable only before client approval is requested; "
        "deliverables, milestones, and payment terms lock progressively later."
    ),
)
def update_commitment(
    commitment_id: CommitmentIdPath,
    payload: CommitmentUpdateRequest,
    service: WorkflowService,
) -> CommitmentActionResponse:
    shared.assert_workflow_enabled()
    try:
        return service.update_commitment(commitment_id=commitment_id, payload=payload)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)


@shared.router.post(
    "/commitments/{commitment_id}/assign",
    response_model=CommitmentActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Assign Commitment",
)
def assign_commitment(
    commitment_id: CommitmentIdPath,
    payload: CommitmentAssignRequest,
    service: WorkflowService,
) -> CommitmentActionResponse:
    shared.assert_workflow_enabled()
    try:
        return service.assign_commitment(commitment_id=commitment_id, payload=payload)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)


@shared.router.post(
    "/commitments/{commitment_id}/internal-review",
    response_model=CommitmentActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Submit Commitment For Internal Review",
)
def submit_internal_review(
    commitment_id: CommitmentIdPath,
    payload: CommitmentActionRequest,
    service: WorkflowService,
) -> CommitmentActionResponse:
    shared.assert_workflow_enabled()
    try:
        return service.submit_internal_review(commitment_id=commitment_id, payload=payload)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)


@shared.router.post(
    "/commitments/{commitment_id}/approval-link",
    response_model=CommitmentActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Send Approval Link",
    description="Moves the commitment to AWAITING_CLIENT_APPROVAL and issues a single-use link.",
)
def send_approval(
    commitment_id: CommitmentIdPath,
    payload: CommitmentActionRequest,
    service: WorkflowService,
) -> CommitmentActionResponse:
    shared.assert_workflow_enabled()
    try:
        return service.send_approval(commitment_id=commitment_id, payload=payload)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)


@shared.router.post(
    "/commitments/{commitment_id}/approval-link/resend",
    response_model=CommitmentActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Resend Approval Link",
    description="Issues a fresh approval link; allowed while already awaiting approval.",
)
def resend_approval(
    commitment_id: CommitmentIdPath,
    payload: CommitmentActionRequest,
    service: WorkflowService,
) -> CommitmentActionResponse:
    shared.assert_workflow_enabled()
    try:
        return service.resend_approval(commitment_id=commitment_id, payload=payload)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)


@shared.router.post(
    "/commitments/{commitment_id}/deliver",
    response_model=CommitmentActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Mark Commitment Delivered",
    description=(
        "Moves IN_PROGRESS work to DELIVERED, or straight to ACCEPTED when the approval "
        "rules do not require client acceptance."
    ),
)
def mark_delivered(
    commitment_id: CommitmentIdPath,
    payload: CommitmentActionRequest,
    service: WorkflowService,
) -> CommitmentActionResponse:
    shared.assert_workflow_enabled()
    try:
        return service.mark_delivered(commitment_id=commitment_id, payload=payload)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)


@shared.router.post(
    "/commitments/{commitment_id}/acceptance-link",
    response_model=CommitmentActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Send Acceptance Link",
)
def send_acceptance(
    commitment_id: CommitmentIdPath,
    payload: CommitmentActionRequest,
    service: WorkflowService,
) -> CommitmentActionResponse:
    shared.assert_workflow_enabled()
    try:
        return service.send_acceptance(commitment_id=commitment_id, payload=payload)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)


@shared.router.post(
    "/commitments/{commitment_id}/acceptance-link/resend",
    response_model=CommitmentActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Resend Acceptance Link",
)
def resend_acceptance(
    commitment_id: CommitmentIdPath,
    payload: CommitmentActionRequest,
    service: WorkflowService,
) -> CommitmentActionResponse:
    shared.assert_workflow_enabled()
    try:
        return service.resend_acceptance(commitment_id=commitment_id, payload=payload)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)


@shared.router.post(
    "/commitments/{commitment_id}/close",
    response_model=CommitmentActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Close Commitment",
)
def close_commitment(
    commitment_id: CommitmentIdPath,
    payload: CommitmentActionRequest,
    service: WorkflowService,
) -> CommitmentActionResponse:
    shared.assert_workflow_enabled()
    try:
        return service.close_commitment(commitment_id=commitment_id, payload=payload)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)


@shared.router.post(
    "/commitments/{commitment_id}/cancel",
    response_model=CommitmentActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel Commitment",
)
def cancel_commitment(
    commitment_id: CommitmentIdPath,
    payload: CommitmentActionRequest,
    service: WorkflowService,
) -> CommitmentActionResponse:
    shared.assert_workflow_enabled()
    try:
        return service.cancel_commitment(commitment_id=commitment_id, payload=payload)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)


@shared.router.post(
    "/commitments/{commitment_id}/change-requests/{change_request_id}/accept",
    response_model=ChangeRequestResolutionResponse,
    status_code=status.HTTP_200_OK,
    summary="Accept Change Request",
    description=(
        "Resolves the open change request and creates the next version of the commitment. "
        "The current version is frozen and keeps its status."
    ),
)
def accept_change_request(
    commitment_id: CommitmentIdPath,
    change_request_id: ChangeRequestIdPath,
    payload: ChangeRequestAcceptRequest,
    service: WorkflowService,
) -> ChangeRequestResolutionResponse:
    shared.assert_workflow_enabled()
    try:
        return service.accept_change_request(
            commitment_id=commitment_id,
            change_request_id=change_request_id,
            payload=payload,
        )
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)


@shared.router.post(
    "/commitments/{commitment_id}/change-requests/{change_request_id}/reject",
    response_model=ChangeRequestResolutionResponse,
    status_code=status.HTTP_200_OK,
    summary="Reject Change Request",
    description="Resolves the open change request and returns the commitment to awaiting approval.",
)
def reject_change_request(
    commitment_id: CommitmentIdPath,
    change_request_id: ChangeRequestIdPath,
    payload: ChangeRequestRejectRequest,
    service: WorkflowService,
) -> ChangeRequestResolutionResponse:
    shared.assert_workflow_enabled()
    try:
        return service.reject_change_request(
            commitment_id=commitment_id,
            change_request_id=change_request_id,
            payload=payload,
        )
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)
