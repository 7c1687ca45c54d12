from typing import Annotated

from fastapi import APIRouter, Body, Depends, Path, status

from src.api.routers import commitments as shared
from src.api.routers.commitment_http_errors import raise_commitment_http_exception
from src.core.commitments import (
    AcceptanceAction,
    ApprovalAction,
    CommitmentLifecycleError,
    CommitmentWorkflowService,
    PublicActionResponse,
    PublicLinkInfoResponse,
)

router = APIRouter(tags=["Commitment Public Links"])

TokenPath = Annotated[
    str,
    Path(
        description="Opaque secure link token delivered to the client.",
        min_length=1,
        examples=["9f2c4e0a7b1d..."],
    ),
]
WorkflowService = Annotated[
    CommitmentWorkflowService, Depends(shared.get_commitment_workflow_service)
]


@router.get(
    "/public/approve/{token}",
    response_model=PublicLinkInfoResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Approval Link Details",
    description=(
        "Returns the current terms behind an approval link. A used link or a link issued for "
        "an older version is reported through `ok` and `version_ok` rather than an error."
    ),
)
def get_approval_link(token: TokenPath, service: WorkflowService) -> PublicLinkInfoResponse:
    shared.assert_public_links_enabled()
    try:
        return service.get_approval_info(token=token)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)


@router.post(
    "/public/approve/{token}",
    response_model=PublicActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Act On Approval Link",
    description="Approves the commitment or requests a change. Consumes the link.",
)
def post_approval_link(
    token: TokenPath,
    action: Annotated[
        ApprovalAction,
        Body(
            examples=[
                {"action": "approve", "name": "Asha Rao", "email": "asha@example.com"},
                {"action": "request_change", "comment": "Please add a blog page."},
            ]
        ),
    ],
    service: WorkflowService,
) -> PublicActionResponse:
    shared.assert_public_links_enabled()
    try:
        return service.post_approval(token=token, action=action)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)


@router.get(
    "/public/accept/{token}",
    response_model=PublicLinkInfoResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Acceptance Link Details",
)
def get_acceptance_link(token: TokenPath, service: WorkflowService) -> PublicLinkInfoResponse:
    shared.assert_public_links_enabled()
    try:
        return service.get_acceptance_info(token=token)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)


@router.post(
    "/public/accept/{token}",
    response_model=PublicActionResponse,
    status_code=status.HTTP_200_OK,
    summary="Act On Acceptance Link",
    description="Accepts the delivered work or sends it back for fixes. Consumes the link.",
)
def post_acceptance_link(
    token: TokenPath,
    action: Annotated[
        AcceptanceAction,
        Body(
            examples=[
                {"action": "accept"},
                {"action": "request_fix", "comment": "Footer links are broken."},
            ]
        ),
    ],
    service: WorkflowService,
) -> PublicActionResponse:
    shared.assert_public_links_enabled()
    try:
        return service.post_acceptance(token=token, action=action)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)
