from typing import Annotated, Optional

from fastapi import Depends, Path, Query, status

from src.api.routers import commitments as shared
from src.api.routers.commitment_http_errors import raise_commitment_http_exception
from src.core.commitments import (
    ChangeRequestListResponse,
    CommitmentHistoryResponse,
    CommitmentLifecycleError,
    CommitmentSupportabilityConfigResponse,
    CommitmentTimelineResponse,
    CommitmentVersionsResponse,
    CommitmentWorkflowService,
)
from src.core.commitments.models import TimelineOrder

CommitmentIdPath = Annotated[
    str,
    Path(description="Commitment identifier.", examples=["cm_3f2a9c1d0b7e"]),
]


@shared.router.get(
    "/commitments/supportability/config",
    response_model=CommitmentSupportabilityConfigResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Commitment Supportability Configuration",
    description=(
        "Returns commitment runtime configuration and backend initialization status "
        "for operational diagnostics without direct database access."
    ),
)
def get_commitment_supportability_config() -> CommitmentSupportabilityConfigResponse:
    backend_error: Optional[str] = None
    backend_ready = True
    try:
        shared.commitments_config.build_repository()
    except RuntimeError as exc:
        backend_ready = False
        backend_error = str(exc)
    except Exception:
        backend_ready = False
        backend_error = "COMMITMENT_POSTGRES_CONNECTION_FAILED"

    config = shared.commitments_config
    return CommitmentSupportabilityConfigResponse(
        store_backend=config.commitment_store_backend_name(),
        backend_ready=backend_ready,
        backend_init_error=backend_error,
        workflow_enabled=config.env_flag("COMMITMENT_WORKFLOW_ENABLED", True),
        public_links_enabled=config.env_flag("COMMITMENT_PUBLIC_LINKS_ENABLED", True),
        link_ttl_hours=config.commitment_link_ttl_hours(),
        new_version_status=config.commitment_new_version_status(),
        require_deliverables_complete=config.env_flag(
            "COMMITMENT_REQUIRE_DELIVERABLES_COMPLETE", False
        ),
    )


@shared.router.get(
    "/commitments/chains/{root_commitment_id}/versions",
    response_model=CommitmentVersionsResponse,
    status_code=status.HTTP_200_OK,
    summary="List Commitment Versions",
    description=(
        "Lists every version of a commitment chain in version order. Any member identifier "
        "resolves to its chain."
    ),
)
def list_commitment_versions(
    root_commitment_id: Annotated[
        str,
        Path(description="Root commitment identifier of the chain.", examples=["cm_3f2a9c1d0b7e"]),
    ],
    service: Annotated[
        CommitmentWorkflowService, Depends(shared.get_commitment_workflow_service)
    ],
) -> CommitmentVersionsResponse:
    shared.assert_workflow_enabled()
    try:
        return service.list_versions(root_commitment_id=root_commitment_id)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)


@shared.router.get(
    "/commitments/{commitment_id}/change-requests",
    response_model=ChangeRequestListResponse,
    status_code=status.HTTP_200_OK,
    summary="List Change Requests",
    description="Lists change requests raised against one commitment version, newest first.",
)
def list_change_requests(
    commitment_id: CommitmentIdPath,
    service: Annotated[
        CommitmentWorkflowService, Depends(shared.get_commitment_workflow_service)
    ],
) -> ChangeRequestListResponse:
    shared.assert_workflow_enabled()
    try:
        return service.list_change_requests(commitment_id=commitment_id)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)


@shared.router.get(
    "/commitments/{commitment_id}/history",
    response_model=CommitmentHistoryResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Commitment History",
    description="Returns the append-only history of one commitment version in insertion order.",
)
def get_commitment_history(
    commitment_id: CommitmentIdPath,
    service: Annotated[
        CommitmentWorkflowService, Depends(shared.get_commitment_workflow_service)
    ],
) -> CommitmentHistoryResponse:
    shared.assert_workflow_enabled()
    try:
        return service.get_history(commitment_id=commitment_id)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)


@shared.router.get(
    "/commitments/{commitment_id}/timeline",
    response_model=CommitmentTimelineResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Commitment Timeline",
    description=(
        "Merges timestamp fields, history events, and change requests into a deduplicated "
        "timeline for display."
    ),
)
def get_commitment_timeline(
    commitment_id: CommitmentIdPath,
    service: Annotated[
        CommitmentWorkflowService, Depends(shared.get_commitment_workflow_service)
    ],
    order: Annotated[
        TimelineOrder, Query(description="Sort direction.", examples=["newest"])
    ] = "newest",
) -> CommitmentTimelineResponse:
    shared.assert_workflow_enabled()
    try:
        return service.get_timeline(commitment_id=commitment_id, order=order)
    except CommitmentLifecycleError as exc:
        raise_commitment_http_exception(exc)
