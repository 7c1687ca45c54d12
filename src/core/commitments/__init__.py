from src.core.commitments.errors import (
    ChangeRequestAlreadyResolvedError,
    CommitmentConcurrencyError,
    CommitmentIdempotencyConflictError,
    CommitmentLifecycleError,
    CommitmentNotFoundError,
    CommitmentTransitionError,
    CommitmentValidationError,
    LinkAlreadyUsedError,
    LinkExpiredError,
    LinkInvalidError,
    LinkVersionMismatchError,
)
from src.core.commitments.models import (
    AcceptanceAction,
    ApprovalAction,
    ChangeRequestAcceptRequest,
    ChangeRequestListResponse,
    ChangeRequestRejectRequest,
    ChangeRequestResolutionResponse,
    CommitmentActionRequest,
    CommitmentActionResponse,
    CommitmentAssignRequest,
    CommitmentCreateRequest,
    CommitmentDetail,
    CommitmentHistoryResponse,
    CommitmentListResponse,
    CommitmentSupportabilityConfigResponse,
    CommitmentTimelineResponse,
    CommitmentUpdateRequest,
    CommitmentVersionsResponse,
    PublicActionResponse,
    PublicLinkInfoResponse,
)
from src.core.commitments.repository import CommitmentRepository
from src.core.commitments.service import NEW_VERSION_STATUSES, CommitmentWorkflowService
from src.core.commitments.status import CommitmentStatus, normalize_commitment_status
from src.core.commitments.tokens import SecureLinkTokenService

__all__ = [
    "AcceptanceAction",
    "ApprovalAction",
    "ChangeRequestAcceptRequest",
    "ChangeRequestAlreadyResolvedError",
    "ChangeRequestListResponse",
    "ChangeRequestRejectRequest",
    "ChangeRequestResolutionResponse",
    "CommitmentActionRequest",
    "CommitmentActionResponse",
    "CommitmentAssignRequest",
    "CommitmentConcurrencyError",
    "CommitmentCreateRequest",
    "CommitmentDetail",
    "CommitmentHistoryResponse",
    "CommitmentIdempotencyConflictError",
    "CommitmentLifecycleError",
    "CommitmentListResponse",
    "CommitmentNotFoundError",
    "CommitmentRepository",
    "CommitmentStatus",
    "CommitmentSupportabilityConfigResponse",
    "CommitmentTimelineResponse",
    "CommitmentTransitionError",
    "CommitmentUpdateRequest",
    "CommitmentValidationError",
    "CommitmentVersionsResponse",
    "CommitmentWorkflowService",
    "LinkAlreadyUsedError",
    "LinkExpiredError",
    "LinkInvalidError",
    "LinkVersionMismatchError",
    "NEW_VERSION_STATUSES",
    "PublicActionResponse",
    "PublicLinkInfoResponse",
    "SecureLinkTokenService",
    "normalize_commitment_status",
]
