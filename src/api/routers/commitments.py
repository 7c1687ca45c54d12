from typing import Optional

from fastapi import APIRouter, HTTPException, status

from src.api.routers import commitments_config
from src.core.commitments import CommitmentWorkflowService, SecureLinkTokenService
from src.core.commitments.repository import CommitmentRepository

router = APIRouter(tags=["Commitment Lifecycle"])

_REPOSITORY: Optional[CommitmentRepository] = None
_SERVICE: Optional[CommitmentWorkflowService] = None


def get_commitment_repository() -> CommitmentRepository:
    global _REPOSITORY
    if _REPOSITORY is None:
        try:
            _REPOSITORY = commitments_config.build_repository()
        except RuntimeError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
            ) from exc
        except Exception as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="COMMITMENT_POSTGRES_CONNECTION_FAILED",
            ) from exc
    return _REPOSITORY


def get_commitment_workflow_service() -> CommitmentWorkflowService:
    global _SERVICE
    if _SERVICE is None:
        repository = get_commitment_repository()
        _SERVICE = CommitmentWorkflowService(
            repository=repository,
            link_tokens=SecureLinkTokenService(
                repository=repository,
                ttl_hours=commitments_config.commitment_link_ttl_hours(),
                public_base_url=commitments_config.commitment_public_base_url(),
            ),
            new_version_status=commitments_config.commitment_new_version_status(),
            require_deliverables_complete=commitments_config.env_flag(
                "COMMITMENT_REQUIRE_DELIVERABLES_COMPLETE", False
            ),
            risk_stale_after_days=commitments_config.commitment_risk_stale_after_days(),
        )
    return _SERVICE


def reset_commitment_workflow_service_for_tests() -> None:
    global _REPOSITORY
    global _SERVICE
    _REPOSITORY = None
    _SERVICE = None


def assert_workflow_enabled() -> None:
    if not commitments_config.env_flag("COMMITMENT_WORKFLOW_ENABLED", True):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="COMMITMENT_WORKFLOW_DISABLED",
        )


def assert_public_links_enabled() -> None:
    if not commitments_config.env_flag("COMMITMENT_PUBLIC_LINKS_ENABLED", True):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="COMMITMENT_PUBLIC_LINKS_DISABLED",
        )
