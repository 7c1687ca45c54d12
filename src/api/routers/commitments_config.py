import os
from typing import cast

from src.core.commitments.repository import CommitmentRepository
from src.core.commitments.status import CommitmentStatus, normalize_commitment_status
from src.core.commitments.tokens import DEFAULT_LINK_TTL_HOURS, DEFAULT_PUBLIC_BASE_URL
from src.infrastructure.commitments import (
    InMemoryCommitmentRepository,
    PostgresCommitmentRepository,
)


def commitment_store_backend_name() -> str:
    backend = os.getenv("COMMITMENT_STORE_BACKEND", "IN_MEMORY").strip().upper()
    return "POSTGRES" if backend == "POSTGRES" else "IN_MEMORY"


def commitment_postgres_dsn() -> str:
    return os.getenv("COMMITMENT_POSTGRES_DSN", "").strip()


def commitment_link_ttl_hours() -> int:
    return _env_int("COMMITMENT_LINK_TTL_HOURS", DEFAULT_LINK_TTL_HOURS)


def commitment_public_base_url() -> str:
    return os.getenv("COMMITMENT_PUBLIC_BASE_URL", DEFAULT_PUBLIC_BASE_URL).strip()


def commitment_new_version_status() -> CommitmentStatus:
    value = normalize_commitment_status(
        os.getenv("COMMITMENT_NEW_VERSION_STATUS", "AWAITING_CLIENT_APPROVAL")
    )
    return "DRAFT" if value == "DRAFT" else "AWAITING_CLIENT_APPROVAL"


def commitment_risk_stale_after_days() -> int:
    return _env_int("COMMITMENT_RISK_STALE_AFTER_DAYS", 7)


def env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _postgres_connection_exception_types() -> tuple[type[BaseException], ...]:
    types: list[type[BaseException]] = [
        ConnectionError,
        OSError,
        TimeoutError,
        TypeError,
        ValueError,
    ]
    try:
        import psycopg
    except ImportError:
        pass
    else:
        types.append(psycopg.Error)
    return tuple(types)


def build_repository() -> CommitmentRepository:
    if commitment_store_backend_name() == "POSTGRES":
        dsn = commitment_postgres_dsn()
        if not dsn:
            raise RuntimeError("COMMITMENT_POSTGRES_DSN_REQUIRED")
        try:
            return cast(CommitmentRepository, PostgresCommitmentRepository(dsn=dsn))
        except RuntimeError:
            raise
        except _postgres_connection_exception_types() as exc:
            raise RuntimeError("COMMITMENT_POSTGRES_CONNECTION_FAILED") from exc
    return InMemoryCommitmentRepository()
