import pytest

from src.api.persistence_profile import (
    app_persistence_profile_name,
    validate_persistence_profile_guardrails,
)
from src.api.routers import commitments_config
from src.infrastructure.commitments import InMemoryCommitmentRepository


def test_commitment_backend_defaults_to_in_memory(monkeypatch):
    monkeypatch.delenv("COMMITMENT_STORE_BACKEND", raising=False)
    assert commitments_config.commitment_store_backend_name() == "IN_MEMORY"

    monkeypatch.setenv("COMMITMENT_STORE_BACKEND", " postgres ")
    assert commitments_config.commitment_store_backend_name() == "POSTGRES"

    monkeypatch.setenv("COMMITMENT_STORE_BACKEND", "unknown")
    assert commitments_config.commitment_store_backend_name() == "IN_MEMORY"


def test_in_memory_backend_builds_in_memory_repository(monkeypatch):
    monkeypatch.setenv("COMMITMENT_STORE_BACKEND", "IN_MEMORY")
    assert isinstance(commitments_config.build_repository(), InMemoryCommitmentRepository)


def test_build_repository_postgres_requires_dsn(monkeypatch):
    monkeypatch.delenv("COMMITMENT_POSTGRES_DSN", raising=False)

    with pytest.raises(RuntimeError, match="COMMITMENT_POSTGRES_DSN_REQUIRED"):
        commitments_config.build_repository()


def test_build_repository_maps_connection_errors(monkeypatch):
    def _raise_connection_error(**_kwargs):
        raise OSError("connection refused")

    monkeypatch.setattr(
        commitments_config, "PostgresCommitmentRepository", _raise_connection_error
    )
    with pytest.raises(RuntimeError, match="COMMITMENT_POSTGRES_CONNECTION_FAILED"):
        commitments_config.build_repository()


def test_build_repository_keeps_runtime_error_codes(monkeypatch):
    def _raise_driver_missing(**_kwargs):
        raise RuntimeError("COMMITMENT_POSTGRES_DRIVER_MISSING")

    monkeypatch.setattr(commitments_config, "PostgresCommitmentRepository", _raise_driver_missing)
    with pytest.raises(RuntimeError, match="COMMITMENT_POSTGRES_DRIVER_MISSING"):
        commitments_config.build_repository()


@pytest.mark.parametrize(
    ("value", "expected"),
    [(None, 168), ("24", 24), ("0", 168), ("-3", 168), ("soon", 168), ("  ", 168)],
)
def test_link_ttl_hours_falls_back_to_default(monkeypatch, value, expected):
    if value is None:
        monkeypatch.delenv("COMMITMENT_LINK_TTL_HOURS", raising=False)
    else:
        monkeypatch.setenv("COMMITMENT_LINK_TTL_HOURS", value)
    assert commitments_config.commitment_link_ttl_hours() == expected


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, "AWAITING_CLIENT_APPROVAL"),
        ("draft", "DRAFT"),
        ("PENDING_APPROVAL", "AWAITING_CLIENT_APPROVAL"),
        ("IN_PROGRESS", "AWAITING_CLIENT_APPROVAL"),
    ],
)
def test_new_version_status_is_restricted(monkeypatch, value, expected):
    if value is None:
        monkeypatch.delenv("COMMITMENT_NEW_VERSION_STATUS", raising=False)
    else:
        monkeypatch.setenv("COMMITMENT_NEW_VERSION_STATUS", value)
    assert commitments_config.commitment_new_version_status() == expected


def test_env_flag_parsing(monkeypatch):
    monkeypatch.delenv("COMMITMENT_WORKFLOW_ENABLED", raising=False)
    assert commitments_config.env_flag("COMMITMENT_WORKFLOW_ENABLED", True) is True

    for raw, expected in [("on", True), ("YES", True), ("0", False), ("false", False)]:
        monkeypatch.setenv("COMMITMENT_WORKFLOW_ENABLED", raw)
        assert commitments_config.env_flag("COMMITMENT_WORKFLOW_ENABLED", True) is expected


def test_public_base_url_defaults_to_local_frontend(monkeypatch):
    monkeypatch.delenv("COMMITMENT_PUBLIC_BASE_URL", raising=False)
    assert commitments_config.commitment_public_base_url() == "http://localhost:5173"


def test_local_profile_skips_guardrails(monkeypatch):
    monkeypatch.delenv("APP_PERSISTENCE_PROFILE", raising=False)
    monkeypatch.setenv("COMMITMENT_STORE_BACKEND", "IN_MEMORY")

    assert app_persistence_profile_name() == "LOCAL"
    validate_persistence_profile_guardrails()


def test_production_profile_requires_postgres_dsn_and_public_url(monkeypatch):
    monkeypatch.setenv("APP_PERSISTENCE_PROFILE", "production")

    monkeypatch.setenv("COMMITMENT_STORE_BACKEND", "IN_MEMORY")
    with pytest.raises(RuntimeError, match="PERSISTENCE_PROFILE_REQUIRES_COMMITMENT_POSTGRES$"):
        validate_persistence_profile_guardrails()

    monkeypatch.setenv("COMMITMENT_STORE_BACKEND", "POSTGRES")
    monkeypatch.delenv("COMMITMENT_POSTGRES_DSN", raising=False)
    with pytest.raises(RuntimeError, match="PERSISTENCE_PROFILE_REQUIRES_COMMITMENT_POSTGRES_DSN"):
        validate_persistence_profile_guardrails()

    monkeypatch.setenv("COMMITMENT_POSTGRES_DSN", "postgresql://u:p@db:5432/commitments")
    monkeypatch.delenv("COMMITMENT_PUBLIC_BASE_URL", raising=False)
    with pytest.raises(
        RuntimeError, match="PERSISTENCE_PROFILE_REQUIRES_COMMITMENT_PUBLIC_BASE_URL"
    ):
        validate_persistence_profile_guardrails()

    monkeypatch.setenv("COMMITMENT_PUBLIC_LINKS_ENABLED", "false")
    validate_persistence_profile_guardrails()

    monkeypatch.setenv("COMMITMENT_PUBLIC_LINKS_ENABLED", "true")
    monkeypatch.setenv("COMMITMENT_PUBLIC_BASE_URL", "https://app.example.com")
    validate_persistence_profile_guardrails()
