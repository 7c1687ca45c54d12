from __future__ import annotations

import os

from src.api.routers.commitments_config import (
    commitment_postgres_dsn,
    commitment_store_backend_name,
    env_flag,
)

_PRODUCTION_PROFILE = "PRODUCTION"
_LOCAL_PROFILE = "LOCAL"


def app_persistence_profile_name() -> str:
    profile = os.getenv("APP_PERSISTENCE_PROFILE", _LOCAL_PROFILE).strip().upper()
    return _PRODUCTION_PROFILE if profile == _PRODUCTION_PROFILE else _LOCAL_PROFILE


def validate_persistence_profile_guardrails() -> None:
    if app_persistence_profile_name() != _PRODUCTION_PROFILE:
        return
    if commitment_store_backend_name() != "POSTGRES":
        raise RuntimeError("PERSISTENCE_PROFILE_REQUIRES_COMMITMENT_POSTGRES")
    if not commitment_postgres_dsn():
        raise RuntimeError("PERSISTENCE_PROFILE_REQUIRES_COMMITMENT_POSTGRES_DSN")
    if env_flag("COMMITMENT_PUBLIC_LINKS_ENABLED", True) and not _explicit_public_base_url():
        raise RuntimeError("PERSISTENCE_PROFILE_REQUIRES_COMMITMENT_PUBLIC_BASE_URL")


def _explicit_public_base_url() -> str:
    return os.getenv("COMMITMENT_PUBLIC_BASE_URL", "").strip()
