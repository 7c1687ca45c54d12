import hashlib
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from src.core.commitments.errors import LinkInvalidError
from src.core.commitments.models import LinkPurpose, SecureLinkRecord
from src.core.commitments.repository import CommitmentRepository

logger = logging.getLogger(__name__)

DEFAULT_LINK_TTL_HOURS = 168
DEFAULT_PUBLIC_BASE_URL = "http://localhost:5173"

_PURPOSE_PATHS: dict[LinkPurpose, str] = {"APPROVAL": "approve", "ACCEPTANCE": "accept"}


@dataclass(frozen=True)
class IssuedLink:
    token: str
    url: str
    record: SecureLinkRecord


@dataclass(frozen=True)
class LinkTokenClaims:
    link_id: str
    commitment_id: str
    version: int
    purpose: LinkPurpose
    expires_at: datetime
    expired: bool
    used: bool


class LinkTokenService(Protocol):
    def issue(self, *, commitment_id: str, version: int, purpose: LinkPurpose) -> IssuedLink: ...

    def verify(self, token: str) -> LinkTokenClaims: ...


def hash_link_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class SecureLinkTokenService:
    """Opaque single-use link tokens stored only as sha256 digests.

    ``issue`` does not persist the link record; callers hand ``IssuedLink.record`` to
    the repository together with the transition that sends it, so a link never exists
    without its history event.
    """

    def __init__(
        self,
        *,
        repository: CommitmentRepository,
        ttl_hours: int = DEFAULT_LINK_TTL_HOURS,
        public_base_url: str = DEFAULT_PUBLIC_BASE_URL,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        if ttl_hours <= 0:
            raise ValueError("ttl_hours must be positive")
        self._repository = repository
        self._ttl = timedelta(hours=ttl_hours)
        self._public_base_url = public_base_url.rstrip("/")
        self._clock = clock

    @property
    def ttl_hours(self) -> int:
        return int(self._ttl.total_seconds() // 3600)

    def issue(self, *, commitment_id: str, version: int, purpose: LinkPurpose) -> IssuedLink:
        token = secrets.token_hex(32)
        now = self._clock()
        record = SecureLinkRecord(
            link_id=f"lnk_{uuid.uuid4().hex[:12]}",
            commitment_id=commitment_id,
            commitment_version=version,
            purpose=purpose,
            token_hash=hash_link_token(token),
            created_at=now,
            expires_at=now + self._ttl,
        )
        logger.info(
            "commitment.link.issued",
            extra={
                "extra_fields": {
                    "commitment_id": commitment_id,
                    "commitment_version": version,
                    "link_purpose": purpose,
                    "link_id": record.link_id,
                }
            },
        )
        return IssuedLink(
            token=token,
            url=f"{self._public_base_url}/{_PURPOSE_PATHS[purpose]}/{token}",
            record=record,
        )

    def verify(self, token: str) -> LinkTokenClaims:
        if not token or not token.strip():
            raise LinkInvalidError("link token is missing")
        link = self._repository.get_link_by_token_hash(token_hash=hash_link_token(token.strip()))
        if link is None:
            raise LinkInvalidError("link not found")
        return LinkTokenClaims(
            link_id=link.link_id,
            commitment_id=link.commitment_id,
            version=link.commitment_version,
            purpose=link.purpose,
            expires_at=link.expires_at,
            expired=self._clock() >= link.expires_at,
            used=link.used_at is not None,
        )
