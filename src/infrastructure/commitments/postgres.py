import json
from contextlib import closing
from datetime import datetime
from importlib.util import find_spec
from typing import Any, Optional

from src.core.commitments.errors import (
    ChangeRequestAlreadyResolvedError,
    CommitmentConcurrencyError,
    LinkAlreadyUsedError,
)
from src.core.commitments.models import (
    ChangeRequestRecord,
    CommitmentHistoryEventRecord,
    CommitmentIdempotencyRecord,
    CommitmentRecord,
    CommitmentTransitionResult,
    SecureLinkRecord,
)
from src.core.commitments.status import CommitmentStatus
from src.infrastructure.postgres_migrations import apply_postgres_migrations

_COMMITMENT_COLUMNS = """
    commitment_id,
    root_commitment_id,
    previous_commitment_id,
    version,
    status,
    frozen,
    client_id,
    assigned_to_user_id,
    created_by,
    created_at,
    updated_at,
    record_json
"""


class PostgresCommitmentRepository:
    def __init__(self, *, dsn: str) -> None:
        if not dsn:
            raise RuntimeError("COMMITMENT_POSTGRES_DSN_REQUIRED")
        if find_spec("psycopg") is None:
            raise RuntimeError("COMMITMENT_POSTGRES_DRIVER_MISSING")
        self._dsn = dsn
        self._init_db()

    def get_idempotency(
        self, *, idempotency_key: str
    ) -> Optional[CommitmentIdempotencyRecord]:
        query = """
            SELECT
                idempotency_key,
                request_hash,
                commitment_id,
                created_at
            FROM commitment_idempotency
            WHERE idempotency_key = %s
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (idempotency_key,)).fetchone()
        if row is None:
            return None
        return CommitmentIdempotencyRecord(
            idempotency_key=row["idempotency_key"],
            request_hash=row["request_hash"],
            commitment_id=row["commitment_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def save_idempotency(self, record: CommitmentIdempotencyRecord) -> None:
        query = """
            INSERT INTO commitment_idempotency (
                idempotency_key,
                request_hash,
                commitment_id,
                created_at
            ) VALUES (%s, %s, %s, %s)
            ON CONFLICT (idempotency_key) DO NOTHING
        """
        with closing(self._connect()) as connection:
            connection.execute(
                query,
                (
                    record.idempotency_key,
                    record.request_hash,
                    record.commitment_id,
                    record.created_at.isoformat(),
                ),
            )
            connection.commit()

    def create_commitment(
        self, *, commitment: CommitmentRecord, event: CommitmentHistoryEventRecord
    ) -> None:
        with closing(self._connect()) as connection:
            self._insert_commitment(connection=connection, commitment=commitment)
            self._insert_event(connection=connection, event=event)
            connection.commit()

    def get_commitment(self, *, commitment_id: str) -> Optional[CommitmentRecord]:
        query = f"""
            SELECT {_COMMITMENT_COLUMNS}
            FROM commitment_records
            WHERE commitment_id = %s
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (commitment_id,)).fetchone()
        return _to_commitment(row)

    def list_commitments(
        self,
        *,
        status: Optional[CommitmentStatus],
        client_id: Optional[str],
        assigned_to_user_id: Optional[str],
        include_superseded: bool,
        limit: int,
        cursor: Optional[str],
    ) -> tuple[list[CommitmentRecord], Optional[str]]:
        where_clauses = []
        args: list[Any] = []
        if not include_superseded:
            where_clauses.append("frozen = FALSE")
        if status is not None:
            where_clauses.append("status = %s")
            args.append(status)
        if client_id is not None:
            where_clauses.append("client_id = %s")
            args.append(client_id)
        if assigned_to_user_id is not None:
            where_clauses.append("assigned_to_user_id = %s")
            args.append(assigned_to_user_id)
        where_sql = f"WHERE {' AND '.join(where_clauses)}" if where_clauses else ""
        query = f"""
            SELECT {_COMMITMENT_COLUMNS}
            FROM commitment_records
            {where_sql}
            ORDER BY created_at DESC, commitment_id DESC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, tuple(args)).fetchall()
        commitments = [_to_commitment(row) for row in rows]
        commitments = [commitment for commitment in commitments if commitment is not None]
        if cursor:
            cursor_index = next(
                (
                    index
                    for index, commitment in enumerate(commitments)
                    if commitment.commitment_id == cursor
                ),
                None,
            )
            if cursor_index is None:
                return [], None
            commitments = commitments[cursor_index + 1 :]
        page = commitments[:limit]
        next_cursor = page[-1].commitment_id if len(commitments) > limit else None
        return page, next_cursor

    def list_chain(self, *, root_commitment_id: str) -> list[CommitmentRecord]:
        query = f"""
            SELECT {_COMMITMENT_COLUMNS}
            FROM commitment_records
            WHERE root_commitment_id = %s
            ORDER BY version ASC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, (root_commitment_id,)).fetchall()
        return [commitment for commitment in map(_to_commitment, rows) if commitment is not None]

    def transition_commitment(
        self,
        *,
        commitment: CommitmentRecord,
        expected_status: CommitmentStatus,
        expected_updated_at: datetime,
        event: CommitmentHistoryEventRecord,
        change_request: Optional[ChangeRequestRecord] = None,
        new_link: Optional[SecureLinkRecord] = None,
        consumed_link_id: Optional[str] = None,
    ) -> CommitmentTransitionResult:
        psycopg, _ = _import_psycopg()
        with closing(self._connect()) as connection:
            self._compare_and_set_commitment(
                connection=connection,
                commitment=commitment,
                expected_status=expected_status,
                expected_updated_at=expected_updated_at,
            )
            if consumed_link_id is not None:
                self._consume_link(
                    connection=connection,
                    link_id=consumed_link_id,
                    used_at=event.created_at,
                )
            if change_request is not None:
                try:
                    self._upsert_change_request(
                        connection=connection, change_request=change_request
                    )
                except psycopg.IntegrityError as exc:
                    raise CommitmentConcurrencyError(
                        f"commitment {change_request.commitment_id} already has an open "
                        "change request"
                    ) from exc
            if new_link is not None:
                self._insert_link(connection=connection, link=new_link)
            self._insert_event(connection=connection, event=event)
            connection.commit()

        return CommitmentTransitionResult(
            commitment=commitment,
            event=event,
            change_request=change_request,
        )

    def resolve_change_request(
        self,
        *,
        change_request: ChangeRequestRecord,
        commitment: CommitmentRecord,
        expected_status: CommitmentStatus,
        expected_updated_at: datetime,
        events: list[CommitmentHistoryEventRecord],
        new_commitment: Optional[CommitmentRecord] = None,
        new_link: Optional[SecureLinkRecord] = None,
    ) -> None:
        query = """
            UPDATE commitment_change_requests
            SET status = %s, record_json = %s
            WHERE change_request_id = %s AND status = 'OPEN'
        """
        with closing(self._connect()) as connection:
            cursor = connection.execute(
                query,
                (
                    change_request.status,
                    _json_dump(change_request.model_dump(mode="json")),
                    change_request.change_request_id,
                ),
            )
            if cursor.rowcount != 1:
                raise ChangeRequestAlreadyResolvedError(
                    f"change request {change_request.change_request_id} is already resolved"
                )
            self._write_chain_update(
                connection=connection,
                commitment=commitment,
                expected_status=expected_status,
                expected_updated_at=expected_updated_at,
                events=events,
                new_commitment=new_commitment,
                new_link=new_link,
            )
            connection.commit()

    def supersede_commitment(
        self,
        *,
        commitment: CommitmentRecord,
        expected_status: CommitmentStatus,
        expected_updated_at: datetime,
        events: list[CommitmentHistoryEventRecord],
        new_commitment: CommitmentRecord,
        new_link: Optional[SecureLinkRecord] = None,
    ) -> None:
        with closing(self._connect()) as connection:
            self._write_chain_update(
                connection=connection,
                commitment=commitment,
                expected_status=expected_status,
                expected_updated_at=expected_updated_at,
                events=events,
                new_commitment=new_commitment,
                new_link=new_link,
            )
            connection.commit()

    def list_events(self, *, commitment_id: str) -> list[CommitmentHistoryEventRecord]:
        query = """
            SELECT
                event_id,
                commitment_id,
                commitment_version,
                event_type,
                actor_type,
                actor,
                message,
                created_at,
                meta_json
            FROM commitment_history_events
            WHERE commitment_id = %s
            ORDER BY event_seq ASC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, (commitment_id,)).fetchall()
        return [_to_event(row) for row in rows]

    def get_change_request(self, *, change_request_id: str) -> Optional[ChangeRequestRecord]:
        query = """
            SELECT record_json
            FROM commitment_change_requests
            WHERE change_request_id = %s
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (change_request_id,)).fetchone()
        if row is None:
            return None
        return ChangeRequestRecord.model_validate(json.loads(row["record_json"]))

    def list_change_requests(self, *, commitment_id: str) -> list[ChangeRequestRecord]:
        query = """
            SELECT record_json
            FROM commitment_change_requests
            WHERE commitment_id = %s
            ORDER BY created_at ASC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, (commitment_id,)).fetchall()
        return [ChangeRequestRecord.model_validate(json.loads(row["record_json"])) for row in rows]

    def get_link_by_token_hash(self, *, token_hash: str) -> Optional[SecureLinkRecord]:
        query = """
            SELECT
                link_id,
                commitment_id,
                commitment_version,
                purpose,
                token_hash,
                created_at,
                expires_at,
                used_at
            FROM commitment_secure_links
            WHERE token_hash = %s
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (token_hash,)).fetchone()
        if row is None:
            return None
        return SecureLinkRecord(
            link_id=row["link_id"],
            commitment_id=row["commitment_id"],
            commitment_version=int(row["commitment_version"]),
            purpose=row["purpose"],
            token_hash=row["token_hash"],
            created_at=datetime.fromisoformat(row["created_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
            used_at=_optional_datetime(row["used_at"]),
        )

    def _connect(self):
        psycopg, dict_row = _import_psycopg()
        return psycopg.connect(self._dsn, row_factory=dict_row)

    def _init_db(self) -> None:
        with closing(self._connect()) as connection:
            apply_postgres_migrations(connection=connection, namespace="commitments")

    def _compare_and_set_commitment(
        self,
        *,
        connection,
        commitment: CommitmentRecord,
        expected_status: CommitmentStatus,
        expected_updated_at: datetime,
    ) -> None:
        query = """
            UPDATE commitment_records SET
                status = %s,
                frozen = %s,
                assigned_to_user_id = %s,
                updated_at = %s,
                record_json = %s
            WHERE commitment_id = %s
                AND status = %s
                AND updated_at = %s
                AND frozen = FALSE
        """
        cursor = connection.execute(
            query,
            (
                commitment.status,
                commitment.frozen,
                commitment.assigned_to_user_id,
                commitment.updated_at.isoformat(),
                _json_dump(commitment.model_dump(mode="json")),
                commitment.commitment_id,
                expected_status,
                expected_updated_at.isoformat(),
            ),
        )
        if cursor.rowcount != 1:
            raise CommitmentConcurrencyError(
                f"commitment {commitment.commitment_id} changed since it was read"
            )

    def _write_chain_update(
        self,
        *,
        connection,
        commitment: CommitmentRecord,
        expected_status: CommitmentStatus,
        expected_updated_at: datetime,
        events: list[CommitmentHistoryEventRecord],
        new_commitment: Optional[CommitmentRecord],
        new_link: Optional[SecureLinkRecord],
    ) -> None:
        # Freeze before insert: at most one live row per chain.
        self._compare_and_set_commitment(
            connection=connection,
            commitment=commitment,
            expected_status=expected_status,
            expected_updated_at=expected_updated_at,
        )
        if new_commitment is not None:
            self._insert_commitment(connection=connection, commitment=new_commitment)
        if new_link is not None:
            self._insert_link(connection=connection, link=new_link)
        for event in events:
            self._insert_event(connection=connection, event=event)

    def _consume_link(self, *, connection, link_id: str, used_at: datetime) -> None:
        query = """
            UPDATE commitment_secure_links
            SET used_at = %s
            WHERE link_id = %s AND used_at IS NULL
        """
        cursor = connection.execute(query, (used_at.isoformat(), link_id))
        if cursor.rowcount != 1:
            raise LinkAlreadyUsedError("link has already been used")

    def _insert_commitment(self, *, connection, commitment: CommitmentRecord) -> None:
        query = f"""
            INSERT INTO commitment_records ({_COMMITMENT_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        connection.execute(
            query,
            (
                commitment.commitment_id,
                commitment.root_commitment_id,
                commitment.previous_commitment_id,
                commitment.version,
                commitment.status,
                commitment.frozen,
                commitment.client_id,
                commitment.assigned_to_user_id,
                commitment.created_by,
                commitment.created_at.isoformat(),
                commitment.updated_at.isoformat(),
                _json_dump(commitment.model_dump(mode="json")),
            ),
        )

    def _upsert_change_request(self, *, connection, change_request: ChangeRequestRecord) -> None:
        query = """
            INSERT INTO commitment_change_requests (
                change_request_id,
                commitment_id,
                status,
                created_at,
                record_json
            ) VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (change_request_id) DO UPDATE SET
                status=excluded.status,
                record_json=excluded.record_json
        """
        connection.execute(
            query,
            (
                change_request.change_request_id,
                change_request.commitment_id,
                change_request.status,
                change_request.created_at.isoformat(),
                _json_dump(change_request.model_dump(mode="json")),
            ),
        )

    def _insert_link(self, *, connection, link: SecureLinkRecord) -> None:
        query = """
            INSERT INTO commitment_secure_links (
                link_id,
                commitment_id,
                commitment_version,
                purpose,
                token_hash,
                created_at,
                expires_at,
                used_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        """
        connection.execute(
            query,
            (
                link.link_id,
                link.commitment_id,
                link.commitment_version,
                link.purpose,
                link.token_hash,
                link.created_at.isoformat(),
                link.expires_at.isoformat(),
                _optional_iso(link.used_at),
            ),
        )

    def _insert_event(self, *, connection, event: CommitmentHistoryEventRecord) -> None:
        query = """
            INSERT INTO commitment_history_events (
                event_id,
                commitment_id,
                commitment_version,
                event_type,
                actor_type,
                actor,
                message,
                created_at,
                meta_json
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        connection.execute(
            query,
            (
                event.event_id,
                event.commitment_id,
                event.commitment_version,
                event.event_type,
                event.actor_type,
                event.actor,
                event.message,
                event.created_at.isoformat(),
                _json_dump(event.meta),
            ),
        )


def _import_psycopg():
    import psycopg
    from psycopg.rows import dict_row

    return psycopg, dict_row


def _optional_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _optional_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _json_dump(value: dict) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def _to_commitment(row) -> Optional[CommitmentRecord]:
    if row is None:
        return None
    return CommitmentRecord.model_validate(json.loads(row["record_json"]))


def _to_event(row) -> CommitmentHistoryEventRecord:
    return CommitmentHistoryEventRecord(
        event_id=row["event_id"],
        commitment_id=row["commitment_id"],
        commitment_version=int(row["commitment_version"]),
        event_type=row["event_type"],
        actor_type=row["actor_type"],
        actor=row["actor"],
        message=row["message"],
        created_at=datetime.fromisoformat(row["created_at"]),
        meta=json.loads(row["meta_json"]),
    )
