from pathlib import Path

import pytest

import src.infrastructure.postgres_migrations as migrations_module
from src.infrastructure.postgres_migrations import (
    PostgresMigration,
    _namespace_lock_key,
    apply_postgres_migrations,
    load_migrations,
    pending_postgres_migrations,
)


class _FakeCursor:
    def __init__(self, rows=None):
        self._rows = rows or []

    def fetchall(self):
        return list(self._rows)


class _FakeConnection:
    def __init__(self):
        self.schema_migrations: dict[tuple[str, str], str] = {}
        self.applied_statements: list[str] = []
        self.commit_count = 0
        self.rollback_count = 0
        self.lock_calls: list[int] = []
        self.unlock_calls: list[int] = []

    def execute(self, query, args=None):
        sql = " ".join(str(query).split())
        if sql == "SELECT pg_advisory_lock(%s::bigint)":
            self.lock_calls.append(int(args[0]))
            return _FakeCursor()
        if sql == "SELECT pg_advisory_unlock(%s::bigint)":
            self.unlock_calls.append(int(args[0]))
            return _FakeCursor()
        if sql.startswith("CREATE TABLE IF NOT EXISTS schema_migrations"):
            return _FakeCursor()
        if "FROM schema_migrations" in sql:
            rows = [
                {"version": version, "checksum": checksum}
                for (namespace, version), checksum in self.schema_migrations.items()
                if namespace == args[0]
            ]
            return _FakeCursor(rows=sorted(rows, key=lambda row: row["version"]))
        if "INSERT INTO schema_migrations" in sql:
            self.schema_migrations[(args[1], args[0])] = args[2]
            return _FakeCursor()
        self.applied_statements.append(sql)
        return _FakeCursor()

    def commit(self):
        self.commit_count += 1

    def rollback(self):
        self.rollback_count += 1


def test_commitment_migrations_apply_once_under_namespace_lock():
    connection = _FakeConnection()

    applied = apply_postgres_migrations(connection=connection, namespace="commitments")

    assert applied == ["0001"]
    assert ("commitments", "commitments:0001") in connection.schema_migrations
    assert any(
        statement.startswith("CREATE TABLE IF NOT EXISTS commitment_records")
        for statement in connection.applied_statements
    )
    assert connection.lock_calls == [_namespace_lock_key("commitments")]
    assert connection.unlock_calls == [_namespace_lock_key("commitments")]
    statement_count = len(connection.applied_statements)

    assert apply_postgres_migrations(connection=connection, namespace="commitments") == []
    assert len(connection.applied_statements) == statement_count
    assert connection.commit_count == 2


def test_pending_migrations_are_listed_without_applying():
    connection = _FakeConnection()

    assert pending_postgres_migrations(connection=connection, namespace="commitments") == ["0001"]
    assert connection.applied_statements == []

    apply_postgres_migrations(connection=connection, namespace="commitments")
    assert pending_postgres_migrations(connection=connection, namespace="commitments") == []


def test_edited_migration_is_refused(monkeypatch, tmp_path: Path):
    sql_path = tmp_path / "0001_sample.sql"
    sql_path.write_text("CREATE TABLE IF NOT EXISTS sample_table (id TEXT PRIMARY KEY);")
    migration = PostgresMigration(version="0001", sql_path=sql_path, checksum="checksum-new")
    monkeypatch.setattr(migrations_module, "load_migrations", lambda namespace: [migration])
    connection = _FakeConnection()
    connection.schema_migrations[("custom", "custom:0001")] = "checksum-old"

    with pytest.raises(RuntimeError) as exc:
        apply_postgres_migrations(connection=connection, namespace="custom")

    assert str(exc.value) == "POSTGRES_MIGRATION_CHECKSUM_MISMATCH:custom:0001"
    assert connection.rollback_count == 1
    assert connection.applied_statements == []
    assert connection.unlock_calls == [_namespace_lock_key("custom")]


def test_unknown_namespace_is_rejected():
    with pytest.raises(RuntimeError, match="POSTGRES_MIGRATIONS_NAMESPACE_NOT_FOUND:missing"):
        load_migrations("missing")


def test_namespace_lock_key_is_stable_and_scoped():
    assert _namespace_lock_key("commitments") == _namespace_lock_key("commitments")
    assert _namespace_lock_key("commitments") != _namespace_lock_key("other")
