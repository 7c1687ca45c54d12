import argparse
import os
import sys
from importlib.util import find_spec
from pathlib import Path

_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

_NAMESPACE = "commitments"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Apply forward-only PostgreSQL migrations for the commitment store."
    )
    parser.add_argument(
        "--dsn",
        default=os.getenv("COMMITMENT_POSTGRES_DSN", "").strip(),
        help="PostgreSQL DSN for the commitment store (defaults to COMMITMENT_POSTGRES_DSN).",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="List pending migrations without applying them; exit 1 when any are pending.",
    )
    args = parser.parse_args(argv)

    if not args.dsn:
        raise RuntimeError(f"POSTGRES_MIGRATION_DSN_REQUIRED:{_NAMESPACE}")
    if find_spec("psycopg") is None:
        raise RuntimeError("POSTGRES_MIGRATION_DRIVER_MISSING")
    import psycopg
    from psycopg.rows import dict_row

    from src.infrastructure.postgres_migrations import (
        apply_postgres_migrations,
        pending_postgres_migrations,
    )

    with psycopg.connect(args.dsn, row_factory=dict_row) as connection:
        if args.check:
            pending = pending_postgres_migrations(connection=connection, namespace=_NAMESPACE)
            for version in pending:
                print(f"Pending migration namespace={_NAMESPACE} version={version}")
            return 1 if pending else 0
        applied = apply_postgres_migrations(connection=connection, namespace=_NAMESPACE)
    print(f"Applied {len(applied)} migration(s) for namespace={_NAMESPACE}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
