#!/usr/bin/env python3
"""
Apply or inspect funding ledger schema migrations.

Settings come from funding_config.load_settings (environment variables and
the optional FUNDING_CONFIG_FILE).  --database-url and --migrations-dir
override them.

Usage:
    python3 scripts/migrate.py status
    python3 scripts/migrate.py run
    DATABASE_URL=postgresql+psycopg2://ledger:pw@localhost:5432/funding python3 scripts/migrate.py run
"""

from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Sequence
from pathlib import Path

from funding_config import load_settings
from funding_kernel.db.engine import create_engine_from_url
from funding_kernel.exceptions import ConfigurationError, MigrationFailedError
from funding_kernel.logging_config import configure_logging
from funding_kernel.services.migration_runner import DEFAULT_MIGRATIONS_DIR, MigrationRunner


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Funding ledger schema migrations")
    p.add_argument("command", choices=("status", "run"), help="Show status or apply pending files")
    p.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    p.add_argument("--migrations-dir", type=Path, default=None, help="Directory of NNN_*.sql files")
    return p.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    environ = None
    if args.database_url:
        environ = {**os.environ, "DATABASE_URL": args.database_url}
    try:
        settings = load_settings(environ=environ)
    except ConfigurationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    configure_logging(level=settings.log_level)
    db = settings.database
    engine = create_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.connect_timeout,
        pool_recycle=db.idle_timeout,
    )
    migrations_dir = args.migrations_dir or settings.migrations_dir or DEFAULT_MIGRATIONS_DIR
    runner = MigrationRunner(engine, migrations_dir)

    try:
        if args.command == "status":
            status = runner.status()
            print(f"Migrations in {runner.migrations_dir}")
            for filename in status.executed:
                print(f"  [x] {filename}")
            for filename in status.pending:
                print(f"  [ ] {filename}")
            print(f"{len(status.executed)} executed, {len(status.pending)} pending")
            return 0

        applied = runner.run()
        if applied:
            for filename in applied:
                print(f"Applied {filename}")
        else:
            print("Nothing to apply; schema is up to date.")
        return 0
    except MigrationFailedError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
