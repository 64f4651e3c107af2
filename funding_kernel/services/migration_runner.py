"""
MigrationRunner -- apply numbered SQL files to the store exactly once.

Responsibility:
    Discovers ``NNN_description.sql`` files in a directory, records each
    applied file in ``schema_migrations``, and applies the pending ones in
    version order.

Guarantees:
    - Each file runs in its own transaction together with the insert of its
      version row: a file is either fully applied and recorded, or neither.
    - On the first failure the run stops; later files are not attempted and
      earlier files stay applied.
    - Running with nothing pending is a no-op.

Files without a numeric prefix are ignored (and logged).  Scripts are split
into single statements before execution because some drivers (sqlite3)
refuse multi-statement strings; quotes, comments and PostgreSQL dollar
quoting are respected by the splitter.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from funding_kernel.domain.clock import Clock, SystemClock
from funding_kernel.exceptions import MigrationFailedError
from funding_kernel.logging_config import get_logger
from funding_kernel.models.migration import SchemaMigration

logger = get_logger("services.migrations")

# Packaged migrations for the funding ledger schema
DEFAULT_MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "db" / "migrations"

MIGRATION_FILENAME = re.compile(r"^(\d+)_.+\.sql$")

_DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")


@dataclass(frozen=True)
class MigrationFile:
    version: int
    filename: str
    path: Path

    def read_sql(self) -> str:
        return self.path.read_text(encoding="utf-8")


@dataclass(frozen=True)
class MigrationStatus:
    """Executed and pending filenames, each in apply order."""

    executed: tuple[str, ...]
    pending: tuple[str, ...]

    @property
    def is_current(self) -> bool:
        return not self.pending


def parse_version(filename: str) -> int | None:
    """Numeric prefix of a migration filename, or None if it has none."""
    match = MIGRATION_FILENAME.match(filename)
    return int(match.group(1)) if match else None


def split_sql_statements(sql: str) -> list[str]:
    """
    Split a script into statements on top-level semicolons.

    Comments are dropped.  Semicolons inside quoted strings, quoted
    identifiers and dollar-quoted bodies do not split.
    """
    statements: list[str] = []
    buf: list[str] = []
    i = 0
    n = len(sql)

    while i < n:
        ch = sql[i]

        if sql.startswith("--", i):
            end = sql.find("\n", i)
            i = n if end == -1 else end
            continue

        if sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            i = n if end == -1 else end + 2
            buf.append(" ")
            continue

        if ch in ("'", '"'):
            j = i + 1
            while j < n:
                if sql[j] == ch:
                    if j + 1 < n and sql[j + 1] == ch:
                        j += 2
                        continue
                    break
                j += 1
            buf.append(sql[i : j + 1])
            i = j + 1
            continue

        if ch == "$":
            match = _DOLLAR_TAG.match(sql, i)
            if match:
                tag = match.group()
                end = sql.find(tag, match.end())
                end = n if end == -1 else end + len(tag)
                buf.append(sql[i:end])
                i = end
                continue

        if ch == ";":
            statement = "".join(buf).strip()
            if statement:
                statements.append(statement)
            buf = []
            i += 1
            continue

        buf.append(ch)
        i += 1

    statement = "".join(buf).strip()
    if statement:
        statements.append(statement)
    return statements


class MigrationRunner:
    """Applies pending migration files in version order."""

    def __init__(
        self,
        engine: Engine,
        migrations_dir: Path | str = DEFAULT_MIGRATIONS_DIR,
        clock: Clock | None = None,
    ):
        self._engine = engine
        self._dir = Path(migrations_dir)
        self._clock = clock or SystemClock()

    @property
    def migrations_dir(self) -> Path:
        return self._dir

    def discover(self) -> list[MigrationFile]:
        """Migration files sorted by version, then filename."""
        if not self._dir.is_dir():
            logger.warning("migrations_dir_missing", extra={"path": str(self._dir)})
            return []

        files = []
        for path in self._dir.iterdir():
            if not path.is_file() or path.suffix != ".sql":
                continue
            version = parse_version(path.name)
            if version is None:
                logger.warning("migration_file_ignored", extra={"migration_file": path.name})
                continue
            files.append(MigrationFile(version=version, filename=path.name, path=path))
        return sorted(files, key=lambda f: (f.version, f.filename))

    def ensure_version_table(self) -> None:
        SchemaMigration.__table__.create(self._engine, checkfirst=True)

    def executed(self) -> list[str]:
        self.ensure_version_table()
        with self._engine.connect() as conn:
            rows = conn.execute(
                select(SchemaMigration.filename).order_by(
                    SchemaMigration.version, SchemaMigration.filename
                )
            )
            return [row.filename for row in rows]

    def status(self) -> MigrationStatus:
        executed = self.executed()
        done = set(executed)
        pending = [f.filename for f in self.discover() if f.filename not in done]
        return MigrationStatus(executed=tuple(executed), pending=tuple(pending))

    def run(self) -> list[str]:
        """
        Apply every pending file.

        Returns:
            Filenames applied by this call, in order.

        Raises:
            MigrationFailedError: A file failed; it was rolled back and no
                later file was attempted.
        """
        done = set(self.executed())
        pending = [f for f in self.discover() if f.filename not in done]
        if not pending:
            logger.info("migrations_up_to_date", extra={"executed": len(done)})
            return []

        applied = []
        for migration in pending:
            self._apply(migration)
            applied.append(migration.filename)

        logger.info("migrations_completed", extra={"applied": applied})
        return applied

    def _apply(self, migration: MigrationFile) -> None:
        logger.info(
            "migration_started",
            extra={"migration_file": migration.filename, "version": migration.version},
        )
        try:
            statements = split_sql_statements(migration.read_sql())
            with self._engine.begin() as conn:
                for statement in statements:
                    conn.exec_driver_sql(statement)
                conn.execute(
                    insert(SchemaMigration).values(
                        filename=migration.filename,
                        version=migration.version,
                        executed_at=self._clock.now(),
                    )
                )
        except (SQLAlchemyError, OSError) as exc:
            logger.error(
                "migration_failed",
                extra={"migration_file": migration.filename, "reason": str(exc)},
            )
            raise MigrationFailedError(migration.filename, str(exc)) from exc

        logger.info(
            "migration_applied",
            extra={"migration_file": migration.filename, "statements": len(statements)},
        )
