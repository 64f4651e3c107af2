"""
Settings loader (``funding_config.settings``).

Responsibility
--------------
Builds the immutable ``LedgerSettings`` used to construct the runtime:
database connection and pool parameters, migrations directory, log level.

Sources, later wins
-------------------
1. Built-in defaults.
2. Optional YAML file (``config_file`` argument or ``FUNDING_CONFIG_FILE``).
3. Environment variables.

YAML layout (every key optional)::

    database:
      url: postgresql+psycopg2://ledger:secret@db:5432/funding
      host: db
      port: 5432
      name: funding
      user: ledger
      password: secret
      pool_size: 10
      max_overflow: 0
      connect_timeout: 2
      idle_timeout: 30
      echo: false
    migrations_dir: /srv/funding/migrations
    log_level: INFO

Failure modes
-------------
Every invalid or missing value is collected and reported at once in a
single ``ConfigurationError`` keyed by setting name.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError

from funding_kernel.exceptions import ConfigurationError

CONFIG_FILE_ENV = "FUNDING_CONFIG_FILE"

DEFAULT_DB_PORT = 5432
DEFAULT_POOL_SIZE = 10
DEFAULT_MAX_OVERFLOW = 0
DEFAULT_CONNECT_TIMEOUT = 2.0
DEFAULT_IDLE_TIMEOUT = 30
DEFAULT_LOG_LEVEL = "INFO"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}

# YAML path -> setting key (the environment variable name)
_YAML_KEYS = {
    ("database", "url"): "DATABASE_URL",
    ("database", "host"): "DB_HOST",
    ("database", "port"): "DB_PORT",
    ("database", "name"): "DB_NAME",
    ("database", "user"): "DB_USER",
    ("database", "password"): "DB_PASSWORD",
    ("database", "pool_size"): "DB_POOL_SIZE",
    ("database", "max_overflow"): "DB_MAX_OVERFLOW",
    ("database", "connect_timeout"): "DB_CONNECT_TIMEOUT",
    ("database", "idle_timeout"): "DB_IDLE_TIMEOUT",
    ("database", "echo"): "DB_ECHO",
    ("migrations_dir",): "MIGRATIONS_DIR",
    ("log_level",): "LOG_LEVEL",
}

SETTING_KEYS = tuple(_YAML_KEYS.values())


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection target and pool parameters."""

    url: str
    pool_size: int = DEFAULT_POOL_SIZE
    max_overflow: int = DEFAULT_MAX_OVERFLOW
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    idle_timeout: int = DEFAULT_IDLE_TIMEOUT
    echo: bool = False

    @property
    def dialect(self) -> str:
        return make_url(self.url).get_backend_name()

    def safe_url(self) -> str:
        """URL with the password masked, for logs."""
        return make_url(self.url).render_as_string(hide_password=True)


@dataclass(frozen=True)
class LedgerSettings:
    database: DatabaseSettings
    migrations_dir: Path | None = None
    log_level: str = DEFAULT_LOG_LEVEL


# =============================================================================
# Sources
# =============================================================================


def load_yaml_file(path: Path | str) -> dict[str, str]:
    """
    Read a settings file and flatten it to setting keys.

    Raises:
        ConfigurationError: missing file, invalid YAML, or a non-mapping
            document.
    """
    path = Path(path)
    try:
        with path.open(encoding="utf-8") as f:
            document = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigurationError({CONFIG_FILE_ENV: f"file not found: {path}"})
    except yaml.YAMLError as exc:
        raise ConfigurationError({CONFIG_FILE_ENV: f"invalid YAML in {path}: {exc}"})

    if not isinstance(document, dict):
        raise ConfigurationError({CONFIG_FILE_ENV: f"{path} must contain a mapping"})

    flat: dict[str, str] = {}
    for yaml_path, key in _YAML_KEYS.items():
        node: Any = document
        for part in yaml_path:
            node = node.get(part) if isinstance(node, dict) else None
        if node is not None:
            flat[key] = str(node).lower() if isinstance(node, bool) else str(node)
    return flat


def _from_environ(environ: Mapping[str, str]) -> dict[str, str]:
    return {key: environ[key] for key in SETTING_KEYS if key in environ}


# =============================================================================
# Parsing
# =============================================================================


def _parse_int(
    raw: dict[str, str], key: str, default: int, minimum: int, problems: dict[str, str]
) -> int:
    value = raw.get(key)
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except ValueError:
        problems[key] = f"must be an integer, got {value!r}"
        return default
    if parsed < minimum:
        problems[key] = f"must be >= {minimum}, got {parsed}"
    return parsed


def _parse_float(
    raw: dict[str, str], key: str, default: float, problems: dict[str, str]
) -> float:
    value = raw.get(key)
    if value is None or value == "":
        return default
    try:
        parsed = float(value)
    except ValueError:
        problems[key] = f"must be a number, got {value!r}"
        return default
    if parsed <= 0:
        problems[key] = f"must be positive, got {value}"
    return parsed


def _parse_bool(raw: dict[str, str], key: str, problems: dict[str, str]) -> bool:
    value = raw.get(key, "").strip().lower()
    if value in _TRUE:
        return True
    if value not in _FALSE:
        problems[key] = f"must be a boolean, got {raw[key]!r}"
    return False


def _database_url(raw: dict[str, str], problems: dict[str, str]) -> str:
    url = raw.get("DATABASE_URL")
    if url:
        try:
            make_url(url)
        except ArgumentError:
            problems["DATABASE_URL"] = "is not a valid database URL"
        return url

    name = raw.get("DB_NAME")
    if not name:
        problems["DATABASE_URL"] = "required (or DB_NAME with DB_HOST/DB_USER)"
        return ""

    port = _parse_int(raw, "DB_PORT", DEFAULT_DB_PORT, 1, problems)
    return URL.create(
        "postgresql+psycopg2",
        username=raw.get("DB_USER") or None,
        password=raw.get("DB_PASSWORD") or None,
        host=raw.get("DB_HOST") or "localhost",
        port=port,
        database=name,
    ).render_as_string(hide_password=False)


def parse_settings(raw: dict[str, str]) -> LedgerSettings:
    """Build LedgerSettings from flattened setting keys."""
    problems: dict[str, str] = {}

    database = DatabaseSettings(
        url=_database_url(raw, problems),
        pool_size=_parse_int(raw, "DB_POOL_SIZE", DEFAULT_POOL_SIZE, 1, problems),
        max_overflow=_parse_int(raw, "DB_MAX_OVERFLOW", DEFAULT_MAX_OVERFLOW, 0, problems),
        connect_timeout=_parse_float(
            raw, "DB_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT, problems
        ),
        idle_timeout=_parse_int(raw, "DB_IDLE_TIMEOUT", DEFAULT_IDLE_TIMEOUT, 1, problems),
        echo=_parse_bool(raw, "DB_ECHO", problems),
    )

    log_level = (raw.get("LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper()
    if log_level not in LOG_LEVELS:
        problems["LOG_LEVEL"] = f"must be one of {', '.join(LOG_LEVELS)}"

    migrations_dir = Path(raw["MIGRATIONS_DIR"]) if raw.get("MIGRATIONS_DIR") else None

    if problems:
        raise ConfigurationError(problems)

    return LedgerSettings(
        database=database,
        migrations_dir=migrations_dir,
        log_level=log_level,
    )


def load_settings(
    environ: Mapping[str, str] | None = None,
    config_file: Path | str | None = None,
) -> LedgerSettings:
    """
    Load settings from defaults, the optional YAML file, then the environment.

    Args:
        environ: Environment mapping; defaults to ``os.environ``.
        config_file: YAML file; defaults to ``$FUNDING_CONFIG_FILE`` if set.

    Raises:
        ConfigurationError: Naming every offending key.
    """
    environ = os.environ if environ is None else environ
    config_file = config_file or environ.get(CONFIG_FILE_ENV)

    raw: dict[str, str] = {}
    if config_file:
        raw.update(load_yaml_file(config_file))
    raw.update(_from_environ(environ))
    return parse_settings(raw)
