"""Data access layer for the reporting dashboard.

This module provides low-level helpers that read configuration and run
queries against the ERP database. Business logic belongs elsewhere.

The public API is designed around two responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Query execution: acquiring one connection per unit of work, running
   parameterized statements, and handing rows back as plain mappings.
"""


from __future__ import annotations

import configparser
import os
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool
from sqlalchemy.sql.elements import TextClause

from . import log
from .constants import (
    DEFAULT_ACCUMULATED_WINDOW_DAYS,
    DEFAULT_DAILY_WINDOW_DAYS,
    DEFAULT_INVENTORY_LIMIT,
)
from .errors import DataSourceConnectionError, QueryError


CONFIG_FILE_NAME = "config.ini"
PASSWORD_ENV_VAR = "DASHBOARD_DB_PASSWORD"

Scalar = Union[Decimal, int, float, str, date, datetime, None]
ReportRow = Mapping[str, Scalar]


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    database_url: str
    schema: str
    connect_timeout: int
    statement_timeout: int
    inventory_file: Path
    host: str = "127.0.0.1"
    port: int = 3001
    daily_window_days: int = DEFAULT_DAILY_WINDOW_DAYS
    accumulated_window_days: int = DEFAULT_ACCUMULATED_WINDOW_DAYS
    inventory_limit: int = DEFAULT_INVENTORY_LIMIT


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the dashboard behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no ``CONFIG_FILE_NAME`` exists in the working
            directory or any of its parents.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser(interpolation=None)
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[Database] Url``, ``[Database] Schema`` and ``[Cache] InventoryFile`` are
    mandatory; everything else falls back to the package defaults. A relative
    ``InventoryFile`` is anchored at ``base_path`` (or the working directory)
    and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to anchor relative paths.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If a numeric option cannot be parsed.
    """

    try:
        database_url = parser.get("Database", "Url")
        schema = parser.get("Database", "Schema")
        inventory_raw = parser.get("Cache", "InventoryFile")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    inventory_file = Path(inventory_raw).expanduser()
    if not inventory_file.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        inventory_file = (base_path / inventory_file).resolve()

    return ConfigSettings(
        database_url=database_url,
        schema=schema,
        connect_timeout=parser.getint("Database", "ConnectTimeout", fallback=120),
        statement_timeout=parser.getint("Database", "StatementTimeout", fallback=120),
        inventory_file=inventory_file,
        host=parser.get("Server", "Host", fallback="127.0.0.1"),
        port=parser.getint("Server", "Port", fallback=3001),
        daily_window_days=parser.getint(
            "Reports", "DailyWindowDays", fallback=DEFAULT_DAILY_WINDOW_DAYS),
        accumulated_window_days=parser.getint(
            "Reports", "AccumulatedWindowDays", fallback=DEFAULT_ACCUMULATED_WINDOW_DAYS),
        inventory_limit=parser.getint(
            "Reports", "InventoryLimit", fallback=DEFAULT_INVENTORY_LIMIT),
    )


def build_connect_args(database_url: str, *, connect_timeout: int, statement_timeout: int) -> Dict[str, Any]:
    """Translate the configured timeouts into driver specific connect arguments.

    HANA (``hdbcli``) expects milliseconds, SQLite takes a lock timeout in
    seconds, and other drivers receive nothing.
    """

    backend = make_url(database_url).get_backend_name()
    if backend == "hana":
        return {
            "connectTimeout": connect_timeout * 1000,
            "communicationTimeout": statement_timeout * 1000,
        }
    if backend == "sqlite":
        return {"timeout": connect_timeout}
    return {}


def create_database_engine(settings: ConfigSettings) -> Engine:
    """Create the SQLAlchemy engine for the configured ERP database.

    Pooling is disabled so that every unit of work opens its own connection
    and closes it when done. The password may be kept out of ``config.ini``
    and supplied through ``DASHBOARD_DB_PASSWORD``.
    """

    url = make_url(settings.database_url)
    password = os.environ.get(PASSWORD_ENV_VAR)
    if password and url.password is None:
        url = url.set(password=password)

    connect_args = build_connect_args(
        settings.database_url,
        connect_timeout=settings.connect_timeout,
        statement_timeout=settings.statement_timeout,
    )
    log.info("Creating database engine for backend '%s'", url.get_backend_name())
    return create_engine(url, poolclass=NullPool, connect_args=connect_args)


class DataSource:
    """Run report queries against the ERP database.

    Each call to :meth:`connect` checks out a dedicated connection that is
    released when the ``with`` block exits, whether the queries inside it
    succeeded or not. Driver failures are translated into
    :class:`DataSourceConnectionError` and :class:`QueryError`.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @classmethod
    def from_settings(cls, settings: ConfigSettings) -> "DataSource":
        return cls(create_database_engine(settings))

    @property
    def engine(self) -> Engine:
        return self._engine

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        """Yield a live connection and close it on every exit path."""

        try:
            connection = self._engine.connect()
        except SQLAlchemyError as exc:
            log.error("Unable to connect to the ERP database: %s", exc)
            raise DataSourceConnectionError(
                f"Unable to connect to the ERP database: {exc}") from exc
        try:
            yield connection
        finally:
            connection.close()

    def fetch_rows(
        self,
        connection: Connection,
        statement: TextClause,
        params: Optional[Mapping[str, Any]] = None,
    ) -> List[Dict[str, Scalar]]:
        """Execute ``statement`` on ``connection`` and return its rows in order.

        Args:
            connection (Connection): Connection obtained from :meth:`connect`.
            statement (TextClause): Parameterized query from :mod:`queries`.
            params (Mapping[str, Any] | None): Values for the bound parameters.

        Returns:
            list[dict[str, Scalar]]: One plain dictionary per result row, keyed
                by column label.

        Raises:
            QueryError: If the database rejects or fails the statement.
        """

        try:
            result = connection.execute(statement, dict(params or {}))
            rows = [dict(row) for row in result.mappings()]
        except SQLAlchemyError as exc:
            log.error("Query failed: %s", exc)
            raise QueryError(f"Query failed: {exc}") from exc
        log.debug("Query returned %d rows", len(rows))
        return rows

    def fetch(self, statement: TextClause, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Scalar]]:
        """Run a single statement inside its own connection."""

        with self.connect() as connection:
            return self.fetch_rows(connection, statement, params)

    def dispose(self) -> None:
        self._engine.dispose()
