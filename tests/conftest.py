"""Shared pytest fixtures and utilities for the dashboard tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from retail_dashboard import cli, core_logic, data_manager, snapshot_cache  # noqa: E402
from retail_dashboard.snapshot_cache import SnapshotCache  # noqa: E402
from retail_dashboard.web import create_app  # noqa: E402

_CONFIG_TEMPLATE = (
    "[Database]\n"
    "Url = {url}\n"
    "Schema = {schema}\n"
    "ConnectTimeout = 5\n"
    "StatementTimeout = 10\n\n"
    "[Cache]\n"
    "InventoryFile = {inventory_file}\n\n"
    "[Server]\n"
    "Host = 0.0.0.0\n"
    "Port = 8080\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    database_path: Path
    inventory_file: Path


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., ConfigBundle]:
    """Provide a callable that writes ``config.ini`` bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = True,
        schema: str = "main",
        extra: str = "",
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        database_path = bundle_dir / "erp.db"
        inventory_file = bundle_dir / "inventario_cache.json"
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                url=f"sqlite:///{database_path}",
                schema=schema,
                inventory_file=inventory_file.name if make_relative else str(inventory_file),
            )
            + extra,
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            database_path=database_path,
            inventory_file=inventory_file,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def sqlite_source(tmp_path: Path) -> Iterator[data_manager.DataSource]:
    """DataSource over a file-backed SQLite database (each connection is new)."""

    engine = create_engine(f"sqlite:///{tmp_path / 'source.db'}", poolclass=NullPool)
    source = data_manager.DataSource(engine)
    try:
        yield source
    finally:
        source.dispose()


class FakeDataSource:
    """Stand-in for :class:`DataSource` that replays canned result sets.

    Each executed statement pops the next entry from ``responses``; an entry
    may be an exception instance, which is raised instead. Every execution is
    recorded in ``calls`` as ``(statement, params)``.
    """

    def __init__(self, responses: Optional[List[Any]] = None) -> None:
        self.responses: List[Any] = list(responses or [])
        self.calls: List[tuple[Any, Dict[str, Any]]] = []
        self.opened = 0
        self.closed = 0
        self.connect_error: Optional[Exception] = None

    @contextmanager
    def connect(self) -> Iterator[object]:
        if self.connect_error is not None:
            raise self.connect_error
        self.opened += 1
        try:
            yield object()
        finally:
            self.closed += 1

    def fetch_rows(self, connection: object, statement: Any, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        self.calls.append((statement, dict(params or {})))
        response = self.responses.pop(0) if self.responses else []
        if isinstance(response, Exception):
            raise response
        return [dict(row) for row in response]

    def fetch(self, statement: Any, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        with self.connect() as connection:
            return self.fetch_rows(connection, statement, params)


@pytest.fixture
def fake_source() -> FakeDataSource:
    return FakeDataSource()


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        database_url="sqlite://",
        schema="SBO_TEST",
        connect_timeout=5,
        statement_timeout=10,
        inventory_file=tmp_path / "inventario_cache.json",
    )


@pytest.fixture
def context(settings: data_manager.ConfigSettings, fake_source: FakeDataSource) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and a fake data source."""

    return core_logic.RuntimeContext(
        settings=settings,
        data_source=fake_source,
        cache=SnapshotCache(settings.inventory_file),
    )


@pytest.fixture
def app(context: core_logic.RuntimeContext):
    flask_app = create_app(context)
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def inventory_rows() -> List[Dict[str, Any]]:
    """Three flat rows: two warehouses for ``X001`` and one for ``X002``."""

    return [
        {
            "ItemCode": "X001", "ItemName": "Sofa Roma", "PrecioVenta": 899.9,
            "WhsCode": "01", "WhsName": "Bosque", "OnHand": 5, "IsCommited": 2,
            "DisponibleFinal": 3, "Transito_Total": 10, "Transito_Disponible": 4,
        },
        {
            "ItemCode": "X001", "ItemName": "Sofa Roma", "PrecioVenta": 899.9,
            "WhsCode": "02", "WhsName": "Tumbaco", "OnHand": 1, "IsCommited": 0,
            "DisponibleFinal": 1, "Transito_Total": 10, "Transito_Disponible": 4,
        },
        {
            "ItemCode": "X002", "ItemName": "Mesa Lima", "PrecioVenta": None,
            "WhsCode": "01", "WhsName": "Bosque", "OnHand": 7, "IsCommited": 7,
            "DisponibleFinal": 0, "Transito_Total": None, "Transito_Disponible": None,
        },
    ]


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``snapshot_cache.datetime`` so refreshes stamp a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime(datetime):
            @classmethod
            def now(cls, tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(snapshot_cache, "datetime", _FixedDateTime)
        return moment

    return _apply


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="dashboard-cli", description="Dashboard CLI")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
