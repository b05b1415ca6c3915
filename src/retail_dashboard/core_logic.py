"""Orchestration layer for the reporting dashboard.

This module turns request filters into queries and query rows into view
models. It consumes the data access layer for all database I/O, the snapshot
cache for inventory, and the aggregator for every derived number, so the web
and CLI front-ends stay thin.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from . import data_manager, log, queries
from .constants import (
    CLOSING_STORES,
    DATE_FORMAT,
    ConditionFilter,
)
from .data_manager import ReportRow
from .errors import InvalidFilterError
from .report_aggregator import (
    DailyReportSummary,
    GroupedReport,
    summarize_accumulated_report,
    summarize_daily_closing,
    summarize_daily_report,
)
from .snapshot_cache import InventorySnapshot, SnapshotCache


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, the data source and the inventory cache."""

    settings: data_manager.ConfigSettings
    data_source: data_manager.DataSource
    cache: SnapshotCache


@dataclass(frozen=True)
class DateRange:
    """Inclusive reporting period."""

    start: date
    end: date

    def as_params(self) -> Dict[str, date]:
        return {"start": self.start, "end": self.end}


@dataclass(frozen=True)
class DailyReportFilters:
    """Filters accepted by the daily sales report."""

    period: DateRange
    stores: tuple[str, ...] = ()
    advisors: tuple[int, ...] = ()
    condition: ConditionFilter = ConditionFilter.ANY


@dataclass(frozen=True)
class AccumulatedReportFilters:
    """Filters accepted by the accumulated per-advisor report."""

    period: DateRange
    branches: tuple[str, ...] = ()
    advisors: tuple[int, ...] = ()


@dataclass(frozen=True)
class ClosingFilters:
    """Filters accepted by the daily cash-closing report."""

    day: date
    stores: tuple[str, ...] = ()


@dataclass(frozen=True)
class DailyReportView:
    filters: DailyReportFilters
    store_options: List[ReportRow]
    advisor_options: List[ReportRow]
    rows: List[ReportRow]
    summary: DailyReportSummary


@dataclass(frozen=True)
class AccumulatedReportView:
    filters: AccumulatedReportFilters
    branch_options: List[ReportRow]
    advisor_options: List[ReportRow]
    rows: List[ReportRow]
    totals: Dict[str, Decimal]


@dataclass(frozen=True)
class DailyClosingView:
    filters: ClosingFilters
    report: GroupedReport
    store_options: tuple[tuple[str, str], ...] = field(default=CLOSING_STORES)


def _today() -> date:
    return datetime.now().date()


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and build the runtime collaborators.

    Resolves ``config.ini``, parses the settings, creates the database-backed
    :class:`~retail_dashboard.data_manager.DataSource` and the
    :class:`~retail_dashboard.snapshot_cache.SnapshotCache` pointing at the
    configured JSON file. No connection is opened here.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for the front-ends.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
        ValueError: When the configured schema name is not a plain identifier.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    queries.validate_schema(settings.schema)
    data_source = data_manager.DataSource.from_settings(settings)
    cache = SnapshotCache(settings.inventory_file)
    log.info("Loaded runtime context from '%s'", resolved_config)
    return RuntimeContext(settings=settings, data_source=data_source, cache=cache)


def parse_date(raw: Optional[str], *, name: str) -> Optional[date]:
    """Parse a ``YYYY-MM-DD`` request value; blank values mean "not given".

    Raises:
        InvalidFilterError: If ``raw`` is not blank and not a valid date.
    """

    if raw is None or not raw.strip():
        return None
    try:
        return datetime.strptime(raw.strip(), DATE_FORMAT).date()
    except ValueError as exc:
        raise InvalidFilterError(
            f"Invalid {name}: '{raw}' (expected YYYY-MM-DD)") from exc


def resolve_date_range(
    start_raw: Optional[str],
    end_raw: Optional[str],
    *,
    window_days: int,
    today: Optional[date] = None,
) -> DateRange:
    """Resolve the reporting period, defaulting to the trailing ``window_days``.

    A missing end date means today; a missing start date means ``window_days``
    before today.

    Raises:
        InvalidFilterError: If a date is malformed or the start falls after
            the end.
    """

    today = today or _today()
    start = parse_date(start_raw, name="start date") or today - timedelta(days=window_days)
    end = parse_date(end_raw, name="end date") or today
    if start > end:
        raise InvalidFilterError(
            f"Start date {start.isoformat()} is after end date {end.isoformat()}")
    return DateRange(start=start, end=end)


def normalize_selection(values: Optional[Iterable[str]]) -> tuple[str, ...]:
    """Strip multi-select values, dropping blanks and duplicates, keeping order."""

    seen: Dict[str, None] = {}
    for value in values or ():
        cleaned = (value or "").strip()
        if cleaned:
            seen.setdefault(cleaned, None)
    return tuple(seen)


def parse_advisor_codes(values: Optional[Iterable[str]]) -> tuple[int, ...]:
    """Convert advisor selector values into integer ``SlpCode`` values.

    Raises:
        InvalidFilterError: If a value is not an integer.
    """

    codes = []
    for value in normalize_selection(values):
        try:
            codes.append(int(value))
        except ValueError as exc:
            raise InvalidFilterError(f"Invalid advisor code: '{value}'") from exc
    return tuple(codes)


def parse_condition(raw: Optional[str]) -> ConditionFilter:
    """Map the ``cumpleCondicion`` value; anything but ``SI``/``NO`` means no filter."""

    try:
        return ConditionFilter((raw or "").strip().upper())
    except ValueError:
        return ConditionFilter.ANY


def resolve_daily_filters(
    context: RuntimeContext,
    *,
    start: Optional[str] = None,
    end: Optional[str] = None,
    stores: Optional[Sequence[str]] = None,
    advisors: Optional[Sequence[str]] = None,
    condition: Optional[str] = None,
    today: Optional[date] = None,
) -> DailyReportFilters:
    return DailyReportFilters(
        period=resolve_date_range(
            start, end, window_days=context.settings.daily_window_days, today=today),
        stores=normalize_selection(stores),
        advisors=parse_advisor_codes(advisors),
        condition=parse_condition(condition),
    )


def resolve_accumulated_filters(
    context: RuntimeContext,
    *,
    start: Optional[str] = None,
    end: Optional[str] = None,
    branches: Optional[Sequence[str]] = None,
    advisors: Optional[Sequence[str]] = None,
    today: Optional[date] = None,
) -> AccumulatedReportFilters:
    return AccumulatedReportFilters(
        period=resolve_date_range(
            start, end, window_days=context.settings.accumulated_window_days, today=today),
        branches=normalize_selection(branches),
        advisors=parse_advisor_codes(advisors),
    )


def resolve_closing_filters(
    *,
    day: Optional[str] = None,
    stores: Optional[Sequence[str]] = None,
    today: Optional[date] = None,
) -> ClosingFilters:
    return ClosingFilters(
        day=parse_date(day, name="date") or today or _today(),
        stores=normalize_selection(stores),
    )


def load_inventory(context: RuntimeContext) -> Optional[InventorySnapshot]:
    """Return the cached inventory snapshot without touching the database."""

    return context.cache.get()


def refresh_inventory(context: RuntimeContext) -> InventorySnapshot:
    """Reload inventory from the ERP and replace the cached snapshot.

    Raises:
        DataSourceConnectionError: If the database cannot be reached.
        QueryError: If the inventory query fails.
        PersistenceError: If the snapshot could not be written to disk; the
            new snapshot is nevertheless served from memory.
    """

    log.info("Loading inventory from the ERP (manual refresh)")
    statement = queries.inventory_query(
        context.settings.schema, limit=context.settings.inventory_limit)
    rows = context.data_source.fetch(statement)
    snapshot = context.cache.refresh(rows)
    log.info("Inventory refreshed: %d items", snapshot.item_count)
    return snapshot


def _selection_params(**selections: Sequence[Any]) -> Dict[str, List[Any]]:
    return {name: list(values) for name, values in selections.items() if values}


def build_daily_report(context: RuntimeContext, filters: DailyReportFilters) -> DailyReportView:
    """Run the daily sales report and compute its statistics.

    The selector options and the report rows are fetched over one connection.
    """

    schema = context.settings.schema
    source = context.data_source
    params: Dict[str, Any] = filters.period.as_params()
    params.update(_selection_params(stores=filters.stores, advisors=filters.advisors))
    if filters.condition is not ConditionFilter.ANY:
        params["condition"] = filters.condition.value

    statement = queries.daily_report_query(
        schema,
        stores=filters.stores,
        advisors=filters.advisors,
        condition=filters.condition,
    )
    with source.connect() as connection:
        store_options = source.fetch_rows(connection, queries.store_options_query(schema))
        advisor_options = source.fetch_rows(connection, queries.advisor_options_query(schema))
        rows = source.fetch_rows(connection, statement, params)

    log.info(
        "Daily report %s..%s: %d rows",
        filters.period.start.isoformat(),
        filters.period.end.isoformat(),
        len(rows),
    )
    return DailyReportView(
        filters=filters,
        store_options=store_options,
        advisor_options=advisor_options,
        rows=rows,
        summary=summarize_daily_report(rows),
    )


def build_accumulated_report(context: RuntimeContext, filters: AccumulatedReportFilters) -> AccumulatedReportView:
    """Run the accumulated per-advisor report and total its amount columns."""

    schema = context.settings.schema
    source = context.data_source
    params: Dict[str, Any] = filters.period.as_params()
    params.update(_selection_params(branches=filters.branches, advisors=filters.advisors))

    statement = queries.accumulated_report_query(
        schema, branches=filters.branches, advisors=filters.advisors)
    with source.connect() as connection:
        branch_options = source.fetch_rows(connection, queries.store_options_query(schema))
        advisor_options = source.fetch_rows(connection, queries.advisor_options_query(schema))
        rows = source.fetch_rows(connection, statement, params)

    log.info(
        "Accumulated report %s..%s: %d rows",
        filters.period.start.isoformat(),
        filters.period.end.isoformat(),
        len(rows),
    )
    return AccumulatedReportView(
        filters=filters,
        branch_options=branch_options,
        advisor_options=advisor_options,
        rows=rows,
        totals=summarize_accumulated_report(rows),
    )


def build_daily_closing(context: RuntimeContext, filters: ClosingFilters) -> DailyClosingView:
    """Run the cash-closing query for one day and group payments by means."""

    statement = queries.daily_closing_query(context.settings.schema)
    rows = context.data_source.fetch(statement, {"day": filters.day})
    report = summarize_daily_closing(rows, filters.stores)
    log.info(
        "Daily closing %s: %d payments in %d groups",
        filters.day.isoformat(),
        sum(len(group) for group in report.groups.values()),
        len(report.groups),
    )
    return DailyClosingView(filters=filters, report=report)
