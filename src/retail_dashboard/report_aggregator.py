"""Row grouping and summation for the report pages.

Every function here is pure: rows come in already materialised, results go
out as new dictionaries. Numeric fields are coerced through
:func:`to_decimal` so that ``None``, blanks, and text never break a total.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Hashable, Iterable, List, Mapping, Sequence, Union

from .constants import ACCUMULATED_AMOUNT_COLUMNS, ClosingColumn, DailyColumn
from .data_manager import ReportRow


ZERO = Decimal("0")

KeySelector = Union[str, Callable[[ReportRow], Hashable]]


@dataclass(frozen=True)
class GroupedReport:
    """Rows partitioned by a key with per-group and overall totals."""

    groups: Dict[Hashable, List[ReportRow]]
    totals: Dict[Hashable, Decimal]
    grand_total: Decimal


@dataclass(frozen=True)
class DailyReportSummary:
    """Header statistics and footer totals of the daily sales report."""

    unique_customers: int
    average_discount: Decimal
    total_value: Decimal
    total_quantity: Decimal
    total_sale_value: Decimal
    total_order_value: Decimal


def to_decimal(value: Any) -> Decimal:
    """Coerce a report cell into :class:`~decimal.Decimal`.

    ``None``, booleans, unparsable text and non-finite numbers become zero.
    Floats go through ``str`` so that ``0.1`` stays ``Decimal("0.1")``.
    """

    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return ZERO
    return number if number.is_finite() else ZERO


def _key_function(key: KeySelector) -> Callable[[ReportRow], Hashable]:
    if callable(key):
        return key
    return lambda row: row.get(key)


def group_by(rows: Iterable[ReportRow], key: KeySelector) -> Dict[Hashable, List[ReportRow]]:
    """Partition ``rows`` by ``key`` preserving order.

    Args:
        rows (Iterable[ReportRow]): Rows to partition.
        key (str | Callable): Column name, or a function computing the key.

    Returns:
        dict: Groups in first-seen key order; rows inside each group keep
            their input order.
    """

    key_of = _key_function(key)
    groups: Dict[Hashable, List[ReportRow]] = {}
    for row in rows:
        groups.setdefault(key_of(row), []).append(row)
    return groups


def sum_field(rows: Iterable[ReportRow], field: str) -> Decimal:
    """Sum ``field`` across ``rows``; missing and non-numeric cells count as zero."""

    total = ZERO
    for row in rows:
        total += to_decimal(row.get(field))
    return total


def average_field(rows: Sequence[ReportRow], field: str) -> Decimal:
    """Mean of ``field`` across ``rows``, or zero for no rows."""

    if not rows:
        return ZERO
    return sum_field(rows, field) / len(rows)


def count_distinct(rows: Iterable[ReportRow], field: str) -> int:
    """Number of distinct non-null values of ``field``."""

    return len({row.get(field) for row in rows} - {None})


def compute_totals(groups: Mapping[Hashable, Sequence[ReportRow]], field: str) -> Dict[Hashable, Decimal]:
    """Per-group sum of ``field``, keyed and ordered like ``groups``."""

    return {key: sum_field(group, field) for key, group in groups.items()}


def grand_total(totals: Mapping[Hashable, Decimal]) -> Decimal:
    return sum(totals.values(), ZERO)


def build_grouped_report(rows: Iterable[ReportRow], key: KeySelector, field: str) -> GroupedReport:
    """Group ``rows`` by ``key`` and total ``field`` per group and overall."""

    groups = group_by(rows, key)
    totals = compute_totals(groups, field)
    return GroupedReport(groups=groups, totals=totals, grand_total=grand_total(totals))


def summarize_daily_report(rows: Sequence[ReportRow]) -> DailyReportSummary:
    """Compute the statistics shown above and below the daily report table."""

    total_sale_value = sum_field(rows, DailyColumn.SALE_VALUE.value)
    return DailyReportSummary(
        unique_customers=count_distinct(rows, DailyColumn.CUSTOMER.value),
        average_discount=average_field(rows, DailyColumn.DISCOUNT.value),
        total_value=total_sale_value,
        total_quantity=sum_field(rows, DailyColumn.QUANTITY.value),
        total_sale_value=total_sale_value,
        total_order_value=sum_field(rows, DailyColumn.ORDER_VALUE.value),
    )


def summarize_accumulated_report(rows: Sequence[ReportRow]) -> Dict[str, Decimal]:
    """Column totals of the accumulated report, keyed by column name."""

    return {column.value: sum_field(rows, column.value) for column in ACCUMULATED_AMOUNT_COLUMNS}


def filter_by_store(rows: Iterable[ReportRow], store_codes: Sequence[str]) -> List[ReportRow]:
    """Keep rows whose ``BeginStr`` is one of ``store_codes`` (all rows when empty)."""

    rows = list(rows)
    if not store_codes:
        return rows
    wanted = set(store_codes)
    return [row for row in rows if row.get(ClosingColumn.STORE_CODE.value) in wanted]


def summarize_daily_closing(rows: Iterable[ReportRow], store_codes: Sequence[str] = ()) -> GroupedReport:
    """Group the day's payments by payment means and total their amounts."""

    return build_grouped_report(
        filter_by_store(rows, store_codes),
        ClosingColumn.KIND.value,
        ClosingColumn.AMOUNT.value,
    )


__all__ = [
    "GroupedReport",
    "DailyReportSummary",
    "to_decimal",
    "group_by",
    "sum_field",
    "average_field",
    "count_distinct",
    "compute_totals",
    "grand_total",
    "build_grouped_report",
    "summarize_daily_report",
    "summarize_accumulated_report",
    "filter_by_store",
    "summarize_daily_closing",
]
