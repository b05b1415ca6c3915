"""Excel downloads of the report tables.

Each report is written to a single worksheet: a bold header row followed by
the rows exactly as the page shows them, then a totals row. Workbooks are
built in memory and returned as ``BytesIO`` buffers ready for
``flask.send_file`` or for writing to disk.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from io import BytesIO
from typing import Any, Iterable, Mapping, Optional, Sequence

import openpyxl
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font
from openpyxl.worksheet.worksheet import Worksheet

from .constants import (
    ACCUMULATED_AMOUNT_COLUMNS,
    AccumulatedColumn,
    ClosingColumn,
    DailyColumn,
    ReportName,
)
from .core_logic import AccumulatedReportView, DailyClosingView, DailyReportView
from .snapshot_cache import InventorySnapshot


XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

INVENTORY_COLUMNS = (
    "ItemCode",
    "ItemName",
    "PrecioVenta",
    "WhsCode",
    "WhsName",
    "OnHand",
    "IsCommited",
    "DisponibleFinal",
    "Transito_Total",
    "Transito_Disponible",
)

SHEET_TITLES = {
    ReportName.DAILY: "Reporte Diario",
    ReportName.ACCUMULATED: "Reporte Acumulado",
    ReportName.DAILY_CLOSING: "Cierre Diario",
    ReportName.INVENTORY: "Inventario",
}

_BOLD = Font(bold=True)


def export_filename(report: ReportName, day: date) -> str:
    return f"{report.value}_{day.isoformat()}.xlsx"


def _cell_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, Decimal, date)):
        if isinstance(value, datetime) and value.tzinfo is not None:
            # Excel has no notion of time zones.
            return value.replace(tzinfo=None)
        return value
    return ILLEGAL_CHARACTERS_RE.sub("", str(value))


def _write_header(ws: Worksheet, columns: Sequence[str]) -> None:
    for col_idx, column_name in enumerate(columns, 1):
        cell = ws.cell(row=1, column=col_idx)
        cell.value = column_name
        cell.font = _BOLD


def _append_bold(ws: Worksheet, values: Sequence[Any]) -> None:
    ws.append([_cell_value(value) for value in values])
    for cell in ws[ws.max_row]:
        cell.font = _BOLD


def _new_sheet(report: ReportName, columns: Sequence[str]) -> tuple[openpyxl.Workbook, Worksheet]:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = SHEET_TITLES[report]
    _write_header(ws, columns)
    return wb, ws


def _append_rows(ws: Worksheet, rows: Iterable[Mapping[str, Any]], columns: Sequence[str]) -> None:
    for row in rows:
        ws.append([_cell_value(row.get(column)) for column in columns])


def workbook_to_buffer(wb: openpyxl.Workbook) -> BytesIO:
    buffer = BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    return buffer


def export_daily_report(view: DailyReportView) -> BytesIO:
    """Write the daily sales report with its quantity and value totals."""

    columns = [column.value for column in DailyColumn]
    wb, ws = _new_sheet(ReportName.DAILY, columns)
    _append_rows(ws, view.rows, columns)

    totals = {
        DailyColumn.STORE.value: "TOTAL",
        DailyColumn.QUANTITY.value: view.summary.total_quantity,
        DailyColumn.SALE_VALUE.value: view.summary.total_sale_value,
        DailyColumn.ORDER_VALUE.value: view.summary.total_order_value,
    }
    _append_bold(ws, [totals.get(column) for column in columns])
    return workbook_to_buffer(wb)


def export_accumulated_report(view: AccumulatedReportView) -> BytesIO:
    """Write the accumulated report with one totals row over the amount columns."""

    columns = [column.value for column in AccumulatedColumn]
    wb, ws = _new_sheet(ReportName.ACCUMULATED, columns)
    _append_rows(ws, view.rows, columns)

    totals = {AccumulatedColumn.BRANCH.value: "TOTAL"}
    totals.update({column.value: view.totals[column.value] for column in ACCUMULATED_AMOUNT_COLUMNS})
    _append_bold(ws, [totals.get(column) for column in columns])
    return workbook_to_buffer(wb)


def export_daily_closing(view: DailyClosingView) -> BytesIO:
    """Write the closing grouped by payment means.

    Every group is followed by a bold subtotal row and the sheet ends with the
    grand total, mirroring the layout of the closing page.
    """

    columns = [column.value for column in ClosingColumn]
    wb, ws = _new_sheet(ReportName.DAILY_CLOSING, columns)
    amount_index = columns.index(ClosingColumn.AMOUNT.value)

    def summary_row(label: str, amount: Decimal) -> list[Any]:
        values: list[Any] = [None] * len(columns)
        values[0] = label
        values[amount_index] = amount
        return values

    report = view.report
    for kind, rows in report.groups.items():
        _append_rows(ws, rows, columns)
        _append_bold(ws, summary_row(f"Total {kind}", report.totals[kind]))
    _append_bold(ws, summary_row("TOTAL GENERAL", report.grand_total))
    return workbook_to_buffer(wb)


def export_inventory(snapshot: InventorySnapshot) -> BytesIO:
    """Write the cached inventory flattened back to one row per item and warehouse."""

    wb, ws = _new_sheet(ReportName.INVENTORY, INVENTORY_COLUMNS)
    for item in snapshot.items:
        item_cells = [item.item_code, item.item_name, item.list_price]
        transit_cells = [item.transit_total, item.transit_available]
        stocks = item.warehouse_stocks or (None,)
        for stock in stocks:
            if stock is None:
                warehouse_cells: list[Optional[Any]] = [None] * 5
            else:
                warehouse_cells = [
                    stock.warehouse_code,
                    stock.warehouse_name,
                    stock.on_hand,
                    stock.committed,
                    stock.available,
                ]
            ws.append([_cell_value(value) for value in (*item_cells, *warehouse_cells, *transit_cells)])
    return workbook_to_buffer(wb)


__all__ = [
    "XLSX_MIMETYPE",
    "export_filename",
    "export_daily_report",
    "export_accumulated_report",
    "export_daily_closing",
    "export_inventory",
    "workbook_to_buffer",
]
