"""Tests for the openpyxl report exports."""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal

import openpyxl
import pytest

from retail_dashboard import core_logic, exporters
from retail_dashboard.constants import AccumulatedColumn, DailyColumn, ReportName
from retail_dashboard.report_aggregator import (
    summarize_accumulated_report,
    summarize_daily_closing,
    summarize_daily_report,
)
from retail_dashboard.snapshot_cache import InventorySnapshot, fold_inventory_rows


PERIOD = core_logic.DateRange(start=date(2024, 5, 1), end=date(2024, 5, 7))


def _sheet(buffer):
    workbook = openpyxl.load_workbook(buffer)
    assert len(workbook.sheetnames) == 1
    return workbook.active


def _values(ws):
    return [list(row) for row in ws.iter_rows(values_only=True)]


def test_export_filename():
    assert exporters.export_filename(ReportName.DAILY_CLOSING, date(2024, 5, 9)) == "cierre-diario_2024-05-09.xlsx"


def test_export_daily_report_has_bold_header_and_totals():
    rows = [
        {"Tienda": "BOSQUE", "Nombre de cliente": "Ana", "Cantidad": 2, "Valor Venta": Decimal("100.50"),
         "Valor Pedido (Cabecera)": Decimal("100.50"), "CumpleCondicion": "SI"},
        {"Tienda": "LOJA", "Nombre de cliente": "Luis\x07", "Cantidad": 1, "Valor Venta": 20,
         "Valor Pedido (Cabecera)": 20, "CumpleCondicion": "NO"},
    ]
    view = core_logic.DailyReportView(
        filters=core_logic.DailyReportFilters(period=PERIOD),
        store_options=[],
        advisor_options=[],
        rows=rows,
        summary=summarize_daily_report(rows),
    )

    ws = _sheet(exporters.export_daily_report(view))
    values = _values(ws)

    assert ws.title == "Reporte Diario"
    assert values[0] == [column.value for column in DailyColumn]
    assert all(cell.font.bold for cell in ws[1])
    assert len(values) == 4
    assert values[2][2] == "Luis"
    totals = dict(zip(values[0], values[3]))
    assert totals["Tienda"] == "TOTAL"
    assert totals["Cantidad"] == 3
    assert totals["Valor Venta"] == pytest.approx(120.5)
    assert ws.cell(row=4, column=1).font.bold


def test_export_accumulated_report_totals_row():
    rows = [
        {"SUCURSAL": "BOSQUE", "Asesor": "Ana", "VALOR OFERTAS": 10},
        {"SUCURSAL": "LOJA", "Asesor": "Luis", "VALOR OFERTAS": 5},
    ]
    view = core_logic.AccumulatedReportView(
        filters=core_logic.AccumulatedReportFilters(period=PERIOD),
        branch_options=[],
        advisor_options=[],
        rows=rows,
        totals=summarize_accumulated_report(rows),
    )

    values = _values(_sheet(exporters.export_accumulated_report(view)))

    assert values[0] == [column.value for column in AccumulatedColumn]
    last = dict(zip(values[0], values[-1]))
    assert last["SUCURSAL"] == "TOTAL"
    assert last["VALOR OFERTAS"] == 15
    assert last["Cobro por Asesor"] == 0


def test_export_daily_closing_adds_subtotals():
    rows = [
        {"Tipo": "EFECTIVO", "NumPago": 1, "Importe": Decimal("10"), "FechaPago": date(2024, 5, 9)},
        {"Tipo": "CHEQUE", "NumPago": 2, "Importe": Decimal("4"), "FechaPago": date(2024, 5, 9)},
        {"Tipo": "EFECTIVO", "NumPago": 3, "Importe": Decimal("6"), "FechaPago": date(2024, 5, 9)},
    ]
    view = core_logic.DailyClosingView(
        filters=core_logic.ClosingFilters(day=date(2024, 5, 9)),
        report=summarize_daily_closing(rows),
    )

    ws = _sheet(exporters.export_daily_closing(view))
    values = _values(ws)
    labels = [row[0] for row in values]

    assert ws.title == "Cierre Diario"
    assert labels == ["Tipo", "EFECTIVO", "EFECTIVO", "Total EFECTIVO", "CHEQUE", "Total CHEQUE", "TOTAL GENERAL"]
    importe = values[0].index("Importe")
    assert values[3][importe] == 16
    assert values[-1][importe] == 20
    assert isinstance(values[1][values[0].index("FechaPago")], datetime)


def test_export_inventory_flattens_warehouses(inventory_rows):
    snapshot = InventorySnapshot(
        items=tuple(fold_inventory_rows(inventory_rows)),
        captured_at=datetime(2024, 5, 9, 8, 0, tzinfo=UTC),
    )

    values = _values(_sheet(exporters.export_inventory(snapshot)))

    assert values[0] == list(exporters.INVENTORY_COLUMNS)
    assert [row[0] for row in values[1:]] == ["X001", "X001", "X002"]
    assert [row[3] for row in values[1:]] == ["01", "02", "01"]
    assert values[3][2] is None
