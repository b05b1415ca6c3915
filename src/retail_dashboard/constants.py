"""Enumerations and fixed values shared across the dashboard modules.

Column names are the aliases produced by the report queries; keeping them in
one place lets the query catalogue, the aggregator, and the templates agree
on the same spelling.
"""

from __future__ import annotations

from enum import Enum


DEFAULT_DAILY_WINDOW_DAYS = 7
DEFAULT_ACCUMULATED_WINDOW_DAYS = 30
DEFAULT_INVENTORY_LIMIT = 1000
DATE_FORMAT = "%Y-%m-%d"


class ReportName(str, Enum):
    """Enumerate the report pages that can be rendered and exported."""

    DAILY = "reporte-diario"
    ACCUMULATED = "reporte-acumulado"
    DAILY_CLOSING = "cierre-diario"
    INVENTORY = "inventario"


class ConditionFilter(str, Enum):
    """Values accepted by the ``cumpleCondicion`` filter of the daily report."""

    ANY = ""
    MET = "SI"
    NOT_MET = "NO"


class DailyColumn(str, Enum):
    """Columns of the daily sales report."""

    STORE = "Tienda"
    KIND = "Tipo"
    CUSTOMER = "Nombre de cliente"
    ORDER_NUMBER = "N° pedido"
    ITEM_CODE = "Código del Producto"
    ITEM_DESCRIPTION = "Descripción Articulo"
    QUANTITY = "Cantidad"
    DISCOUNT = "% Descuento"
    SALE_VALUE = "Valor Venta"
    ORDER_VALUE = "Valor Pedido (Cabecera)"
    ADVISOR = "Asesor"
    PAYMENT_TYPE = "Tipo Pago"
    CONDITION = "CumpleCondicion"


class AccumulatedColumn(str, Enum):
    """Columns of the accumulated per-advisor report."""

    BRANCH = "SUCURSAL"
    ADVISOR = "Asesor"
    QUOTES = "VALOR OFERTAS"
    ORDERS = "Valor Pedidos (No Cancelados)"
    CONFIRMED_ORDERS = "Valor Pedidos Confirmados"
    INVOICED = "VALOR FACTURACIÓN"
    INVOICED_NET = "VALOR FACTURACIÓN - NOTAS DE CREDITO"
    CREDIT_NOTES = "VALOR NOTAS DE CREDITO"
    COLLECTED = "Cobro por Asesor"


class ClosingColumn(str, Enum):
    """Columns of the daily cash-closing report."""

    KIND = "Tipo"
    COLLECTION_GROUP = "GrupoCobro"
    SERIES_NAME = "SeriesName"
    STORE_CODE = "BeginStr"
    PAYMENT_NUMBER = "NumPago"
    INVOICE = "Fact"
    PAYMENT_DATE = "FechaPago"
    CUSTOMER = "CardName"
    AMOUNT = "Importe"
    BANK = "Banco"


ACCUMULATED_AMOUNT_COLUMNS: tuple[AccumulatedColumn, ...] = (
    AccumulatedColumn.QUOTES,
    AccumulatedColumn.ORDERS,
    AccumulatedColumn.CONFIRMED_ORDERS,
    AccumulatedColumn.INVOICED,
    AccumulatedColumn.INVOICED_NET,
    AccumulatedColumn.CREDIT_NOTES,
    AccumulatedColumn.COLLECTED,
)

# Series shown in the store selectors, in display order.
STORE_SERIES = ("BOSQUE", "TUMBACO", "IBARRA", "PLAZA", "CUENCA", "LOJA")

# Stores offered by the cash-closing page (series prefix -> display name).
CLOSING_STORES: tuple[tuple[str, str], ...] = (
    ("001", "Bosque"),
    ("002", "Tumbaco"),
    ("003", "Ibarra"),
    ("004", "Plaza"),
    ("005", "Cuenca"),
    ("006", "Loja"),
)

# Advisor names containing these markers are internal accounts.
EXCLUDED_ADVISOR_MARKERS = ("AUTOCONSUMO", "LIQUIDACION")


__all__ = [
    "DEFAULT_DAILY_WINDOW_DAYS",
    "DEFAULT_ACCUMULATED_WINDOW_DAYS",
    "DEFAULT_INVENTORY_LIMIT",
    "DATE_FORMAT",
    "ReportName",
    "ConditionFilter",
    "DailyColumn",
    "AccumulatedColumn",
    "ClosingColumn",
    "ACCUMULATED_AMOUNT_COLUMNS",
    "STORE_SERIES",
    "CLOSING_STORES",
    "EXCLUDED_ADVISOR_MARKERS",
]
