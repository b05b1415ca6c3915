"""SQL catalogue for the report pages.

Every statement is a SQLAlchemy :func:`~sqlalchemy.text` clause. Request
values always travel as bound parameters; multi-select filters use expanding
parameters so ``IN`` lists never contain interpolated user input. Only the
schema name, which comes from ``config.ini``, is formatted into the text, and
it is validated first.

The ``CumpleCondicion`` eligibility rule is ERP policy; it lives here and
nowhere else.
"""

from __future__ import annotations

import re
from typing import Sequence

from sqlalchemy import bindparam, text
from sqlalchemy.sql.elements import TextClause

from .constants import EXCLUDED_ADVISOR_MARKERS, STORE_SERIES, ConditionFilter


_SCHEMA_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_schema(schema: str) -> str:
    """Return ``schema`` unchanged if it is a plain identifier."""

    if not _SCHEMA_PATTERN.match(schema or ""):
        raise ValueError(f"Invalid schema name: {schema!r}")
    return schema


def _order_receipts(schema: str) -> str:
    return (
        f'SELECT COUNT(*) FROM "{schema}"."ORCT" '
        'WHERE CAST("U_HV_NroOrden" AS NVARCHAR(15)) = CAST(ORDR."DocNum" AS NVARCHAR(15))'
    )


def _order_receipt_ratio(schema: str) -> str:
    return (
        'SELECT COALESCE(SUM("DocTotal"), 0) / NULLIF(ORDR."DocTotal", 0) * 100 '
        f'FROM "{schema}"."ORCT" '
        'WHERE CAST("U_HV_NroOrden" AS NVARCHAR(15)) = CAST(ORDR."DocNum" AS NVARCHAR(15))'
    )


def _invoice_paid_ratio(schema: str) -> str:
    return (
        'SELECT COALESCE(SUM(OINV."PaidToDate") / SUM(OINV."DocTotal"), 0) * 100 '
        f'FROM "{schema}"."OINV" OINV '
        f'INNER JOIN "{schema}"."INV1" ON OINV."DocEntry" = INV1."DocEntry" '
        'WHERE INV1."BaseEntry" = ORDR."DocEntry" '
        'AND INV1."BaseType" = 17 '
        "AND OINV.\"CANCELED\" = 'N'"
    )


def eligibility_case(schema: str, *, met: str, not_met: str) -> str:
    """Build the ``CASE`` expression deciding whether an order meets policy.

    ``met`` and ``not_met`` are the SQL expressions returned by the branches,
    e.g. ``'SI'``/``'NO'`` for the daily report or ``ORDR."DocTotal"``/``0``
    for the accumulated report.
    """

    receipts = _order_receipts(schema)
    receipt_ratio = _order_receipt_ratio(schema)
    paid_ratio = _invoice_paid_ratio(schema)
    return f"""
        CASE
            WHEN (ORDR."U_HV_NecesCred" IN ('SI', 'Y', '1', '01'))
                 AND (ORDR."U_HV_CredApro" IN ('1', '01')) THEN {met}
            WHEN ORDR."DocStatus" = 'C' THEN {met}
            WHEN ({receipts}) > 0
                 AND ORDR."U_HV_CredApro" IN ('1', '01')
                 AND ORDR."U_HV_TipoPago" IN ('3','5','6','7','8','9')
                 AND ({receipt_ratio}) >= 30
                 AND ORDR."DocTotal" > 0 THEN {met}
            WHEN COALESCE(ORDR."U_HV_CredApro", '') = 'NA'
                 AND ORDR."U_HV_CredApro" NOT IN ('1', '01')
                 AND ({receipts}) = 0
                 AND ORDR."DocTotal" > 0
                 AND ({paid_ratio}) >= 30 THEN {met}
            WHEN COALESCE(ORDR."U_HV_Autoriza", 'NO') = 'NO'
                 AND ({receipts}) > 0
                 AND ({receipt_ratio}) >= 30
                 AND ORDR."DocTotal" > 0 THEN {met}
            WHEN COALESCE(ORDR."U_HV_Autoriza", 'NO') = 'NO'
                 AND ORDR."U_HV_CredApro" IN ('1', '01')
                 AND ORDR."U_HV_TipoPago" IN ('3','5','6','7','8','9')
                 AND ORDR."DocTotal" > 0 THEN {met}
            WHEN COALESCE(ORDR."U_HV_Autoriza", 'NO') = 'NO'
                 AND ({receipts}) = 0
                 AND ORDR."DocTotal" > 0
                 AND ({paid_ratio}) >= 50 THEN {met}
            WHEN ORDR."U_HV_Autoriza" = 'SI' THEN {met}
            ELSE {not_met}
        END"""


_ACTIVE_ADVISOR = " AND ".join(
    [f"""SLP."SlpName" NOT LIKE '%{marker}%'""" for marker in EXCLUDED_ADVISOR_MARKERS]
    + ["""SLP."Active" = 'Y'"""]
)


def inventory_query(schema: str, *, limit: int) -> TextClause:
    """Stock per item and warehouse, plus in-transit totals per item.

    Produces one row per item × warehouse with the columns folded by the
    snapshot cache.
    """

    schema = validate_schema(schema)
    return text(f"""
        SELECT
          T0."ItemCode",
          T1."ItemName",
          (SELECT "Price" FROM "{schema}"."ITM1"
            WHERE "ItemCode" = T1."ItemCode" AND "PriceList" = 1) AS "PrecioVenta",
          T0."WhsCode",
          T2."WhsName",
          T0."OnHand",
          T0."IsCommited",
          (T0."OnHand" - IFNULL(T0."IsCommited", 0)) AS "DisponibleFinal",
          Transito."Transito_Total",
          Transito."Transito_Disponible"
        FROM "{schema}"."DISPONIBLE_LOCAL_BODEGA_STOCK_V1"('', '') T0
        JOIN "{schema}"."OITM" T1 ON T0."ItemCode" = T1."ItemCode"
        JOIN "{schema}"."OWHS" T2 ON T0."WhsCode" = T2."WhsCode"
        LEFT JOIN (
          SELECT "Articulo",
                 SUM("Cantidad") AS "Transito_Total",
                 SUM("Disponible") AS "Transito_Disponible"
          FROM "{schema}"."DISPONIBLE_IMPORTADO_LOTES"()
          GROUP BY "Articulo"
        ) Transito ON T0."ItemCode" = Transito."Articulo"
        WHERE (T0."OnHand" - IFNULL(T0."IsCommited", 0)) >= 0
           OR IFNULL(Transito."Transito_Disponible", 0) > 0
        ORDER BY T1."ItemName"
        LIMIT :limit
    """).bindparams(limit=int(limit))


def store_options_query(schema: str) -> TextClause:
    """Sales-order series offered in the store selectors, in display order."""

    schema = validate_schema(schema)
    ordering = "\n".join(
        f"              WHEN '{name}' THEN {position}"
        for position, name in enumerate(STORE_SERIES, start=1)
    )
    return text(f"""
        SELECT DISTINCT NNM1."BeginStr", NNM1."SeriesName"
        FROM "{schema}"."NNM1"
        WHERE NNM1."ObjectCode" = '17'
          AND NNM1."SeriesName" IN :series
        ORDER BY
            CASE NNM1."SeriesName"
{ordering}
              ELSE 99
            END
    """).bindparams(bindparam("series", value=list(STORE_SERIES), expanding=True))


def advisor_options_query(schema: str) -> TextClause:
    """Active sales advisors, excluding internal consumption accounts."""

    schema = validate_schema(schema)
    return text(f"""
        SELECT DISTINCT SLP."SlpCode", SLP."SlpName"
        FROM "{schema}"."OSLP" SLP
        WHERE {_ACTIVE_ADVISOR}
        ORDER BY SLP."SlpName"
    """)


def daily_report_query(
    schema: str,
    *,
    stores: Sequence[str] = (),
    advisors: Sequence[int] = (),
    condition: ConditionFilter = ConditionFilter.ANY,
) -> TextClause:
    """Order lines of the period plus one credit-note adjustment per advisor.

    Bound parameters: ``start`` and ``end`` (dates), ``stores`` and
    ``advisors`` when the corresponding filter is non-empty, ``condition``
    when a ``CumpleCondicion`` value is selected.
    """

    schema = validate_schema(schema)
    eligibility = eligibility_case(schema, met="'SI'", not_met="'NO'")
    filters = ""
    credit_filters = ""
    params = []
    if stores:
        filters += ' AND NNM1."BeginStr" IN :stores'
        credit_filters += ' AND NNM1."BeginStr" IN :stores'
        params.append(bindparam("stores", expanding=True))
    if advisors:
        filters += ' AND ORDR."SlpCode" IN :advisors'
        params.append(bindparam("advisors", expanding=True))
    if condition is not ConditionFilter.ANY:
        filters += f" AND ({eligibility}) = :condition"

    statement = text(f"""
        SELECT
          NNM1."SeriesName" AS "Tienda",
          'Pedido' AS "Tipo",
          ORDR."CardName" AS "Nombre de cliente",
          CAST(ORDR."DocNum" AS INTEGER) AS "N° pedido",
          RDR1."ItemCode" AS "Código del Producto",
          RDR1."Dscription" AS "Descripción Articulo",
          RDR1."Quantity" AS "Cantidad",
          RDR1."DiscPrcnt" AS "% Descuento",
          RDR1."LineTotal" AS "Valor Venta",
          ORDR."DocTotal" AS "Valor Pedido (Cabecera)",
          SLP."SlpName" AS "Asesor",
          CASE ORDR."U_HV_TipoPago"
              WHEN '1' THEN 'Contado'
              WHEN '2' THEN 'Debito'
              WHEN '3' THEN 'Credito'
              WHEN '4' THEN 'Corriente'
              WHEN '5' THEN 'Planes con Int'
              WHEN '6' THEN '3 meses sin Int'
              WHEN '7' THEN '6 meses sin Int'
              WHEN '8' THEN '9 meses sin Int'
              WHEN '9' THEN '12 meses sin Int'
              WHEN '10' THEN 'Tarjeta de Regalo'
              ELSE 'Otros'
          END AS "Tipo Pago",
          {eligibility} AS "CumpleCondicion"
        FROM "{schema}"."ORDR"
        INNER JOIN "{schema}"."RDR1" ON ORDR."DocEntry" = RDR1."DocEntry"
        INNER JOIN "{schema}"."OSLP" SLP ON ORDR."SlpCode" = SLP."SlpCode"
        INNER JOIN "{schema}"."NNM1" NNM1
                ON ORDR."Series" = NNM1."Series" AND NNM1."ObjectCode" = '17'
        WHERE ORDR."CANCELED" = 'N'
          AND ORDR."DocDate" BETWEEN :start AND :end
          AND {_ACTIVE_ADVISOR}
          {filters}
        UNION ALL
        SELECT
          NNM1."SeriesName" AS "Tienda",
          'Ajuste_NC' AS "Tipo",
          SLP."SlpName" AS "Nombre de cliente",
          0 AS "N° pedido",
          '' AS "Código del Producto",
          'AJUSTE POR DEVOLUCIONES REALIZADAS EN EL PERIODO' AS "Descripción Articulo",
          0 AS "Cantidad",
          0 AS "% Descuento",
          -SUM(ORIN."DocTotal") AS "Valor Venta",
          NULL AS "Valor Pedido (Cabecera)",
          SLP."SlpName" AS "Asesor",
          'N/A' AS "Tipo Pago",
          'SI' AS "CumpleCondicion"
        FROM "{schema}"."ORIN" ORIN
        INNER JOIN "{schema}"."OSLP" SLP ON ORIN."SlpCode" = SLP."SlpCode"
        INNER JOIN "{schema}"."NNM1" NNM1
                ON ORIN."Series" = NNM1."Series" AND NNM1."ObjectCode" = '14'
        WHERE ORIN."CANCELED" = 'N'
          AND ORIN."DocDate" BETWEEN :start AND :end
          AND {_ACTIVE_ADVISOR}
          {credit_filters}
        GROUP BY SLP."SlpName", NNM1."SeriesName"
        ORDER BY "Tienda", "Asesor", "Tipo", "N° pedido"
    """)
    return statement.bindparams(*params) if params else statement


def accumulated_report_query(
    schema: str,
    *,
    branches: Sequence[str] = (),
    advisors: Sequence[int] = (),
) -> TextClause:
    """Per-branch, per-advisor totals for quotes, orders, invoicing and collections.

    Bound parameters: ``start``, ``end``, and ``branches``/``advisors`` when
    those filters are non-empty.
    """

    schema = validate_schema(schema)
    confirmed = eligibility_case(schema, met='ORDR."DocTotal"', not_met="0")
    filters = ""
    params = []
    if branches:
        filters += ' AND NNM1."BeginStr" IN :branches'
        params.append(bindparam("branches", expanding=True))
    if advisors:
        filters += ' AND ORDR."SlpCode" IN :advisors'
        params.append(bindparam("advisors", expanding=True))

    invoiced = f"""
        COALESCE(SUM(
            (SELECT SUM(UniqueInvoices."DocTotal")
             FROM (
                 SELECT DISTINCT OINV."DocEntry", OINV."DocTotal"
                 FROM "{schema}"."OINV" OINV
                 INNER JOIN "{schema}"."INV1" INV1 ON OINV."DocEntry" = INV1."DocEntry"
                 WHERE INV1."BaseEntry" = ORDR."DocEntry"
                   AND INV1."BaseType" = 17
                   AND OINV."CANCELED" = 'N'
                   AND OINV."DocDate" >= :start
                   AND OINV."DocDate" <= :end
             ) AS UniqueInvoices)
        ), 0)"""
    credit_notes = f"""
        COALESCE(
            (SELECT SUM(ORIN."DocTotal")
             FROM "{schema}"."ORIN" ORIN
             WHERE ORIN."SlpCode" = ORDR."SlpCode"
               AND ORIN."DocDate" >= :start
               AND ORIN."DocDate" <= :end
               AND ORIN."CANCELED" = 'N'), 0)"""

    statement = text(f"""
        SELECT
          NNM1."SeriesName" AS "SUCURSAL",
          SLP."SlpName" AS "Asesor",
          COALESCE(
              (SELECT SUM(OQUT."DocTotal")
               FROM "{schema}"."OQUT" OQUT
               WHERE OQUT."SlpCode" = ORDR."SlpCode"
                 AND OQUT."DocDate" >= :start
                 AND OQUT."DocDate" <= :end
                 AND OQUT."CANCELED" = 'N'), 0) AS "VALOR OFERTAS",
          COALESCE(
              (SELECT SUM(ORDR2."DocTotal")
               FROM "{schema}"."ORDR" ORDR2
               WHERE ORDR2."SlpCode" = ORDR."SlpCode"
                 AND ORDR2."DocDate" >= :start
                 AND ORDR2."DocDate" <= :end
                 AND ORDR2."CANCELED" = 'N'), 0) AS "Valor Pedidos (No Cancelados)",
          COALESCE(SUM({confirmed}), 0) AS "Valor Pedidos Confirmados",
          {invoiced} AS "VALOR FACTURACIÓN",
          {invoiced} - {credit_notes} AS "VALOR FACTURACIÓN - NOTAS DE CREDITO",
          {credit_notes} AS "VALOR NOTAS DE CREDITO",
          COALESCE(
              (SELECT SUM(ORCT."DocTotal")
               FROM "{schema}"."ORCT" ORCT
               INNER JOIN "{schema}"."ORDR" ORDR3
                       ON CAST(ORDR3."DocNum" AS NVARCHAR(15)) = CAST(ORCT."U_HV_NroOrden" AS NVARCHAR(15))
               WHERE ORDR3."SlpCode" = ORDR."SlpCode"
                 AND ORCT."DocDate" >= :start
                 AND ORCT."DocDate" <= :end
                 AND ORCT."Canceled" = 'N'), 0) AS "Cobro por Asesor"
        FROM "{schema}"."ORDR" ORDR
        INNER JOIN "{schema}"."OSLP" SLP ON ORDR."SlpCode" = SLP."SlpCode"
        INNER JOIN "{schema}"."NNM1" NNM1
                ON ORDR."Series" = NNM1."Series" AND NNM1."ObjectCode" = '17'
        WHERE ORDR."CANCELED" = 'N'
          AND ORDR."DocDate" BETWEEN :start AND :end
          AND {_ACTIVE_ADVISOR}
          {filters}
        GROUP BY NNM1."SeriesName", SLP."SlpName", ORDR."SlpCode"
        ORDER BY "SUCURSAL", "Asesor"
    """)
    return statement.bindparams(*params) if params else statement


_COLLECTION_GROUP = """(CASE WHEN T8."DocNum" IS NOT NULL THEN 'COBROS'
                 WHEN T9."DocNum" IS NOT NULL THEN 'COBROS ANTICIPOS PEDIDOS'
                 WHEN T8."DocNum" IS NULL AND T9."DocNum" IS NULL THEN 'PAGO A CUENTA' END)"""

_UNLINKED = 'T8."DocNum" IS NULL AND T9."DocNum" IS NULL AND T12."TransId" IS NULL'


def _card_kind(*, withholding: bool) -> str:
    retention = """
                 WHEN T10."CardName" LIKE 'RET%' THEN T10."CardName\"""" if withholding else ""
    return f"""(CASE WHEN T10."CardName" = 'TARJETA REGALO' THEN 'TARJETA DE REGALO'{retention}
                 ELSE (CASE T10."U_HBT_tipo" WHEN 'DB' THEN 'TARJETA DEBITO'
                                            WHEN 'CR' THEN 'TARJETA CRÉDITO' END)
                      || (CASE WHEN T10."U_HBT_tipo" = 'CR' AND T11."NumOfPmnts" > 1
                               THEN ' DIFERIDO' ELSE ' CORRIENTE' END)
            END)"""


def daily_closing_query(schema: str) -> TextClause:
    """Payments received on ``:day`` broken down by payment means.

    One ``SELECT`` per means (cheque, cash, transfer, cards) for payments
    applied to documents, followed by the same breakdown for the unapplied
    ("pago a cuenta") part of each payment. Store filtering happens in Python
    on the ``BeginStr`` column.
    """

    s = validate_schema(schema)
    common_joins = f"""
        LEFT JOIN "{s}"."NNM1" T3 ON T0."Series" = T3."Series"
        LEFT JOIN "{s}"."RCT2" T7 ON T7."DocNum" = T0."DocEntry"
        LEFT JOIN "{s}"."OINV" T8 ON T8."DocEntry" = T7."DocEntry"
        LEFT JOIN "{s}"."ODPI" T9 ON T9."DocEntry" = T7."DocEntry\""""
    journal_join = f'\n        LEFT JOIN "{s}"."OJDT" T12 ON T12."TransId" = T7."DocEntry"'
    cheque_joins = f"""
        LEFT JOIN "{s}"."RCT1" T1 ON T0."DocEntry" = T1."DocNum"
        LEFT JOIN "{s}"."ODSC" T4 ON T1."BankCode" = T4."BankCode\""""
    transfer_join = f'\n        LEFT JOIN "{s}"."OACT" T10 ON T10."AcctCode" = T0."TrsfrAcct"'
    card_joins = f"""
        INNER JOIN "{s}"."RCT3" T11 ON T11."DocNum" = T0."DocEntry"
        INNER JOIN "{s}"."OCRC" T10 ON T10."CreditCard" = T11."CreditCard\""""

    applied_columns = f"""{_COLLECTION_GROUP} AS "GrupoCobro",
          T3."SeriesName", T3."BeginStr",
          T0."DocNum" AS "NumPago",
          IFNULL(T8."DocNum", IFNULL(T9."DocNum", T12."TransId")) AS "Fact",
          CAST(T0."DocDate" AS DATE) AS "FechaPago",
          T0."CardName\""""
    on_account_columns = """'PAGO A CUENTA' AS "GrupoCobro",
          T3."SeriesName", T3."BeginStr",
          T0."DocNum" AS "NumPago",
          IFNULL(T8."DocNum", T9."DocNum") AS "Fact",
          CAST(T0."DocDate" AS DATE) AS "FechaPago",
          T0."CardName\""""
    on_day = """T0."Canceled" = 'N' AND T0."DocDate" = :day"""
    on_account = """AND T7."SumApplied" > 0 AND T0."NoDocSum" > 0"""

    return text(f"""
        SELECT 'CHEQUE' AS "Tipo", {applied_columns},
          (CASE WHEN T7."SumApplied" IS NULL THEN T1."CheckSum"
                ELSE ROUND((CASE WHEN ({_UNLINKED}) THEN T0."CheckSum"
                                 ELSE (T7."SumApplied" * T1."CheckSum") / T0."DocTotal" END), 2)
           END) AS "Importe",
          T4."BankName" AS "Banco"
        FROM "{s}"."ORCT" T0{cheque_joins}{common_joins}{journal_join}
        WHERE {on_day} AND T0."CheckSum" > 0

        UNION ALL

        SELECT 'EFECTIVO' AS "Tipo", {applied_columns},
          ROUND((CASE WHEN ({_UNLINKED}) THEN T0."CashSum"
                      ELSE (T7."SumApplied" * T0."CashSum") / T0."DocTotal" END), 2) AS "Importe",
          '' AS "Banco"
        FROM "{s}"."ORCT" T0{common_joins}{journal_join}
        WHERE {on_day} AND T0."CashSum" > 0

        UNION ALL

        SELECT 'TRANSFERENCIA' AS "Tipo", {applied_columns},
          ROUND((CASE WHEN ({_UNLINKED}) THEN T0."TrsfrSum"
                      ELSE (T7."SumApplied" * T0."TrsfrSum") / T0."DocTotal" END), 2) AS "Importe",
          T10."AcctName" AS "Banco"
        FROM "{s}"."ORCT" T0{common_joins}{transfer_join}{journal_join}
        WHERE {on_day} AND T0."TrsfrSum" > 0

        UNION ALL

        SELECT {_card_kind(withholding=True)} AS "Tipo", {applied_columns},
          (CASE WHEN T7."SumApplied" IS NULL THEN T11."CreditSum"
                ELSE ROUND((CASE WHEN ({_UNLINKED}) THEN T0."CreditSum"
                                 ELSE (T7."SumApplied" * T11."CreditSum") / T0."DocTotal" END), 2)
           END) AS "Importe",
          '' AS "Banco"
        FROM "{s}"."ORCT" T0{card_joins}{common_joins}{journal_join}
        WHERE {on_day} AND T0."CreditSum" > 0

        UNION ALL

        SELECT 'CHEQUE' AS "Tipo", {on_account_columns},
          ROUND((T0."NoDocSum" * T1."CheckSum") / T0."DocTotal", 2) AS "Importe",
          T4."BankName" AS "Banco"
        FROM "{s}"."ORCT" T0{cheque_joins}{common_joins}
        WHERE {on_day} AND T0."CheckSum" > 0 {on_account}

        UNION ALL

        SELECT 'EFECTIVO' AS "Tipo", {on_account_columns},
          ROUND((T0."NoDocSum" * T0."CashSum") / T0."DocTotal", 2) AS "Importe",
          '' AS "Banco"
        FROM "{s}"."ORCT" T0{common_joins}
        WHERE {on_day} AND T0."CashSum" > 0 {on_account}

        UNION ALL

        SELECT 'TRANSFERENCIA' AS "Tipo", {on_account_columns},
          ROUND((T0."NoDocSum" * T0."TrsfrSum") / T0."DocTotal", 2) AS "Importe",
          T10."AcctName" AS "Banco"
        FROM "{s}"."ORCT" T0{common_joins}{transfer_join}
        WHERE {on_day} AND T0."TrsfrSum" > 0 {on_account}

        UNION ALL

        SELECT {_card_kind(withholding=False)} AS "Tipo", {on_account_columns},
          ROUND((T0."NoDocSum" * T0."CreditSum") / T0."DocTotal", 2) AS "Importe",
          '' AS "Banco"
        FROM "{s}"."ORCT" T0{card_joins}{common_joins}
        WHERE {on_day} AND T0."CreditSum" > 0 {on_account}

        ORDER BY "FechaPago", "NumPago"
    """)


__all__ = [
    "validate_schema",
    "eligibility_case",
    "inventory_query",
    "store_options_query",
    "advisor_options_query",
    "daily_report_query",
    "accumulated_report_query",
    "daily_closing_query",
]
