"""Flask front-end for the reporting dashboard.

Routes only translate the query string into orchestration calls and pick a
template; every query and number comes from :mod:`core_logic`. The runtime
context is injected through :func:`create_app` and stored on the app config.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from flask import (
    Blueprint,
    Flask,
    abort,
    current_app,
    jsonify,
    redirect,
    render_template,
    request,
    send_file,
    url_for,
)
from werkzeug.exceptions import HTTPException

from . import core_logic, exporters, log
from .constants import ReportName
from .errors import DashboardError, InvalidFilterError, PersistenceError


CONTEXT_KEY = "RUNTIME_CONTEXT"

reports = Blueprint("reports", __name__)


def _context() -> core_logic.RuntimeContext:
    return current_app.config[CONTEXT_KEY]


def format_money(value: Any) -> str:
    """Render an amount with thousands separators and two decimals."""

    if value is None or value == "":
        return ""
    try:
        return f"{Decimal(str(value)):,.2f}"
    except ArithmeticError:
        return str(value)


def format_timestamp(value: Any) -> str:
    if isinstance(value, datetime):
        return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, date):
        return value.isoformat()
    return "" if value is None else str(value)


def _daily_filters() -> core_logic.DailyReportFilters:
    return core_logic.resolve_daily_filters(
        _context(),
        start=request.args.get("fechaInicio"),
        end=request.args.get("fechaFin"),
        stores=request.args.getlist("tiendas"),
        advisors=request.args.getlist("asesores"),
        condition=request.args.get("cumpleCondicion"),
    )


def _accumulated_filters() -> core_logic.AccumulatedReportFilters:
    return core_logic.resolve_accumulated_filters(
        _context(),
        start=request.args.get("fechaInicio"),
        end=request.args.get("fechaFin"),
        branches=request.args.getlist("sucursales"),
        advisors=request.args.getlist("vendedores"),
    )


def _closing_filters() -> core_logic.ClosingFilters:
    return core_logic.resolve_closing_filters(
        day=request.args.get("fecha"),
        stores=request.args.getlist("tiendas"),
    )


def _xlsx_response(buffer, report: ReportName, day: date):
    return send_file(
        buffer,
        as_attachment=True,
        download_name=exporters.export_filename(report, day),
        mimetype=exporters.XLSX_MIMETYPE,
    )


@reports.route("/")
def index():
    return render_template("index.html")


@reports.route("/inventario")
def inventory():
    snapshot = core_logic.load_inventory(_context())
    if snapshot is None:
        return render_template("inventario_vacio.html")
    return render_template("inventario.html", snapshot=snapshot)


@reports.route("/cargar-inventario-manual")
def refresh_inventory():
    """Reload the inventory from the ERP and report the outcome as JSON."""

    try:
        snapshot = core_logic.refresh_inventory(_context())
    except PersistenceError as exc:
        return jsonify({
            "success": False,
            "error": f"Inventario cargado en memoria pero no se pudo guardar: {exc}",
        })
    except DashboardError as exc:
        log.error("Manual inventory refresh failed: %s", exc)
        return jsonify({"success": False, "error": str(exc)})
    except Exception as exc:
        # The inventory page script always expects a JSON body.
        log.exception("Unexpected error during manual inventory refresh")
        return jsonify({"success": False, "error": str(exc)})
    return jsonify({
        "success": True,
        "message": "Inventario cargado correctamente",
        "items": snapshot.item_count,
    })


@reports.route("/inventario/excel")
def inventory_excel():
    snapshot = core_logic.load_inventory(_context())
    if snapshot is None:
        abort(404, description="No hay inventario cargado")
    buffer = exporters.export_inventory(snapshot)
    return _xlsx_response(buffer, ReportName.INVENTORY, snapshot.captured_at.date())


@reports.route("/reporte-diario")
def daily_report():
    view = core_logic.build_daily_report(_context(), _daily_filters())
    return render_template("reporte_diario.html", view=view)


@reports.route("/reporte-diario/excel")
def daily_report_excel():
    view = core_logic.build_daily_report(_context(), _daily_filters())
    buffer = exporters.export_daily_report(view)
    return _xlsx_response(buffer, ReportName.DAILY, view.filters.period.end)


@reports.route("/reporte-acumulado")
def accumulated_report():
    view = core_logic.build_accumulated_report(_context(), _accumulated_filters())
    return render_template("reporte_acumulado.html", view=view)


@reports.route("/reporte-acumulado/excel")
def accumulated_report_excel():
    view = core_logic.build_accumulated_report(_context(), _accumulated_filters())
    buffer = exporters.export_accumulated_report(view)
    return _xlsx_response(buffer, ReportName.ACCUMULATED, view.filters.period.end)


@reports.route("/cierre-diario")
def daily_closing():
    view = core_logic.build_daily_closing(_context(), _closing_filters())
    return render_template("cierre_diario.html", view=view)


@reports.route("/cierre-diario/excel")
def daily_closing_excel():
    view = core_logic.build_daily_closing(_context(), _closing_filters())
    buffer = exporters.export_daily_closing(view)
    return _xlsx_response(buffer, ReportName.DAILY_CLOSING, view.filters.day)


@reports.route("/cierre-acumulado")
def accumulated_closing():
    # Retired page.
    return redirect(url_for("reports.index"))


def handle_invalid_filter(error: InvalidFilterError):
    log.warning("Rejected request %s: %s", request.full_path, error)
    return render_template("error.html", message=str(error), status=400), 400


def handle_dashboard_error(error: DashboardError):
    log.error("Request %s failed: %s", request.full_path, error)
    return render_template("error.html", message=str(error), status=500), 500


def handle_unexpected_error(error: Exception):
    if isinstance(error, HTTPException):
        return error
    log.exception("Unhandled error while serving %s", request.full_path)
    return render_template("error.html", message=str(error), status=500), 500


def create_app(context: core_logic.RuntimeContext) -> Flask:
    """Build the Flask application around an already loaded runtime context.

    The inventory snapshot is read from disk once here so the first visit to
    the inventory page does not pay for it.
    """

    app = Flask(__name__)
    app.config[CONTEXT_KEY] = context
    app.register_blueprint(reports)
    app.add_template_filter(format_money, "money")
    app.add_template_filter(format_timestamp, "timestamp")
    app.register_error_handler(InvalidFilterError, handle_invalid_filter)
    app.register_error_handler(DashboardError, handle_dashboard_error)
    app.register_error_handler(Exception, handle_unexpected_error)

    snapshot = context.cache.get()
    if snapshot is None:
        log.info("No cached inventory found; waiting for a manual refresh")
    return app


__all__ = ["create_app", "format_money", "format_timestamp"]
