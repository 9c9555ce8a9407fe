from flask import Blueprint, jsonify, request
from flask_babel import gettext as _

from ...errors import ApiError
from ...extensions import db
from ...models import Company
from ...security import company_access_required
from ...utils.export import (
    prepare_profit_loss_for_export, prepare_balance_sheet_for_export,
    prepare_vat_summary_for_export, prepare_trial_balance_for_export, prepare_aging_for_export,
)
from ...utils.http import date_range_args, locale, export_response
from ...utils.numbers import parse_date
from ...utils.reports import profit_and_loss, balance_sheet, vat_summary, trial_balance, ar_aging

reports_bp = Blueprint("reports", __name__)


def _respond(report: dict, shaper, filename: str, title: str):
    fmt = request.args.get("export")
    if fmt:
        company = db.session.get(Company, int(request.view_args["company_id"]))
        subtitle = f"{company.name} - {report.get('period', '')}"
        return export_response([shaper(report)], filename, fmt, title=title, subtitle=subtitle)
    return jsonify(report)


@reports_bp.route("/companies/<int:company_id>/reports/profit-loss")
@company_access_required()
def report_profit_loss(company_id: int):
    start, end = date_range_args()
    report = profit_and_loss(company_id, start, end, locale=locale())
    return _respond(report, prepare_profit_loss_for_export, "profit_and_loss", _("Profit & Loss"))


@reports_bp.route("/companies/<int:company_id>/reports/balance-sheet")
@company_access_required()
def report_balance_sheet(company_id: int):
    start, end = date_range_args()
    report = balance_sheet(company_id, start, end, locale=locale())
    return _respond(report, prepare_balance_sheet_for_export, "balance_sheet", _("Balance Sheet"))


@reports_bp.route("/companies/<int:company_id>/reports/vat-summary")
@company_access_required()
def report_vat_summary(company_id: int):
    start, end = date_range_args()
    report = vat_summary(company_id, start, end)
    return _respond(report, prepare_vat_summary_for_export, "vat_summary", _("VAT Summary"))


@reports_bp.route("/companies/<int:company_id>/reports/trial-balance")
@company_access_required()
def report_trial_balance(company_id: int):
    start, end = date_range_args()
    report = trial_balance(company_id, start, end, locale=locale())
    return _respond(report, prepare_trial_balance_for_export, "trial_balance", _("Trial Balance"))


@reports_bp.route("/companies/<int:company_id>/reports/aging")
@company_access_required()
def report_aging(company_id: int):
    raw = request.args.get("as_of")
    as_of = parse_date(raw)
    if raw and as_of is None:
        raise ApiError(_("Dates must be ISO formatted (YYYY-MM-DD)"), code="VALIDATION_ERROR")
    report = ar_aging(company_id, as_of)
    return _respond(report, prepare_aging_for_export, "ar_aging", _("Accounts Receivable Aging"))


@reports_bp.route("/companies/<int:company_id>/reports/export")
@company_access_required()
def report_pack(company_id: int):
    """All statements for the period as one workbook, one sheet each."""
    start, end = date_range_args()
    lang = locale()
    sheets = [
        prepare_profit_loss_for_export(profit_and_loss(company_id, start, end, locale=lang)),
        prepare_balance_sheet_for_export(balance_sheet(company_id, start, end, locale=lang)),
        prepare_vat_summary_for_export(vat_summary(company_id, start, end)),
        prepare_trial_balance_for_export(trial_balance(company_id, start, end, locale=lang)),
    ]
    return export_response(sheets, "financial_reports", "xlsx")
