from datetime import datetime
from decimal import Decimal
from io import BytesIO

from flask import Blueprint, jsonify, request, current_app, send_file
from flask_babel import gettext as _
from flask_login import login_required, current_user

from ...errors import ApiError, LedgerStateError
from ...extensions import db
from ...models import Account, Invoice, InvoiceLine, ReminderLog, Company, INVOICE_STATUSES
from ...security import company_access_required, get_owned_or_404, LEDGER_ROLES
from ...utils.audit import log_action
from ...utils.coa import find_account, ACCOUNTS_RECEIVABLE, SALES_REVENUE, VAT_PAYABLE
from ...utils.export import (
    prepare_invoices_for_export, prepare_invoice_detail_for_export, build_workbook, render_invoice_pdf,
)
from ...utils.http import json_body, require_fields, export_response, parse_id, XLSX_MIMETYPE
from ...utils.journal import create_entry, post_entry, reverse_entry, delete_entry, entries_for_source
from ...utils.mailer import send_invoice_reminder
from ...utils.numbers import money, to_decimal, parse_date

invoices_bp = Blueprint("invoices", __name__)

# Revenue (invoice) and settlement (payment) entries both point back at the invoice
INVOICE_SOURCES = ("invoice", "payment")


def _vat_rate(raw) -> Decimal:
    if raw is None or raw == "":
        return Decimal(str(current_app.config.get("DEFAULT_VAT_RATE", 0.05)))
    rate = to_decimal(raw)
    if rate < 0 or rate > 1:
        raise ApiError(_("VAT rate must be between 0 and 1"), code="VALIDATION_ERROR")
    return rate


def _build_lines(raw_lines) -> list:
    if not raw_lines:
        raise ApiError(_("Invoice must have at least one line"), code="VALIDATION_ERROR")
    lines = []
    for raw in raw_lines:
        description = str(raw.get("description") or "").strip()
        quantity = to_decimal(raw.get("quantity"))
        unit_price = money(raw.get("unit_price"))
        if not description:
            raise ApiError(_("Every invoice line needs a description"), code="VALIDATION_ERROR")
        if quantity <= 0:
            raise ApiError(_("Quantity must be greater than zero"), code="VALIDATION_ERROR")
        if unit_price < 0:
            raise ApiError(_("Unit price cannot be negative"), code="VALIDATION_ERROR")
        lines.append(InvoiceLine(
            description=description,
            quantity=quantity,
            unit_price=unit_price,
            vat_rate=_vat_rate(raw.get("vat_rate")),
        ))
    return lines


def calculate_totals(lines) -> tuple:
    """(subtotal, vat_amount, total) with VAT charged per line at its own rate."""
    subtotal = Decimal("0")
    vat = Decimal("0")
    for line in lines:
        line_total = to_decimal(line.quantity) * to_decimal(line.unit_price)
        subtotal += line_total
        vat += line_total * to_decimal(line.vat_rate)
    subtotal, vat = money(subtotal), money(vat)
    return subtotal, vat, money(subtotal + vat)


def _apply_header(invoice: Invoice, data: dict) -> None:
    if "number" in data:
        invoice.number = str(data["number"] or "").strip()
    if "customer_name" in data:
        invoice.customer_name = str(data["customer_name"] or "").strip()
    for field in ("customer_trn", "customer_email"):
        if field in data:
            setattr(invoice, field, (str(data[field]).strip() or None) if data[field] else None)
    if "date" in data:
        invoice.date = parse_date(data["date"])
        if invoice.date is None:
            raise ApiError(_("Invalid invoice date"), code="VALIDATION_ERROR")
    if "due_date" in data:
        invoice.due_date = parse_date(data["due_date"])
    if "currency" in data and data["currency"]:
        invoice.currency = str(data["currency"]).upper()[:3]
    if not invoice.number or not invoice.customer_name:
        raise ApiError(_("Invoice number and customer name are required"), code="VALIDATION_ERROR")
    clash = Invoice.query.filter(
        Invoice.company_id == invoice.company_id, Invoice.number == invoice.number, Invoice.id != invoice.id
    ).first()
    if clash:
        raise ApiError(_("Invoice number %(n)s already exists", n=invoice.number), code="DUPLICATE_NUMBER")


def _set_lines(invoice: Invoice, lines: list) -> None:
    invoice.lines.clear()
    db.session.flush()
    invoice.lines.extend(lines)
    invoice.subtotal, invoice.vat_amount, invoice.total = calculate_totals(lines)


def _create_revenue_entry(invoice: Invoice, user_id):
    """Draft entry recognising the sale: Dr A/R total, Cr Sales subtotal, Cr VAT Payable."""
    receivable = find_account(invoice.company_id, ACCOUNTS_RECEIVABLE)
    revenue = find_account(invoice.company_id, SALES_REVENUE)
    vat_account = find_account(invoice.company_id, VAT_PAYABLE)
    if invoice.total <= 0:
        return None
    if not receivable or not revenue or (invoice.vat_amount > 0 and not vat_account):
        current_app.logger.warning(
            "Invoice %s: revenue entry skipped, chart of accounts is missing seed accounts", invoice.number
        )
        return None
    lines = [
        {"account_id": receivable.id, "debit": invoice.total, "credit": 0,
         "description": f"Invoice {invoice.number} - {invoice.customer_name}"},
        {"account_id": revenue.id, "debit": 0, "credit": invoice.subtotal,
         "description": f"Sales revenue - Invoice {invoice.number}"},
    ]
    if invoice.vat_amount > 0:
        lines.append({"account_id": vat_account.id, "debit": 0, "credit": invoice.vat_amount,
                      "description": f"VAT output - Invoice {invoice.number}"})
    return create_entry(
        invoice.company_id, user_id, invoice.date, f"Sales Invoice {invoice.number} - {invoice.customer_name}",
        lines, status="draft", source="invoice", source_id=invoice.id,
    )


def _invoice_entries(invoice: Invoice) -> list:
    entries = []
    for source in INVOICE_SOURCES:
        entries.extend(entries_for_source(invoice.company_id, source, invoice.id))
    return entries


def _unwind_payment(invoice: Invoice, user_id: int) -> None:
    """Drop draft payment entries and reverse posted ones."""
    for entry in entries_for_source(invoice.company_id, "payment", invoice.id):
        if entry.status == "draft":
            delete_entry(entry)
        elif entry.status == "posted":
            reverse_entry(entry, user_id, f"Invoice {invoice.number} no longer paid")


def _ensure_no_posted_entries(invoice: Invoice, action: str) -> None:
    if any(e.status == "posted" for e in _invoice_entries(invoice)):
        raise LedgerStateError(
            _("Invoice has posted journal entries and cannot be %(a)s", a=action), code="ENTRY_POSTED"
        )


@invoices_bp.route("/companies/<int:company_id>/invoices")
@company_access_required()
def invoices_list(company_id: int):
    q = Invoice.query.filter_by(company_id=company_id)
    status = request.args.get("status")
    if status:
        q = q.filter(Invoice.status == status)
    invoices = q.order_by(Invoice.date.desc(), Invoice.id.desc()).all()
    if request.args.get("export") in ("xlsx", "pdf"):
        sheet = prepare_invoices_for_export([i.to_dict(with_lines=False) for i in invoices])
        return export_response([sheet], "invoices", request.args["export"], title=_("Invoices"))
    return jsonify([i.to_dict(with_lines=False) for i in invoices])


@invoices_bp.route("/companies/<int:company_id>/invoices", methods=["POST"])
@company_access_required(*LEDGER_ROLES)
def invoices_create(company_id: int):
    data = json_body()
    require_fields(data, "number", "customer_name", "date")
    company = db.session.get(Company, company_id)
    invoice = Invoice(company_id=company_id, currency=company.base_currency or "AED", status="draft")
    _apply_header(invoice, data)
    lines = _build_lines(data.get("lines"))
    db.session.add(invoice)
    _set_lines(invoice, lines)
    db.session.flush()
    entry = _create_revenue_entry(invoice, current_user.id)
    log_action("invoice_create", "Invoice", invoice.id, {"total": float(invoice.total)}, company_id=company_id)
    db.session.commit()
    current_app.logger.info(
        "Invoice %s created (company %s, total %s, entry %s)",
        invoice.number, company_id, invoice.total, entry.entry_number if entry else "-",
    )
    return jsonify(invoice.to_dict()), 201


@invoices_bp.route("/invoices/<int:invoice_id>")
@login_required
def invoices_get(invoice_id: int):
    invoice = get_owned_or_404(Invoice, invoice_id)
    body = invoice.to_dict()
    body["journal_entries"] = [e.to_dict(with_lines=False) for e in _invoice_entries(invoice)]
    return jsonify(body)


@invoices_bp.route("/invoices/<int:invoice_id>", methods=["PUT", "PATCH"])
@login_required
def invoices_update(invoice_id: int):
    invoice = get_owned_or_404(Invoice, invoice_id, *LEDGER_ROLES)
    if invoice.status in ("paid", "void"):
        raise LedgerStateError(_("Paid or void invoices cannot be edited"), code="INVOICE_CLOSED")
    _ensure_no_posted_entries(invoice, _("edited"))
    data = json_body()
    _apply_header(invoice, data)
    if "lines" in data:
        _set_lines(invoice, _build_lines(data["lines"]))
    # Keep the draft revenue entry in step with the invoice
    for entry in entries_for_source(invoice.company_id, "invoice", invoice.id):
        delete_entry(entry)
    _create_revenue_entry(invoice, current_user.id)
    log_action("invoice_update", "Invoice", invoice.id, company_id=invoice.company_id)
    db.session.commit()
    return jsonify(invoice.to_dict())


@invoices_bp.route("/invoices/<int:invoice_id>", methods=["DELETE"])
@login_required
def invoices_delete(invoice_id: int):
    invoice = get_owned_or_404(Invoice, invoice_id, *LEDGER_ROLES)
    _ensure_no_posted_entries(invoice, _("deleted"))
    for entry in _invoice_entries(invoice):
        delete_entry(entry)
    ReminderLog.query.filter_by(invoice_id=invoice.id).delete(synchronize_session=False)
    company_id = invoice.company_id
    db.session.delete(invoice)
    log_action("invoice_delete", "Invoice", invoice_id, company_id=company_id)
    db.session.commit()
    return "", 204


@invoices_bp.route("/invoices/<int:invoice_id>/post", methods=["POST"])
@login_required
def invoices_post(invoice_id: int):
    invoice = get_owned_or_404(Invoice, invoice_id, *LEDGER_ROLES)
    drafts = [e for e in _invoice_entries(invoice) if e.status == "draft"]
    if not drafts:
        raise ApiError(_("No draft entries to post"), code="NOTHING_TO_POST")
    for entry in drafts:
        post_entry(entry, current_user.id)
    log_action("invoice_post", "Invoice", invoice.id, {"count": len(drafts)}, company_id=invoice.company_id)
    db.session.commit()
    return jsonify({"message": _("Invoice entries posted successfully"), "count": len(drafts)})


@invoices_bp.route("/invoices/<int:invoice_id>/status", methods=["PATCH", "POST"])
@login_required
def invoices_status(invoice_id: int):
    invoice = get_owned_or_404(Invoice, invoice_id, *LEDGER_ROLES)
    data = json_body()
    status = data.get("status")
    if status not in INVOICE_STATUSES:
        raise ApiError(_("Invalid status. Must be one of: draft, sent, paid, void"), code="VALIDATION_ERROR")
    old_status = invoice.status
    if old_status == "void" and status != "void":
        raise LedgerStateError(_("Void invoices cannot be reopened"), code="INVOICE_VOID")

    if status == "paid" and old_status != "paid":
        payment_account_id = data.get("payment_account_id")
        if not payment_account_id:
            raise ApiError(_("Payment account is required when marking invoice as paid"), code="VALIDATION_ERROR")
        payment_account = db.session.get(Account, parse_id(payment_account_id, "payment_account_id"))
        if payment_account is None or payment_account.company_id != invoice.company_id:
            raise ApiError(_("Invalid payment account"), code="INVALID_ACCOUNT")
        if payment_account.type != "asset":
            raise ApiError(_("Payment account must be a cash or bank account"), code="INVALID_ACCOUNT")
        receivable = find_account(invoice.company_id, ACCOUNTS_RECEIVABLE)
        if receivable is None:
            raise ApiError(_("Accounts Receivable account not found"), code="MISSING_ACCOUNT")
        create_entry(
            invoice.company_id, current_user.id, datetime.utcnow(), f"Payment received for Invoice {invoice.number}",
            [
                {"account_id": payment_account.id, "debit": invoice.total, "credit": 0,
                 "description": f"Payment received - Invoice {invoice.number}"},
                {"account_id": receivable.id, "debit": 0, "credit": invoice.total,
                 "description": f"Clear A/R - Invoice {invoice.number}"},
            ],
            status="draft", source="payment", source_id=invoice.id,
        )
    elif old_status == "paid" and status in ("draft", "sent"):
        _unwind_payment(invoice, current_user.id)
    elif status == "void" and old_status != "void":
        for entry in _invoice_entries(invoice):
            if entry.status == "draft":
                delete_entry(entry)
            elif entry.status == "posted":
                reverse_entry(entry, current_user.id, f"Invoice {invoice.number} voided")

    invoice.status = status
    log_action("invoice_status", "Invoice", invoice.id, {"from": old_status, "to": status},
               company_id=invoice.company_id)
    db.session.commit()
    current_app.logger.info("Invoice %s status %s -> %s", invoice.number, old_status, status)
    return jsonify(invoice.to_dict())


@invoices_bp.route("/invoices/<int:invoice_id>/send-reminder", methods=["POST"])
@login_required
def invoices_send_reminder(invoice_id: int):
    invoice = get_owned_or_404(Invoice, invoice_id)
    if invoice.status in ("paid", "void"):
        raise ApiError(_("Reminders can only be sent for unpaid invoices"), code="INVALID_STATUS")
    recipient = (json_body().get("email") or invoice.customer_email or "").strip()
    if not recipient:
        raise ApiError(_("Customer e-mail address is required"), code="VALIDATION_ERROR")
    company = db.session.get(Company, invoice.company_id)
    log = send_invoice_reminder(invoice, company, recipient)
    db.session.commit()
    if log.status != "sent":
        return jsonify({"message": _("Reminder could not be delivered"), "log": log.to_dict()}), 502
    return jsonify({"message": _("Reminder sent successfully"), "log": log.to_dict()})


@invoices_bp.route("/companies/<int:company_id>/reminder-logs")
@company_access_required()
def reminder_logs(company_id: int):
    rows = ReminderLog.query.filter_by(company_id=company_id).order_by(ReminderLog.sent_at.desc()).limit(200).all()
    return jsonify([r.to_dict() for r in rows])


@invoices_bp.route("/invoices/<int:invoice_id>/export.<fmt>")
@login_required
def invoices_export(invoice_id: int, fmt: str):
    invoice = get_owned_or_404(Invoice, invoice_id)
    data = invoice.to_dict()
    if fmt == "xlsx":
        buf = BytesIO(build_workbook([prepare_invoice_detail_for_export(data)]))
        return send_file(buf, mimetype=XLSX_MIMETYPE, as_attachment=True, download_name=f"{invoice.number}.xlsx")
    if fmt == "pdf":
        company = db.session.get(Company, invoice.company_id)
        buf = BytesIO(render_invoice_pdf(data, company.to_dict(), title=company.invoice_title))
        return send_file(buf, mimetype="application/pdf", as_attachment=True, download_name=f"{invoice.number}.pdf")
    raise ApiError(_("Unsupported export format"), code="VALIDATION_ERROR")
