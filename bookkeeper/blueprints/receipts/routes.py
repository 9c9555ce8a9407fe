from datetime import datetime
from decimal import Decimal

from flask import Blueprint, jsonify, request, current_app
from flask_babel import gettext as _
from flask_login import login_required, current_user

from ...errors import ApiError, Forbidden, LedgerStateError, NotFound
from ...extensions import db
from ...models import Account, Receipt
from ...security import company_access_required, get_owned_or_404, LEDGER_ROLES
from ...utils.audit import log_action
from ...utils.export import prepare_receipts_for_export
from ...utils.http import json_body, date_range_args, export_response, parse_id
from ...utils.journal import create_entry
from ...utils.numbers import money, parse_date, to_decimal

receipts_bp = Blueprint("receipts", __name__)

# check-similar: two of merchant / amount / date must match
SIMILAR_AMOUNT_RATIO = Decimal("0.1")
SIMILAR_DAYS = 7


def _apply_receipt_fields(receipt: Receipt, data: dict) -> None:
    if "merchant" in data:
        receipt.merchant = (str(data["merchant"]).strip() or None) if data["merchant"] else None
    if "date" in data:
        receipt.date = parse_date(data["date"])
        if data["date"] and receipt.date is None:
            raise ApiError(_("Invalid receipt date"), code="VALIDATION_ERROR")
    if "amount" in data:
        receipt.amount = money(data["amount"])
    if "vat_amount" in data:
        receipt.vat_amount = money(data["vat_amount"])
    if "currency" in data and data["currency"]:
        receipt.currency = str(data["currency"]).upper()[:3]
    if "category" in data:
        # empty category clears it
        receipt.category = (str(data["category"]).strip() or None) if data["category"] else None
    for field in ("account_id", "payment_account_id"):
        if field in data:
            setattr(receipt, field, parse_id(data[field], field) if data[field] else None)
    if (receipt.amount or 0) < 0 or (receipt.vat_amount or 0) < 0:
        raise ApiError(_("Amounts cannot be negative"), code="VALIDATION_ERROR")


def _ensure_unposted(receipt: Receipt) -> None:
    if receipt.posted:
        raise LedgerStateError(_("Receipt has already been posted"), code="ENTRY_POSTED")


@receipts_bp.route("/companies/<int:company_id>/receipts")
@company_access_required()
def receipts_list(company_id: int):
    q = Receipt.query.filter_by(company_id=company_id)
    posted = request.args.get("posted")
    if posted in ("0", "false"):
        q = q.filter(Receipt.posted.is_(False))
    elif posted in ("1", "true"):
        q = q.filter(Receipt.posted.is_(True))
    start, end = date_range_args()
    if start is not None:
        q = q.filter(Receipt.date >= start)
    if end is not None:
        q = q.filter(Receipt.date <= end)
    receipts = q.order_by(Receipt.date.desc(), Receipt.id.desc()).all()
    if request.args.get("export") in ("xlsx", "pdf"):
        sheet = prepare_receipts_for_export([r.to_dict() for r in receipts])
        return export_response([sheet], "expenses", request.args["export"], title=_("Expenses"))
    return jsonify([r.to_dict() for r in receipts])


@receipts_bp.route("/companies/<int:company_id>/receipts", methods=["POST"])
@company_access_required()
def receipts_create(company_id: int):
    receipt = Receipt(company_id=company_id, currency="AED", posted=False, uploaded_by=current_user.id)
    _apply_receipt_fields(receipt, json_body())
    db.session.add(receipt)
    db.session.flush()
    log_action("receipt_create", "Receipt", receipt.id, {"merchant": receipt.merchant}, company_id=company_id)
    db.session.commit()
    current_app.logger.info("Receipt %s created (company %s)", receipt.id, company_id)
    return jsonify(receipt.to_dict()), 201


@receipts_bp.route("/companies/<int:company_id>/receipts/check-similar", methods=["POST"])
@company_access_required()
def receipts_check_similar(company_id: int):
    """Flag likely duplicates: at least two of merchant, amount (±10%) and date (±7 days) match."""
    data = json_body()
    merchant = str(data.get("merchant") or "").strip().lower()
    amount = to_decimal(data.get("amount"))
    when = parse_date(data.get("date"))

    matches = []
    for r in Receipt.query.filter_by(company_id=company_id).order_by(Receipt.date.desc()).all():
        other = (r.merchant or "").lower()
        score = 0
        if merchant and other and (merchant in other or other in merchant):
            score += 1
        if amount > 0 and r.amount and abs(to_decimal(r.amount) - amount) / amount < SIMILAR_AMOUNT_RATIO:
            score += 1
        if when and r.date and abs((when - r.date).days) <= SIMILAR_DAYS:
            score += 1
        if score >= 2:
            matches.append(r)
    return jsonify({
        "has_similar": bool(matches),
        "similar": [
            {"id": r.id, "merchant": r.merchant, "amount": float(r.amount or 0),
             "date": r.date.isoformat() if r.date else None, "category": r.category}
            for r in matches[:5]
        ],
    })


@receipts_bp.route("/receipts/<int:receipt_id>")
@login_required
def receipts_get(receipt_id: int):
    return jsonify(get_owned_or_404(Receipt, receipt_id).to_dict())


@receipts_bp.route("/receipts/<int:receipt_id>", methods=["PUT", "PATCH"])
@login_required
def receipts_update(receipt_id: int):
    receipt = get_owned_or_404(Receipt, receipt_id)
    _ensure_unposted(receipt)
    _apply_receipt_fields(receipt, json_body())
    log_action("receipt_update", "Receipt", receipt.id, company_id=receipt.company_id)
    db.session.commit()
    return jsonify(receipt.to_dict())


@receipts_bp.route("/receipts/<int:receipt_id>", methods=["DELETE"])
@login_required
def receipts_delete(receipt_id: int):
    receipt = get_owned_or_404(Receipt, receipt_id)
    _ensure_unposted(receipt)
    company_id = receipt.company_id
    db.session.delete(receipt)
    log_action("receipt_delete", "Receipt", receipt_id, company_id=company_id)
    db.session.commit()
    return "", 204


def _company_account(receipt: Receipt, account_id, field: str, label: str) -> Account:
    account = db.session.get(Account, parse_id(account_id, field))
    if account is None:
        raise NotFound(_("Account not found"))
    if account.company_id != receipt.company_id:
        raise Forbidden(_("%(label)s account must belong to the same company as the receipt", label=label))
    return account


@receipts_bp.route("/receipts/<int:receipt_id>/post", methods=["POST"])
@login_required
def receipts_post(receipt_id: int):
    """Record the expense in the ledger: Dr expense account, Cr cash/bank, both for amount + VAT."""
    receipt = get_owned_or_404(Receipt, receipt_id, *LEDGER_ROLES)
    data = json_body()
    account_id = data.get("account_id") or receipt.account_id
    payment_account_id = data.get("payment_account_id") or receipt.payment_account_id
    if not account_id or not payment_account_id:
        raise ApiError(_("Expense account and payment account are required"), code="VALIDATION_ERROR")
    _ensure_unposted(receipt)

    total = money(receipt.total_amount)
    if total <= 0:
        raise ApiError(_("Receipt amount must be greater than zero"), code="VALIDATION_ERROR")

    expense_account = _company_account(receipt, account_id, "account_id", _("Expense"))
    payment_account = _company_account(receipt, payment_account_id, "payment_account_id", _("Payment"))
    if expense_account.type != "expense":
        raise ApiError(_("Selected account must be an expense account"), code="INVALID_ACCOUNT")
    if payment_account.type != "asset":
        raise ApiError(_("Payment account must be a cash or bank account (asset)"), code="INVALID_ACCOUNT")

    label = f"{receipt.merchant or 'Expense'} - {receipt.category or 'General'}"
    entry = create_entry(
        receipt.company_id,
        current_user.id,
        receipt.date or datetime.utcnow(),
        f"Receipt: {label}",
        [
            {"account_id": expense_account.id, "debit": total, "credit": 0, "description": label},
            {"account_id": payment_account.id, "debit": 0, "credit": total,
             "description": f"Payment - {receipt.merchant or 'Expense'}"},
        ],
        status="posted",
        source="receipt",
        source_id=receipt.id,
    )
    receipt.account_id = expense_account.id
    receipt.payment_account_id = payment_account.id
    receipt.journal_entry_id = entry.id
    receipt.posted = True
    log_action("receipt_post", "Receipt", receipt.id, {"entry_id": entry.id}, company_id=receipt.company_id)
    db.session.commit()
    current_app.logger.info("Receipt %s posted as %s (%s)", receipt.id, entry.entry_number, total)
    return jsonify({"receipt": receipt.to_dict(), "journal_entry": entry.to_dict(),
                    "message": _("Receipt posted successfully")})
