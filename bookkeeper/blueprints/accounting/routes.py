from flask import Blueprint, jsonify, request, current_app
from flask_babel import gettext as _
from flask_login import login_required, current_user

from ...errors import ApiError
from ...extensions import db
from ...models import Account, JournalEntry, ACCOUNT_TYPES, ENTRY_STATUSES
from ...security import company_access_required, get_owned_or_404, LEDGER_ROLES
from ...utils.audit import log_action
from ...utils.balances import (
    accounts_with_balances, group_by_type, serialize_balance_row, account_ledger, account_has_transactions,
)
from ...utils.export import prepare_accounts_for_export, prepare_journal_for_export
from ...utils.http import json_body, require_fields, date_range_args, int_arg, locale, export_response
from ...utils.journal import (
    check_balance, validate_lines, create_entry, update_entry, post_entry, reverse_entry, delete_entry,
)
from ...utils.numbers import parse_date

acct_bp = Blueprint("acct", __name__)


# ---- Chart of accounts ----

def _apply_account_fields(account: Account, data: dict) -> None:
    if "code" in data:
        account.code = (str(data["code"]).strip() or None) if data["code"] is not None else None
    if "name_en" in data:
        account.name_en = str(data["name_en"] or "").strip()
    if "name_ar" in data:
        account.name_ar = (str(data["name_ar"]).strip() or None) if data["name_ar"] is not None else None
    if "type" in data:
        account.type = str(data["type"] or "").strip().lower()
    if "is_active" in data:
        account.is_active = bool(data["is_active"])
    if not account.name_en:
        raise ApiError(_("Account name is required"), code="VALIDATION_ERROR")
    if account.type not in ACCOUNT_TYPES:
        raise ApiError(_("Account type must be one of: %(t)s", t=", ".join(ACCOUNT_TYPES)), code="VALIDATION_ERROR")
    if account.code:
        clash = Account.query.filter(
            Account.company_id == account.company_id, Account.code == account.code, Account.id != account.id
        ).first()
        if clash:
            raise ApiError(_("Account code %(c)s is already used", c=account.code), code="DUPLICATE_CODE")


@acct_bp.route("/companies/<int:company_id>/accounts")
@company_access_required()
def accounts_list(company_id: int):
    q = Account.query.filter_by(company_id=company_id)
    if request.args.get("include_inactive", "1") in ("0", "false"):
        q = q.filter(Account.is_active.is_(True))
    acc_type = request.args.get("type")
    if acc_type:
        q = q.filter(Account.type == acc_type)
    accounts = q.order_by(Account.code, Account.id).all()
    if request.args.get("export") in ("xlsx", "pdf"):
        sheet = prepare_accounts_for_export([{"account": a.to_dict()} for a in accounts])
        return export_response([sheet], "chart_of_accounts", request.args["export"], title=_("Chart of Accounts"))
    return jsonify([a.to_dict() for a in accounts])


@acct_bp.route("/companies/<int:company_id>/accounts", methods=["POST"])
@company_access_required(*LEDGER_ROLES)
def accounts_create(company_id: int):
    data = json_body()
    require_fields(data, "name_en", "type")
    account = Account(company_id=company_id, is_active=True)
    _apply_account_fields(account, data)
    db.session.add(account)
    db.session.flush()
    log_action("account_create", "Account", account.id, {"name": account.name_en}, company_id=company_id)
    db.session.commit()
    return jsonify(account.to_dict()), 201


@acct_bp.route("/accounts/<int:account_id>", methods=["PUT", "PATCH"])
@login_required
def accounts_update(account_id: int):
    account = get_owned_or_404(Account, account_id, *LEDGER_ROLES)
    data = json_body()
    if "type" in data and data["type"] != account.type and account_has_transactions(account.id):
        raise ApiError(_("Cannot change the type of an account with transactions"), code="ACCOUNT_IN_USE")
    _apply_account_fields(account, data)
    log_action("account_update", "Account", account.id, company_id=account.company_id)
    db.session.commit()
    return jsonify(account.to_dict())


@acct_bp.route("/accounts/<int:account_id>", methods=["DELETE"])
@login_required
def accounts_delete(account_id: int):
    account = get_owned_or_404(Account, account_id, *LEDGER_ROLES)
    if account_has_transactions(account.id):
        raise ApiError(
            _("Cannot delete account with existing transactions. Deactivate it instead."),
            code="ACCOUNT_IN_USE",
        )
    company_id = account.company_id
    db.session.delete(account)
    log_action("account_delete", "Account", account_id, company_id=company_id)
    db.session.commit()
    return "", 204


@acct_bp.route("/companies/<int:company_id>/accounts-with-balances")
@company_access_required()
def accounts_with_balances_view(company_id: int):
    start, end = date_range_args()
    rows = accounts_with_balances(company_id, start, end)
    export = request.args.get("export")
    if export in ("xlsx", "pdf"):
        sheet = prepare_accounts_for_export([
            {"account": r["account"].to_dict(), "balance": r["balance"]} for r in rows
        ])
        return export_response([sheet], "account_balances", export, title=_("Account Balances"))
    lang = locale()
    if request.args.get("group") == "type":
        grouped = group_by_type(rows)
        return jsonify([
            {
                "type": acc_type,
                "total": float(bucket["total"]),
                "accounts": [serialize_balance_row(r, lang) for r in bucket["rows"]],
            }
            for acc_type, bucket in grouped.items()
        ])
    return jsonify([serialize_balance_row(r, lang) for r in rows])


@acct_bp.route("/accounts/<int:account_id>/ledger")
@login_required
def accounts_ledger(account_id: int):
    account = get_owned_or_404(Account, account_id)
    start, end = date_range_args()
    limit = int_arg("limit")
    offset = int_arg("offset", 0)
    if (limit is not None and limit < 0) or offset < 0:
        raise ApiError(_("limit and offset must not be negative"), code="VALIDATION_ERROR")
    return jsonify(account_ledger(
        account, start=start, end=end, search=request.args.get("search"), limit=limit, offset=offset,
    ))


# ---- Journal ----

@acct_bp.route("/journal/validate", methods=["POST"])
@login_required
def journal_validate():
    """Check lines without saving; always 200 with the balance details."""
    lines = json_body().get("lines") or []
    check = check_balance(lines)
    body = check.to_dict()
    try:
        validate_lines(lines)
        body["valid"] = True
    except ApiError as err:
        body["valid"] = False
        body["message"] = err.message
        body["code"] = err.code
    return jsonify(body)


@acct_bp.route("/companies/<int:company_id>/journal")
@company_access_required()
def journal_list(company_id: int):
    q = JournalEntry.query.filter_by(company_id=company_id)
    status = request.args.get("status")
    if status:
        if status not in ENTRY_STATUSES:
            raise ApiError(_("Invalid status filter"), code="VALIDATION_ERROR")
        q = q.filter(JournalEntry.status == status)
    start, end = date_range_args()
    if start is not None:
        q = q.filter(JournalEntry.date >= start)
    if end is not None:
        q = q.filter(JournalEntry.date <= end)
    entries = q.order_by(JournalEntry.date.desc(), JournalEntry.id.desc()).all()
    if request.args.get("export") in ("xlsx", "pdf"):
        sheet = prepare_journal_for_export([e.to_dict() for e in entries])
        return export_response([sheet], "journal", request.args["export"], title=_("Journal"))
    return jsonify([e.to_dict() for e in entries])


@acct_bp.route("/companies/<int:company_id>/journal", methods=["POST"])
@company_access_required(*LEDGER_ROLES)
def journal_create(company_id: int):
    data = json_body()
    entry_date = parse_date(data.get("date"))
    if data.get("date") and entry_date is None:
        raise ApiError(_("Invalid date"), code="VALIDATION_ERROR")
    status = data.get("status") or "draft"
    entry = create_entry(
        company_id,
        current_user.id,
        entry_date,
        data.get("memo"),
        data.get("lines") or [],
        status=status,
    )
    log_action("journal_create", "JournalEntry", entry.id, {"status": entry.status}, company_id=company_id)
    db.session.commit()
    message = _("Journal entry posted successfully") if entry.status == "posted" else _("Journal entry saved as draft")
    return jsonify(dict(entry.to_dict(), message=message)), 201


@acct_bp.route("/journal/<int:entry_id>")
@login_required
def journal_get(entry_id: int):
    entry = get_owned_or_404(JournalEntry, entry_id)
    return jsonify(entry.to_dict())


@acct_bp.route("/journal/<int:entry_id>", methods=["PUT", "PATCH"])
@login_required
def journal_update(entry_id: int):
    entry = get_owned_or_404(JournalEntry, entry_id, *LEDGER_ROLES)
    data = json_body()
    entry_date = parse_date(data.get("date"))
    if data.get("date") and entry_date is None:
        raise ApiError(_("Invalid date"), code="VALIDATION_ERROR")
    update_entry(entry, current_user.id, data.get("lines") or [], entry_date=entry_date, memo=data.get("memo"))
    log_action("journal_update", "JournalEntry", entry.id, company_id=entry.company_id)
    db.session.commit()
    current_app.logger.info("Draft journal entry %s updated", entry.entry_number)
    return jsonify(dict(entry.to_dict(), message=_("Draft entry updated successfully")))


@acct_bp.route("/journal/<int:entry_id>/post", methods=["POST"])
@login_required
def journal_post(entry_id: int):
    entry = get_owned_or_404(JournalEntry, entry_id, *LEDGER_ROLES)
    post_entry(entry, current_user.id)
    log_action("journal_post", "JournalEntry", entry.id, company_id=entry.company_id)
    db.session.commit()
    return jsonify(dict(entry.to_dict(), message=_("Entry posted successfully")))


@acct_bp.route("/journal/<int:entry_id>/reverse", methods=["POST"])
@login_required
def journal_reverse(entry_id: int):
    entry = get_owned_or_404(JournalEntry, entry_id, *LEDGER_ROLES)
    reason = (json_body().get("reason") or "").strip() or None
    reversal = reverse_entry(entry, current_user.id, reason)
    log_action("journal_reverse", "JournalEntry", entry.id, {"reversal_id": reversal.id, "reason": reason},
               company_id=entry.company_id)
    db.session.commit()
    return jsonify({
        "original": entry.to_dict(with_lines=False),
        "reversal": reversal.to_dict(),
        "message": _("Entry reversed successfully"),
    }), 201


@acct_bp.route("/journal/<int:entry_id>", methods=["DELETE"])
@login_required
def journal_delete(entry_id: int):
    entry = get_owned_or_404(JournalEntry, entry_id, *LEDGER_ROLES)
    company_id = entry.company_id
    delete_entry(entry)
    log_action("journal_delete", "JournalEntry", entry_id, company_id=company_id)
    db.session.commit()
    return "", 204
