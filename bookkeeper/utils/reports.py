"""Financial statements computed from posted journal entries.

Report payloads are plain dicts with float amounts so they can be returned
as JSON directly and fed to the export shapers in ``utils.export``.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from ..extensions import db
from ..models import Invoice, Receipt
from .balances import accounts_with_balances
from .journal import check_balance

ZERO = Decimal("0")


def _period_label(start: Optional[datetime], end: Optional[datetime]) -> str:
    if start and end:
        return f"{start:%Y-%m-%d} to {end:%Y-%m-%d}"
    if start:
        return f"From {start:%Y-%m-%d}"
    if end:
        return f"Up to {end:%Y-%m-%d}"
    return "Current Period"


def _row(item: dict, locale: str) -> dict:
    account = item["account"]
    return {
        "account_id": account.id,
        "account_code": account.code,
        "account_name": account.display_name(locale),
        "amount": float(item["balance"]),
    }


def profit_and_loss(company_id: int, start: Optional[datetime] = None, end: Optional[datetime] = None,
                    locale: str = "en") -> dict:
    rows = accounts_with_balances(company_id, start, end)
    revenue = [r for r in rows if r["account"].type == "income" and r["balance"] > 0]
    expenses = [r for r in rows if r["account"].type == "expense" and r["balance"] > 0]
    total_revenue = sum((r["balance"] for r in revenue), ZERO)
    total_expenses = sum((r["balance"] for r in expenses), ZERO)
    return {
        "period": _period_label(start, end),
        "revenue": [_row(r, locale) for r in revenue],
        "expenses": [_row(r, locale) for r in expenses],
        "total_revenue": float(total_revenue),
        "total_expenses": float(total_expenses),
        "net_profit": float(total_revenue - total_expenses),
    }


def balance_sheet(company_id: int, start: Optional[datetime] = None, end: Optional[datetime] = None,
                  locale: str = "en") -> dict:
    """Assets, liabilities and equity balances.

    Income and expense accounts are not closed into equity, so their net is
    reported as ``current_earnings`` and included in ``total_equity``; with
    balanced journals ``total_assets == total_liabilities + total_equity``.
    """
    rows = accounts_with_balances(company_id, start, end)
    by_type = {t: [r for r in rows if r["account"].type == t] for t in ("asset", "liability", "equity")}
    totals = {t: sum((r["balance"] for r in items), ZERO) for t, items in by_type.items()}
    income = sum((r["balance"] for r in rows if r["account"].type == "income"), ZERO)
    expense = sum((r["balance"] for r in rows if r["account"].type == "expense"), ZERO)
    current_earnings = income - expense
    total_equity = totals["equity"] + current_earnings
    return {
        "period": _period_label(start, end),
        "assets": [_row(r, locale) for r in by_type["asset"]],
        "liabilities": [_row(r, locale) for r in by_type["liability"]],
        "equity": [_row(r, locale) for r in by_type["equity"]],
        "current_earnings": float(current_earnings),
        "total_assets": float(totals["asset"]),
        "total_liabilities": float(totals["liability"]),
        "total_equity": float(total_equity),
        "total_liabilities_and_equity": float(totals["liability"] + total_equity),
    }


def vat_summary(company_id: int, start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict:
    """Output VAT on non-void invoices against input VAT on posted receipts."""
    invoices = db.session.query(Invoice).filter(Invoice.company_id == company_id, Invoice.status != "void")
    receipts = db.session.query(Receipt).filter(Receipt.company_id == company_id, Receipt.posted.is_(True))
    if start is not None:
        invoices = invoices.filter(Invoice.date >= start)
        receipts = receipts.filter(Receipt.date >= start)
    if end is not None:
        invoices = invoices.filter(Invoice.date <= end)
        receipts = receipts.filter(Receipt.date <= end)

    sales_subtotal = ZERO
    sales_vat = ZERO
    for inv in invoices.all():
        sales_subtotal += Decimal(inv.subtotal or 0)
        sales_vat += Decimal(inv.vat_amount or 0)

    # receipt.amount is VAT-exclusive; vat_amount is the input VAT
    purchases_subtotal = ZERO
    purchases_vat = ZERO
    for rec in receipts.all():
        purchases_subtotal += Decimal(rec.amount or 0)
        purchases_vat += Decimal(rec.vat_amount or 0)

    return {
        "period": _period_label(start, end),
        "sales_subtotal": float(sales_subtotal),
        "sales_vat": float(sales_vat),
        "purchases_subtotal": float(purchases_subtotal),
        "purchases_vat": float(purchases_vat),
        "net_vat_payable": float(sales_vat - purchases_vat),
    }


def trial_balance(company_id: int, start: Optional[datetime] = None, end: Optional[datetime] = None,
                  locale: str = "en") -> dict:
    rows = [r for r in accounts_with_balances(company_id, start, end)
            if r["debit_total"] or r["credit_total"]]
    lines = []
    for r in rows:
        account = r["account"]
        net = r["debit_total"] - r["credit_total"]
        lines.append({
            "account_id": account.id,
            "account_code": account.code,
            "account_name": account.display_name(locale),
            "account_type": account.type,
            "debit": float(r["debit_total"]),
            "credit": float(r["credit_total"]),
            "net_debit": float(net) if net > 0 else 0.0,
            "net_credit": float(-net) if net < 0 else 0.0,
        })
    check = check_balance([{"debit": r["debit_total"], "credit": r["credit_total"]} for r in rows])
    return {
        "period": _period_label(start, end),
        "rows": lines,
        "total_debit": float(check.total_debit),
        "total_credit": float(check.total_credit),
        "discrepancy": float(check.discrepancy),
        "balanced": check.balanced,
    }


AGING_BUCKETS = ("current", "days_30", "days_60", "days_90", "over_90")


def _aging_bucket(days_old: int) -> str:
    if days_old <= 0:
        return "current"
    if days_old <= 30:
        return "days_30"
    if days_old <= 60:
        return "days_60"
    if days_old <= 90:
        return "days_90"
    return "over_90"


def ar_aging(company_id: int, as_of: Optional[datetime] = None) -> dict:
    """Open receivables per customer, bucketed by days since the invoice date.

    Paid and void invoices are not receivable and are left out.
    """
    as_of = as_of or datetime.utcnow()
    invoices = (
        db.session.query(Invoice)
        .filter(Invoice.company_id == company_id, Invoice.status.notin_(("paid", "void")))
        .order_by(Invoice.customer_name, Invoice.date)
        .all()
    )
    customers = {}
    totals = dict.fromkeys(AGING_BUCKETS + ("total",), ZERO)
    for inv in invoices:
        amount = Decimal(inv.total or 0)
        bucket = _aging_bucket((as_of.date() - inv.date.date()).days)
        row = customers.setdefault(inv.customer_name, dict.fromkeys(AGING_BUCKETS + ("total",), ZERO))
        row[bucket] += amount
        row["total"] += amount
        totals[bucket] += amount
        totals["total"] += amount
    return {
        "as_of": f"{as_of:%Y-%m-%d}",
        "period": f"As of {as_of:%Y-%m-%d}",
        "customers": [
            dict({k: float(v) for k, v in row.items()}, customer_name=name)
            for name, row in customers.items()
        ],
        "totals": {k: float(v) for k, v in totals.items()},
    }
