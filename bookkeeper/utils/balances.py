from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Account, JournalEntry, JournalLine, ACCOUNT_TYPES, DEBIT_NORMAL_TYPES
from .numbers import to_decimal

ZERO = Decimal("0")


def signed_balance(account_type: str, debit: object, credit: object) -> Decimal:
    """Balance on the account's normal side."""
    debit, credit = to_decimal(debit), to_decimal(credit)
    if account_type in DEBIT_NORMAL_TYPES:
        return debit - credit
    return credit - debit


def _posted_lines(company_id: int, start: Optional[datetime] = None, end: Optional[datetime] = None):
    q = (
        db.session.query(JournalLine)
        .join(JournalEntry, JournalLine.entry_id == JournalEntry.id)
        .filter(JournalEntry.company_id == company_id, JournalEntry.status == "posted")
    )
    if start is not None:
        q = q.filter(JournalEntry.date >= start)
    if end is not None:
        q = q.filter(JournalEntry.date <= end)
    return q


def posted_totals(company_id: int, start: Optional[datetime] = None,
                  end: Optional[datetime] = None) -> Dict[int, tuple]:
    """Map account id -> (debit_total, credit_total) over posted entries."""
    q = _posted_lines(company_id, start, end).with_entities(
        JournalLine.account_id,
        func.coalesce(func.sum(JournalLine.debit), 0),
        func.coalesce(func.sum(JournalLine.credit), 0),
    ).group_by(JournalLine.account_id)
    return {account_id: (to_decimal(dr), to_decimal(cr)) for account_id, dr, cr in q.all()}


def accounts_with_balances(company_id: int, start: Optional[datetime] = None,
                           end: Optional[datetime] = None, include_inactive: bool = True) -> List[dict]:
    q = db.session.query(Account).filter(Account.company_id == company_id)
    if not include_inactive:
        q = q.filter(Account.is_active.is_(True))
    accounts = q.order_by(Account.code, Account.id).all()
    totals = posted_totals(company_id, start, end)
    rows = []
    for account in accounts:
        debit_total, credit_total = totals.get(account.id, (ZERO, ZERO))
        rows.append({
            "account": account,
            "debit_total": debit_total,
            "credit_total": credit_total,
            "balance": signed_balance(account.type, debit_total, credit_total),
        })
    return rows


def group_by_type(rows: List[dict]) -> "OrderedDict[str, dict]":
    """Group balance rows by account type in chart order, with per-type totals."""
    grouped: "OrderedDict[str, dict]" = OrderedDict(
        (t, {"rows": [], "total": ZERO}) for t in ACCOUNT_TYPES
    )
    for row in rows:
        bucket = grouped.setdefault(row["account"].type, {"rows": [], "total": ZERO})
        bucket["rows"].append(row)
        bucket["total"] += row["balance"]
    return grouped


def serialize_balance_row(row: dict, locale: str = "en") -> dict:
    account = row["account"]
    return {
        "account": account.to_dict(),
        "account_name": account.display_name(locale),
        "debit_total": float(row["debit_total"]),
        "credit_total": float(row["credit_total"]),
        "balance": float(row["balance"]),
    }


def account_has_transactions(account_id: int) -> bool:
    return db.session.query(JournalLine.id).filter(JournalLine.account_id == account_id).first() is not None


def account_ledger(account: Account, start: Optional[datetime] = None, end: Optional[datetime] = None,
                   search: Optional[str] = None, limit: Optional[int] = None, offset: int = 0) -> dict:
    """Posted movements of one account with a running balance.

    The opening balance covers posted lines dated before ``start``. Search
    matches entry number, memo or line description (case-insensitive) and
    narrows the listed movements only.
    """
    base = (
        db.session.query(JournalLine, JournalEntry)
        .join(JournalEntry, JournalLine.entry_id == JournalEntry.id)
        .filter(JournalLine.account_id == account.id, JournalEntry.status == "posted")
    )

    opening = ZERO
    if start is not None:
        dr, cr = (
            base.filter(JournalEntry.date < start)
            .with_entities(func.coalesce(func.sum(JournalLine.debit), 0), func.coalesce(func.sum(JournalLine.credit), 0))
            .one()
        )
        opening = signed_balance(account.type, dr, cr)

    q = base
    if start is not None:
        q = q.filter(JournalEntry.date >= start)
    if end is not None:
        q = q.filter(JournalEntry.date <= end)
    if search:
        pattern = f"%{search.strip().lower()}%"
        q = q.filter(or_(
            func.lower(JournalEntry.entry_number).like(pattern),
            func.lower(func.coalesce(JournalEntry.memo, "")).like(pattern),
            func.lower(func.coalesce(JournalLine.description, "")).like(pattern),
        ))
    q = q.order_by(JournalEntry.date, JournalEntry.id, JournalLine.id)

    running = opening
    total_debit = ZERO
    total_credit = ZERO
    entries = []
    for line, entry in q.all():
        debit, credit = to_decimal(line.debit), to_decimal(line.credit)
        total_debit += debit
        total_credit += credit
        running += signed_balance(account.type, debit, credit)
        entries.append({
            "id": line.id,
            "date": entry.date.isoformat() if entry.date else None,
            "entry_number": entry.entry_number,
            "description": line.description or entry.memo or "",
            "debit": float(debit),
            "credit": float(credit),
            "running_balance": float(running),
            "journal_entry_id": entry.id,
            "journal_line_id": line.id,
            "memo": entry.memo,
            "source": entry.source,
            "status": entry.status,
        })

    total_count = len(entries)
    offset = max(int(offset or 0), 0)
    page = entries[offset:offset + limit] if limit else entries
    return {
        "account": account.to_dict(),
        "opening_balance": float(opening),
        "total_debit": float(total_debit),
        "total_credit": float(total_credit),
        "closing_balance": float(opening + signed_balance(account.type, total_debit, total_credit)),
        "total_count": total_count,
        "entries": page,
    }
