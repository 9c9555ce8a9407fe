"""Double-entry journal rules.

Every entry needs at least two lines, a non-zero debit side and credit side,
and debits equal to credits within ``DEFAULT_TOLERANCE``. Entries move
``draft -> posted -> void``; a posted entry is never edited, only reversed.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional

from ..errors import JournalValidationError, LedgerStateError
from ..extensions import db
from ..models import Account, JournalEntry, JournalLine, ENTRY_SOURCES
from .numbers import MAX_AMOUNT, money, to_decimal

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = Decimal("0.01")
MIN_LINES = 2


@dataclass
class BalanceCheck:
    total_debit: Decimal
    total_credit: Decimal
    discrepancy: Decimal
    balanced: bool
    line_count: int

    def to_dict(self):
        return {
            "total_debit": float(self.total_debit),
            "total_credit": float(self.total_credit),
            "discrepancy": float(self.discrepancy),
            "balanced": self.balanced,
            "line_count": self.line_count,
        }


def _line_value(line: Any, key: str) -> Any:
    if isinstance(line, Mapping):
        return line.get(key)
    return getattr(line, key, None)


def _line_account_id(line: Any) -> Any:
    value = _line_value(line, "account_id")
    if value is None:
        value = _line_value(line, "accountId")
    return value


def check_balance(lines: Iterable[Any], tolerance: object = DEFAULT_TOLERANCE) -> BalanceCheck:
    """Sum the debit and credit sides of ``lines`` and compare them.

    Lines may be mappings or objects with ``debit``/``credit`` attributes.
    Missing or unparseable amounts count as zero. The entry is balanced when
    the absolute difference is below ``tolerance``.
    """
    total_debit = Decimal("0")
    total_credit = Decimal("0")
    count = 0
    for line in lines or []:
        count += 1
        total_debit += to_decimal(_line_value(line, "debit"))
        total_credit += to_decimal(_line_value(line, "credit"))
    discrepancy = abs(total_debit - total_credit)
    return BalanceCheck(
        total_debit=total_debit,
        total_credit=total_credit,
        discrepancy=discrepancy,
        balanced=discrepancy < to_decimal(tolerance),
        line_count=count,
    )


def validate_lines(lines: Optional[List[Any]], tolerance: object = DEFAULT_TOLERANCE) -> BalanceCheck:
    """Raise JournalValidationError unless ``lines`` form a postable entry."""
    lines = list(lines or [])
    if len(lines) < MIN_LINES:
        raise JournalValidationError("Journal entry must have at least 2 lines", code="TOO_FEW_LINES")
    for line in lines:
        debit = to_decimal(_line_value(line, "debit"))
        credit = to_decimal(_line_value(line, "credit"))
        if debit < 0 or credit < 0:
            raise JournalValidationError("Debit and credit amounts cannot be negative", code="NEGATIVE_AMOUNT")
        if debit > MAX_AMOUNT or credit > MAX_AMOUNT:
            raise JournalValidationError("Amount is too large", code="VALIDATION_ERROR")
    check = check_balance(lines, tolerance)
    if check.total_debit == 0 or check.total_credit == 0:
        raise JournalValidationError("Entry must have at least one debit and one credit", code="ONE_SIDED")
    if not check.balanced:
        raise JournalValidationError(
            f"Debits ({check.total_debit:.2f}) must equal credits ({check.total_credit:.2f})",
            code="UNBALANCED",
            extra={"discrepancy": float(check.discrepancy)},
        )
    return check


def generate_entry_number(company_id: int, entry_date: datetime) -> str:
    """Next ``JE-YYYYMMDD-NNN`` number for the company on ``entry_date``."""
    prefix = f"JE-{entry_date:%Y%m%d}-"
    existing = (
        db.session.query(JournalEntry.entry_number)
        .filter(JournalEntry.company_id == company_id, JournalEntry.entry_number.like(f"{prefix}%"))
        .all()
    )
    highest = 0
    for (number,) in existing:
        try:
            highest = max(highest, int(number[len(prefix):]))
        except (TypeError, ValueError):
            continue
    return f"{prefix}{highest + 1:03d}"


def _resolve_accounts(company_id: int, lines: List[Any]) -> dict:
    ids = set()
    for line in lines:
        try:
            ids.add(int(_line_account_id(line)))
        except (TypeError, ValueError):
            raise JournalValidationError("Every line needs an account", code="ACCOUNT_REQUIRED")
    accounts = {a.id: a for a in db.session.query(Account).filter(Account.id.in_(ids)).all()}
    for account_id in ids:
        account = accounts.get(account_id)
        if account is None or account.company_id != company_id:
            raise JournalValidationError(f"Account {account_id} does not belong to this company", code="INVALID_ACCOUNT")
        if not account.is_active:
            raise JournalValidationError(f"Account {account.code or account_id} is inactive", code="INACTIVE_ACCOUNT")
    return accounts


def _add_lines(entry: JournalEntry, lines: List[Any]) -> None:
    for line in lines:
        entry.lines.append(JournalLine(
            account_id=int(_line_account_id(line)),
            debit=money(_line_value(line, "debit")),
            credit=money(_line_value(line, "credit")),
            description=_line_value(line, "description") or None,
        ))


def create_entry(company_id: int, user_id: Optional[int], entry_date: datetime, memo: Optional[str],
                 lines: List[Any], status: str = "draft", source: str = "manual",
                 source_id: Optional[int] = None, validate: bool = True) -> JournalEntry:
    """Add a new journal entry to the session (caller commits)."""
    if validate:
        validate_lines(lines)
    _resolve_accounts(company_id, lines)
    if status not in ("draft", "posted"):
        raise JournalValidationError("New entries must be draft or posted", code="INVALID_STATUS")
    if source not in ENTRY_SOURCES:
        source = "manual"
    entry_date = entry_date or datetime.utcnow()
    entry = JournalEntry(
        company_id=company_id,
        entry_number=generate_entry_number(company_id, entry_date),
        date=entry_date,
        memo=memo,
        status=status,
        source=source,
        source_id=source_id,
        created_by=user_id,
    )
    if status == "posted":
        entry.posted_by = user_id
        entry.posted_at = datetime.utcnow()
    _add_lines(entry, lines)
    db.session.add(entry)
    db.session.flush()
    logger.info("Journal entry %s created as %s (company %s)", entry.entry_number, status, company_id)
    return entry


def _ensure_draft(entry: JournalEntry, action: str) -> None:
    if entry.status == "posted":
        raise LedgerStateError(
            f"Posted journal entries cannot be {action}. Use reversal to correct posted entries.",
            code="ENTRY_POSTED",
        )
    if entry.status == "void":
        raise LedgerStateError(f"Void journal entries cannot be {action}.", code="ENTRY_VOID")


def update_entry(entry: JournalEntry, user_id: Optional[int], lines: List[Any],
                 entry_date: Optional[datetime] = None, memo: Optional[str] = None) -> JournalEntry:
    """Replace a draft entry's lines (and optionally date/memo)."""
    _ensure_draft(entry, "edited")
    validate_lines(lines)
    _resolve_accounts(entry.company_id, lines)
    if entry_date is not None:
        entry.date = entry_date
    if memo is not None:
        entry.memo = memo
    entry.lines.clear()
    db.session.flush()
    _add_lines(entry, lines)
    entry.updated_by = user_id
    entry.updated_at = datetime.utcnow()
    db.session.flush()
    return entry


def post_entry(entry: JournalEntry, user_id: Optional[int]) -> JournalEntry:
    if entry.status == "posted":
        raise LedgerStateError("Entry is already posted and cannot be modified", code="ENTRY_POSTED")
    if entry.status == "void":
        raise LedgerStateError("Void entries cannot be posted or reactivated", code="ENTRY_VOID")
    check = check_balance(entry.lines)
    if not check.balanced:
        raise JournalValidationError("Cannot post: Debits must equal credits", code="UNBALANCED",
                                     extra={"discrepancy": float(check.discrepancy)})
    entry.status = "posted"
    entry.posted_by = user_id
    entry.posted_at = datetime.utcnow()
    db.session.flush()
    logger.info("Journal entry %s posted", entry.entry_number)
    return entry


def reverse_entry(entry: JournalEntry, user_id: Optional[int], reason: Optional[str] = None) -> JournalEntry:
    """Create a posted mirror of ``entry`` and void the original."""
    if entry.status != "posted":
        raise LedgerStateError("Only posted entries can be reversed", code=f"ENTRY_{entry.status.upper()}")
    now = datetime.utcnow()
    reversal = JournalEntry(
        company_id=entry.company_id,
        entry_number=generate_entry_number(entry.company_id, now),
        date=now,
        memo=f"Reversal of {entry.entry_number}: {reason or 'No reason provided'}",
        status="posted",
        source="reversal",
        source_id=entry.id,
        reversed_entry_id=entry.id,
        reversal_reason=reason or None,
        created_by=user_id,
        posted_by=user_id,
        posted_at=now,
    )
    for line in entry.lines:
        reversal.lines.append(JournalLine(
            account_id=line.account_id,
            debit=line.credit,
            credit=line.debit,
            description=f"Reversal: {line.description or ''}",
        ))
    db.session.add(reversal)
    entry.status = "void"
    entry.updated_by = user_id
    entry.updated_at = now
    db.session.flush()
    logger.info("Journal entry %s reversed by %s", entry.entry_number, reversal.entry_number)
    return reversal


def delete_entry(entry: JournalEntry) -> None:
    _ensure_draft(entry, "deleted")
    db.session.delete(entry)
    db.session.flush()


def entries_for_source(company_id: int, source: str, source_id: int) -> List[JournalEntry]:
    return (
        db.session.query(JournalEntry)
        .filter_by(company_id=company_id, source=source, source_id=source_id)
        .order_by(JournalEntry.id)
        .all()
    )
