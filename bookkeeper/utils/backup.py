"""Company snapshots: build, preview and restore.

A snapshot is a JSON document holding a company's accounts, journal entries
(with lines), invoices (with lines) and receipts. Restoring replaces those
rows for the company and remaps every internal id reference.
"""
import logging
from datetime import datetime
from typing import Any, Dict

from ..errors import ApiError
from ..extensions import db
from ..models import (
    Account, JournalEntry, JournalLine, Invoice, InvoiceLine, Receipt, ReminderLog,
)
from .numbers import money, parse_date, to_decimal

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def _iso(value):
    return value.isoformat() if value else None


def _amount(value):
    return str(money(value))


def build_snapshot(company_id: int) -> Dict[str, Any]:
    accounts = db.session.query(Account).filter_by(company_id=company_id).order_by(Account.id).all()
    entries = db.session.query(JournalEntry).filter_by(company_id=company_id).order_by(JournalEntry.id).all()
    invoices = db.session.query(Invoice).filter_by(company_id=company_id).order_by(Invoice.id).all()
    receipts = db.session.query(Receipt).filter_by(company_id=company_id).order_by(Receipt.id).all()

    data = {
        "accounts": [{
            "id": a.id, "code": a.code, "name_en": a.name_en, "name_ar": a.name_ar,
            "type": a.type, "is_active": bool(a.is_active),
        } for a in accounts],
        "journal_entries": [{
            "id": e.id, "entry_number": e.entry_number, "date": _iso(e.date), "memo": e.memo,
            "status": e.status, "source": e.source, "source_id": e.source_id,
            "reversed_entry_id": e.reversed_entry_id, "reversal_reason": e.reversal_reason,
            "posted_at": _iso(e.posted_at),
            "lines": [{
                "account_id": l.account_id, "debit": _amount(l.debit), "credit": _amount(l.credit),
                "description": l.description,
            } for l in e.lines],
        } for e in entries],
        "invoices": [{
            "id": i.id, "number": i.number, "customer_name": i.customer_name, "customer_trn": i.customer_trn,
            "customer_email": i.customer_email, "date": _iso(i.date), "due_date": _iso(i.due_date),
            "currency": i.currency, "subtotal": _amount(i.subtotal), "vat_amount": _amount(i.vat_amount),
            "total": _amount(i.total), "status": i.status,
            "lines": [{
                "description": l.description, "quantity": str(to_decimal(l.quantity)),
                "unit_price": _amount(l.unit_price), "vat_rate": str(to_decimal(l.vat_rate)),
            } for l in i.lines],
        } for i in invoices],
        "receipts": [{
            "id": r.id, "merchant": r.merchant, "date": _iso(r.date), "amount": _amount(r.amount),
            "vat_amount": _amount(r.vat_amount), "currency": r.currency, "category": r.category,
            "account_id": r.account_id, "payment_account_id": r.payment_account_id,
            "posted": bool(r.posted), "journal_entry_id": r.journal_entry_id,
        } for r in receipts],
    }
    return {
        "version": SNAPSHOT_VERSION,
        "company_id": company_id,
        "created_at": datetime.utcnow().isoformat(),
        "counts": snapshot_counts(data),
        "data": data,
    }


def snapshot_counts(data: Dict[str, Any]) -> Dict[str, int]:
    return {
        "accounts": len(data.get("accounts") or []),
        "journal_entries": len(data.get("journal_entries") or []),
        "journal_lines": sum(len(e.get("lines") or []) for e in data.get("journal_entries") or []),
        "invoices": len(data.get("invoices") or []),
        "receipts": len(data.get("receipts") or []),
    }


def current_counts(company_id: int) -> Dict[str, int]:
    entry_ids = db.session.query(JournalEntry.id).filter_by(company_id=company_id)
    return {
        "accounts": db.session.query(Account).filter_by(company_id=company_id).count(),
        "journal_entries": entry_ids.count(),
        "journal_lines": db.session.query(JournalLine).filter(JournalLine.entry_id.in_(entry_ids)).count(),
        "invoices": db.session.query(Invoice).filter_by(company_id=company_id).count(),
        "receipts": db.session.query(Receipt).filter_by(company_id=company_id).count(),
    }


def _validate(payload: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
        raise ApiError("Backup payload is malformed", code="INVALID_BACKUP")
    if payload.get("version") != SNAPSHOT_VERSION:
        raise ApiError("Unsupported backup version", code="INVALID_BACKUP")
    return payload["data"]


def preview_restore(company_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
    data = _validate(payload)
    return {
        "backup_created_at": payload.get("created_at"),
        "will_restore": snapshot_counts(data),
        "will_replace": current_counts(company_id),
    }


def clear_company_data(company_id: int) -> None:
    invoice_ids = db.session.query(Invoice.id).filter_by(company_id=company_id)
    entry_ids = db.session.query(JournalEntry.id).filter_by(company_id=company_id)
    db.session.query(ReminderLog).filter(ReminderLog.invoice_id.in_(invoice_ids)).delete(synchronize_session=False)
    db.session.query(Receipt).filter_by(company_id=company_id).delete(synchronize_session=False)
    db.session.query(InvoiceLine).filter(InvoiceLine.invoice_id.in_(invoice_ids)).delete(synchronize_session=False)
    db.session.query(Invoice).filter_by(company_id=company_id).delete(synchronize_session=False)
    db.session.query(JournalLine).filter(JournalLine.entry_id.in_(entry_ids)).delete(synchronize_session=False)
    db.session.query(JournalEntry).filter_by(company_id=company_id).update(
        {JournalEntry.reversed_entry_id: None}, synchronize_session=False
    )
    db.session.query(JournalEntry).filter_by(company_id=company_id).delete(synchronize_session=False)
    db.session.query(Account).filter_by(company_id=company_id).delete(synchronize_session=False)
    db.session.expire_all()


def restore_snapshot(company_id: int, payload: Dict[str, Any]) -> Dict[str, int]:
    """Replace the company's ledger data with the snapshot (caller commits)."""
    data = _validate(payload)
    clear_company_data(company_id)

    account_map: Dict[int, int] = {}
    for a in data.get("accounts") or []:
        acc = Account(company_id=company_id, code=a.get("code"), name_en=a["name_en"], name_ar=a.get("name_ar"),
                      type=a["type"], is_active=bool(a.get("is_active", True)))
        db.session.add(acc)
        db.session.flush()
        account_map[a["id"]] = acc.id

    invoice_map: Dict[int, int] = {}
    for i in data.get("invoices") or []:
        inv = Invoice(
            company_id=company_id, number=i["number"], customer_name=i["customer_name"],
            customer_trn=i.get("customer_trn"), customer_email=i.get("customer_email"),
            date=parse_date(i.get("date")) or datetime.utcnow(), due_date=parse_date(i.get("due_date")),
            currency=i.get("currency") or "AED", subtotal=money(i.get("subtotal")),
            vat_amount=money(i.get("vat_amount")), total=money(i.get("total")), status=i.get("status") or "draft",
        )
        for l in i.get("lines") or []:
            inv.lines.append(InvoiceLine(
                description=l["description"], quantity=to_decimal(l.get("quantity")),
                unit_price=money(l.get("unit_price")), vat_rate=to_decimal(l.get("vat_rate")),
            ))
        db.session.add(inv)
        db.session.flush()
        invoice_map[i["id"]] = inv.id

    entry_map: Dict[int, int] = {}
    restored_entries = []
    for e in data.get("journal_entries") or []:
        entry = JournalEntry(
            company_id=company_id, entry_number=e["entry_number"],
            date=parse_date(e.get("date")) or datetime.utcnow(), memo=e.get("memo"),
            status=e.get("status") or "draft", source=e.get("source") or "manual",
            reversal_reason=e.get("reversal_reason"), posted_at=parse_date(e.get("posted_at")),
        )
        for l in e.get("lines") or []:
            if l.get("account_id") not in account_map:
                raise ApiError(f"Backup line references unknown account {l.get('account_id')}", code="INVALID_BACKUP")
            entry.lines.append(JournalLine(
                account_id=account_map[l["account_id"]], debit=money(l.get("debit")),
                credit=money(l.get("credit")), description=l.get("description"),
            ))
        db.session.add(entry)
        db.session.flush()
        entry_map[e["id"]] = entry.id
        restored_entries.append((entry, e))

    receipt_map: Dict[int, int] = {}
    for r in data.get("receipts") or []:
        rec = Receipt(
            company_id=company_id, merchant=r.get("merchant"), date=parse_date(r.get("date")),
            amount=money(r.get("amount")), vat_amount=money(r.get("vat_amount")),
            currency=r.get("currency") or "AED", category=r.get("category"),
            account_id=account_map.get(r.get("account_id")),
            payment_account_id=account_map.get(r.get("payment_account_id")),
            posted=bool(r.get("posted")), journal_entry_id=entry_map.get(r.get("journal_entry_id")),
        )
        db.session.add(rec)
        db.session.flush()
        receipt_map[r["id"]] = rec.id

    # Second pass: references between restored rows
    source_maps = {"invoice": invoice_map, "payment": invoice_map, "receipt": receipt_map, "reversal": entry_map}
    for entry, raw in restored_entries:
        if raw.get("reversed_entry_id") is not None:
            entry.reversed_entry_id = entry_map.get(raw["reversed_entry_id"])
        if raw.get("source_id") is not None:
            entry.source_id = source_maps.get(entry.source, {}).get(raw["source_id"])
    db.session.flush()

    counts = snapshot_counts(data)
    logger.info("Restored backup into company %s: %s", company_id, counts)
    return counts
