"""Flat row/column shapes for spreadsheet and PDF export.

The ``prepare_*`` functions are pure: they take report or resource payloads
(as returned by the API) and lay them out as an ``ExportSheet``. Rendering to
xlsx/pdf bytes happens in ``build_workbook`` / ``render_sheet_pdf``.
"""
import re
from dataclasses import dataclass, field
from datetime import datetime, date
from io import BytesIO
from typing import Any, Dict, Iterable, List, Optional

from .numbers import parse_date, to_decimal

MAX_SHEET_NAME = 31
_INVALID_SHEET_CHARS = re.compile(r"[\[\]:*?/\\]")


@dataclass
class ExportColumn:
    header: str
    key: str
    width: int = 15
    align: str = "left"


@dataclass
class ExportSheet:
    columns: List[ExportColumn]
    rows: List[Dict[str, Any]] = field(default_factory=list)
    sheet_name: str = "Sheet1"

    def header_row(self) -> List[str]:
        return [col.header for col in self.columns]

    def value_rows(self) -> List[List[Any]]:
        out = []
        for row in self.rows:
            values = []
            for col in self.columns:
                value = row.get(col.key)
                values.append("" if value is None else value)
            out.append(values)
        return out


def sheet_title(name: Optional[str]) -> str:
    cleaned = _INVALID_SHEET_CHARS.sub("-", name or "Sheet1").strip() or "Sheet1"
    return cleaned[:MAX_SHEET_NAME]


def _get(obj: Any, *keys: str, default: Any = None) -> Any:
    """First present key of a mapping (snake_case or camelCase payloads)."""
    if obj is None:
        return default
    for key in keys:
        if isinstance(obj, dict):
            if obj.get(key) is not None:
                return obj[key]
        elif getattr(obj, key, None) is not None:
            return getattr(obj, key)
    return default


def format_amount(value: Any) -> str:
    if value is None or value == "":
        return "0.00"
    return f"{to_decimal(value):.2f}"


def format_date_for_export(value: Any) -> str:
    """``31 Mar 2024`` style dates; empty for missing values."""
    if not value:
        return ""
    if isinstance(value, (datetime, date)):
        d = value
    else:
        d = parse_date(value)
        if d is None:
            return ""
    return d.strftime("%d %b %Y")


def format_currency_for_export(amount: Any, currency: str = "AED") -> str:
    if amount is None or amount == "":
        return ""
    return f"{currency} {to_decimal(amount):.2f}"


def _blank(columns: Iterable[ExportColumn]) -> Dict[str, str]:
    return {col.key: "" for col in columns}


# --- resources ---

def prepare_invoices_for_export(invoices: List[Any]) -> ExportSheet:
    columns = [
        ExportColumn("Invoice #", "number", 15),
        ExportColumn("Date", "date", 12),
        ExportColumn("Customer", "customer_name", 25),
        ExportColumn("Customer TRN", "customer_trn", 18),
        ExportColumn("Subtotal", "subtotal", 15, "right"),
        ExportColumn("VAT Amount", "vat_amount", 15, "right"),
        ExportColumn("Total", "total", 15, "right"),
        ExportColumn("Status", "status", 12),
    ]
    rows = [{
        "number": _get(inv, "number", default=""),
        "date": format_date_for_export(_get(inv, "date")),
        "customer_name": _get(inv, "customer_name", "customerName", default=""),
        "customer_trn": _get(inv, "customer_trn", "customerTrn", default=""),
        "subtotal": format_amount(_get(inv, "subtotal")),
        "vat_amount": format_amount(_get(inv, "vat_amount", "vatAmount")),
        "total": format_amount(_get(inv, "total")),
        "status": _get(inv, "status", default=""),
    } for inv in invoices or []]
    return ExportSheet(columns, rows, "Invoices")


def prepare_invoice_detail_for_export(invoice: Dict[str, Any]) -> ExportSheet:
    """One invoice: its lines followed by subtotal, VAT and total rows."""
    columns = [
        ExportColumn("Description", "description", 35),
        ExportColumn("Quantity", "quantity", 10, "right"),
        ExportColumn("Unit Price", "unit_price", 15, "right"),
        ExportColumn("VAT Rate", "vat_rate", 10, "right"),
        ExportColumn("Line Total", "line_total", 15, "right"),
    ]
    rows = []
    for line in _get(invoice, "lines", default=[]) or []:
        qty = to_decimal(_get(line, "quantity"))
        price = to_decimal(_get(line, "unit_price", "unitPrice"))
        rate = to_decimal(_get(line, "vat_rate", "vatRate", default=0.05))
        rows.append({
            "description": _get(line, "description", default=""),
            "quantity": f"{qty.normalize():f}" if qty else "0",
            "unit_price": format_amount(price),
            "vat_rate": f"{(rate * 100).normalize():f}%",
            "line_total": format_amount(qty * price),
        })
    rows.append(_blank(columns))
    rows.append({"description": "Subtotal", "line_total": format_amount(_get(invoice, "subtotal"))})
    rows.append({"description": "VAT", "line_total": format_amount(_get(invoice, "vat_amount", "vatAmount"))})
    rows.append({"description": "Total", "line_total": format_amount(_get(invoice, "total"))})
    return ExportSheet(columns, rows, sheet_title(_get(invoice, "number", default="Invoice")))


def prepare_receipts_for_export(receipts: List[Any]) -> ExportSheet:
    columns = [
        ExportColumn("Date", "date", 12),
        ExportColumn("Merchant", "merchant", 25),
        ExportColumn("Category", "category", 18),
        ExportColumn("Amount", "amount", 15, "right"),
        ExportColumn("VAT Amount", "vat_amount", 15, "right"),
        ExportColumn("Currency", "currency", 10),
        ExportColumn("Status", "status", 12),
    ]
    rows = [{
        "date": format_date_for_export(_get(r, "date")),
        "merchant": _get(r, "merchant", default=""),
        "category": _get(r, "category", default=""),
        "amount": format_amount(_get(r, "amount")),
        "vat_amount": format_amount(_get(r, "vat_amount", "vatAmount")),
        "currency": _get(r, "currency", default="AED"),
        "status": "Posted" if _get(r, "posted", "postedToJournal", default=False) else "Pending",
    } for r in receipts or []]
    return ExportSheet(columns, rows, "Expenses")


def prepare_accounts_for_export(rows: List[Dict[str, Any]]) -> ExportSheet:
    """Chart of accounts, with balances when the rows carry them."""
    columns = [
        ExportColumn("Code", "code", 10),
        ExportColumn("Account (EN)", "name_en", 30),
        ExportColumn("Account (AR)", "name_ar", 30),
        ExportColumn("Type", "type", 12),
        ExportColumn("Active", "active", 8),
        ExportColumn("Balance (AED)", "balance", 15, "right"),
    ]
    out = []
    for row in rows or []:
        account = _get(row, "account", default=row)
        out.append({
            "code": _get(account, "code", default=""),
            "name_en": _get(account, "name_en", "nameEn", default=""),
            "name_ar": _get(account, "name_ar", "nameAr", default=""),
            "type": _get(account, "type", default=""),
            "active": "Yes" if _get(account, "is_active", "isActive", default=True) else "No",
            "balance": format_amount(_get(row, "balance")),
        })
    return ExportSheet(columns, out, "Chart of Accounts")


def prepare_journal_for_export(entries: List[Dict[str, Any]]) -> ExportSheet:
    """One row per journal line, entry fields repeated on each line."""
    columns = [
        ExportColumn("Entry #", "entry_number", 18),
        ExportColumn("Date", "date", 12),
        ExportColumn("Memo", "memo", 30),
        ExportColumn("Status", "status", 10),
        ExportColumn("Account", "account", 30),
        ExportColumn("Debit", "debit", 15, "right"),
        ExportColumn("Credit", "credit", 15, "right"),
    ]
    rows = []
    for entry in entries or []:
        for line in _get(entry, "lines", default=[]) or []:
            account = _get(line, "account") or {}
            label = " ".join(p for p in (_get(account, "code", default=""), _get(account, "name_en", "nameEn", default="")) if p)
            rows.append({
                "entry_number": _get(entry, "entry_number", "entryNumber", default=""),
                "date": format_date_for_export(_get(entry, "date")),
                "memo": _get(entry, "memo", default=""),
                "status": _get(entry, "status", default=""),
                "account": label,
                "debit": format_amount(_get(line, "debit")),
                "credit": format_amount(_get(line, "credit")),
            })
    return ExportSheet(columns, rows, "Journal")


# --- reports ---

_REPORT_COLUMNS = (
    ("Account", "account", 30, "left"),
    ("Code", "code", 10, "left"),
    ("Amount (AED)", "amount", 15, "right"),
)


def _report_columns() -> List[ExportColumn]:
    return [ExportColumn(*c) for c in _REPORT_COLUMNS]


def _section(rows: list, title: str, items: Optional[list], total_label: str, total: Any) -> None:
    rows.append({"account": title, "code": "", "amount": ""})
    for item in items or []:
        rows.append({
            "account": _get(item, "account_name", "accountName", default=""),
            "code": _get(item, "account_code", "accountCode", default=""),
            "amount": format_amount(_get(item, "amount")),
        })
    rows.append({"account": total_label, "code": "", "amount": format_amount(total)})


def prepare_profit_loss_for_export(profit_loss: Optional[Dict[str, Any]]) -> ExportSheet:
    pl = profit_loss or {}
    rows: List[Dict[str, Any]] = []
    _section(rows, "REVENUE", _get(pl, "revenue"), "Total Revenue", _get(pl, "total_revenue", "totalRevenue"))
    rows.append({"account": "", "code": "", "amount": ""})
    _section(rows, "EXPENSES", _get(pl, "expenses"), "Total Expenses", _get(pl, "total_expenses", "totalExpenses"))
    rows.append({"account": "", "code": "", "amount": ""})
    rows.append({"account": "NET PROFIT", "code": "", "amount": format_amount(_get(pl, "net_profit", "netProfit"))})
    return ExportSheet(_report_columns(), rows, "Profit & Loss")


def prepare_balance_sheet_for_export(balance_sheet: Optional[Dict[str, Any]]) -> ExportSheet:
    bs = balance_sheet or {}
    rows: List[Dict[str, Any]] = []
    _section(rows, "ASSETS", _get(bs, "assets"), "Total Assets", _get(bs, "total_assets", "totalAssets"))
    rows.append({"account": "", "code": "", "amount": ""})
    _section(rows, "LIABILITIES", _get(bs, "liabilities"), "Total Liabilities",
             _get(bs, "total_liabilities", "totalLiabilities"))
    rows.append({"account": "", "code": "", "amount": ""})
    equity = list(_get(bs, "equity", default=[]) or [])
    earnings = _get(bs, "current_earnings", "currentEarnings")
    if earnings:
        equity.append({"account_name": "Current Period Earnings", "account_code": "", "amount": earnings})
    _section(rows, "EQUITY", equity, "Total Equity", _get(bs, "total_equity", "totalEquity"))
    return ExportSheet(_report_columns(), rows, "Balance Sheet")


def prepare_vat_summary_for_export(vat_summary: Optional[Dict[str, Any]]) -> ExportSheet:
    vs = vat_summary or {}
    columns = [
        ExportColumn("Description", "description", 30),
        ExportColumn("Amount (AED)", "amount", 15, "right"),
    ]
    blank = {"description": "", "amount": ""}
    rows = [
        {"description": "Period", "amount": _get(vs, "period", default="")},
        dict(blank),
        {"description": "Sales (Excl. VAT)", "amount": format_amount(_get(vs, "sales_subtotal", "salesSubtotal"))},
        {"description": "Output VAT (5%)", "amount": format_amount(_get(vs, "sales_vat", "salesVAT"))},
        dict(blank),
        {"description": "Purchases (Excl. VAT)", "amount": format_amount(_get(vs, "purchases_subtotal", "purchasesSubtotal"))},
        {"description": "Input VAT (5%)", "amount": format_amount(_get(vs, "purchases_vat", "purchasesVAT"))},
        dict(blank),
        {"description": "Net VAT Payable", "amount": format_amount(_get(vs, "net_vat_payable", "netVATPayable"))},
    ]
    return ExportSheet(columns, rows, "VAT Summary")


def prepare_trial_balance_for_export(trial_balance: Optional[Dict[str, Any]]) -> ExportSheet:
    tb = trial_balance or {}
    columns = [
        ExportColumn("Code", "code", 10),
        ExportColumn("Account", "account", 30),
        ExportColumn("Debit (AED)", "debit", 15, "right"),
        ExportColumn("Credit (AED)", "credit", 15, "right"),
    ]
    rows = [{
        "code": _get(r, "account_code", default=""),
        "account": _get(r, "account_name", default=""),
        "debit": format_amount(_get(r, "debit")),
        "credit": format_amount(_get(r, "credit")),
    } for r in _get(tb, "rows", default=[]) or []]
    rows.append(_blank(columns))
    rows.append({
        "code": "",
        "account": "TOTAL",
        "debit": format_amount(_get(tb, "total_debit")),
        "credit": format_amount(_get(tb, "total_credit")),
    })
    return ExportSheet(columns, rows, "Trial Balance")


def prepare_aging_for_export(aging: Optional[Dict[str, Any]]) -> ExportSheet:
    report = aging or {}
    columns = [
        ExportColumn("Customer", "customer", 30),
        ExportColumn("Current", "current", 14, "right"),
        ExportColumn("1-30 Days", "days_30", 14, "right"),
        ExportColumn("31-60 Days", "days_60", 14, "right"),
        ExportColumn("61-90 Days", "days_90", 14, "right"),
        ExportColumn("Over 90 Days", "over_90", 14, "right"),
        ExportColumn("Total (AED)", "total", 15, "right"),
    ]
    amount_keys = ("current", "days_30", "days_60", "days_90", "over_90", "total")
    rows = []
    for customer in _get(report, "customers", default=[]) or []:
        row = {"customer": _get(customer, "customer_name", "name", default="")}
        row.update({k: format_amount(_get(customer, k)) for k in amount_keys})
        rows.append(row)
    rows.append(_blank(columns))
    totals = _get(report, "totals", default={}) or {}
    total_row = {"customer": "TOTAL"}
    total_row.update({k: format_amount(_get(totals, k)) for k in amount_keys})
    rows.append(total_row)
    return ExportSheet(columns, rows, "AR Aging")


# --- rendering ---

def build_workbook(sheets: List[ExportSheet]) -> bytes:
    from openpyxl import Workbook
    from openpyxl.styles import Font
    from openpyxl.utils import get_column_letter

    wb = Workbook()
    wb.remove(wb.active)
    for sheet in sheets:
        ws = wb.create_sheet(title=sheet_title(sheet.sheet_name))
        ws.append(sheet.header_row())
        for cell in ws[1]:
            cell.font = Font(bold=True)
        for values in sheet.value_rows():
            ws.append(values)
        for idx, col in enumerate(sheet.columns, start=1):
            ws.column_dimensions[get_column_letter(idx)].width = col.width or 15
    if not wb.worksheets:
        wb.create_sheet(title="Sheet1")
    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


def render_sheet_pdf(sheet: ExportSheet, title: str, subtitle: Optional[str] = None) -> bytes:
    from reportlab.lib.pagesizes import A4
    from reportlab.pdfgen import canvas

    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    width, height = A4
    left, right = 40, width - 40
    total_width = sum(col.width or 15 for col in sheet.columns) or 1
    scale = (right - left) / total_width
    # x of each column's left edge
    edges = []
    x = left
    for col in sheet.columns:
        edges.append(x)
        x += (col.width or 15) * scale

    def draw_header(y):
        c.setFont("Helvetica-Bold", 10)
        for col, x0 in zip(sheet.columns, edges):
            if col.align == "right":
                c.drawRightString(x0 + (col.width or 15) * scale - 4, y, col.header)
            else:
                c.drawString(x0, y, col.header)
        c.setFont("Helvetica", 9)
        return y - 15

    y = height - 40
    c.setFont("Helvetica-Bold", 16)
    c.drawString(left, y, title)
    y -= 20
    if subtitle:
        c.setFont("Helvetica", 10)
        c.drawString(left, y, subtitle)
        y -= 20
    y = draw_header(y)
    for values in sheet.value_rows():
        if y < 40:
            c.showPage()
            y = draw_header(height - 40)
        for col, x0, value in zip(sheet.columns, edges, values):
            text = str(value)
            if col.align == "right":
                c.drawRightString(x0 + (col.width or 15) * scale - 4, y, text)
            else:
                c.drawString(x0, y, text)
        y -= 13
    c.showPage()
    c.save()
    return buf.getvalue()


def render_invoice_pdf(invoice: Dict[str, Any], company: Optional[Dict[str, Any]] = None,
                       title: str = "Invoice") -> bytes:
    from reportlab.lib.pagesizes import A4
    from reportlab.pdfgen import canvas

    company = company or {}
    currency = _get(invoice, "currency", default="AED")
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    width, height = A4
    y = height - 50
    c.setFont("Helvetica-Bold", 18)
    c.drawString(40, y, title)
    c.setFont("Helvetica-Bold", 12)
    c.drawRightString(width - 40, y, _get(company, "name", default=""))
    y -= 16
    c.setFont("Helvetica", 9)
    if _get(company, "trn_vat_number"):
        c.drawRightString(width - 40, y, f"TRN: {company['trn_vat_number']}")
        y -= 12
    if _get(company, "business_address"):
        c.drawRightString(width - 40, y, str(company["business_address"])[:90])
        y -= 12

    y -= 10
    c.setFont("Helvetica", 10)
    c.drawString(40, y, f"Invoice #: {_get(invoice, 'number', default='')}")
    y -= 14
    c.drawString(40, y, f"Date: {format_date_for_export(_get(invoice, 'date'))}")
    if _get(invoice, "due_date"):
        y -= 14
        c.drawString(40, y, f"Due: {format_date_for_export(invoice['due_date'])}")
    y -= 14
    c.drawString(40, y, f"Bill to: {_get(invoice, 'customer_name', default='')}")
    if _get(invoice, "customer_trn"):
        y -= 14
        c.drawString(40, y, f"Customer TRN: {invoice['customer_trn']}")

    detail = prepare_invoice_detail_for_export(invoice)
    y -= 30

    def draw_header(y):
        c.setFont("Helvetica-Bold", 10)
        c.drawString(40, y, "Description")
        c.drawRightString(330, y, "Qty")
        c.drawRightString(410, y, "Unit Price")
        c.drawRightString(470, y, "VAT")
        c.drawRightString(width - 40, y, f"Amount ({currency})")
        c.setFont("Helvetica", 10)
        return y - 15

    y = draw_header(y)
    for row in detail.rows:
        if y < 60:
            c.showPage()
            y = draw_header(height - 50)
        if row.get("quantity"):
            c.drawString(40, y, str(row["description"])[:45])
            c.drawRightString(330, y, row["quantity"])
            c.drawRightString(410, y, row["unit_price"])
            c.drawRightString(470, y, row["vat_rate"])
            c.drawRightString(width - 40, y, row["line_total"])
        elif row.get("description"):
            c.setFont("Helvetica-Bold", 10)
            c.drawRightString(470, y, row["description"])
            c.drawRightString(width - 40, y, row["line_total"])
            c.setFont("Helvetica", 10)
        y -= 14

    footer = _get(company, "invoice_footer_note")
    if footer:
        c.setFont("Helvetica-Oblique", 8)
        c.drawString(40, 40, str(footer)[:120])
    c.showPage()
    c.save()
    return buf.getvalue()
