from typing import Optional

from ..extensions import db
from ..models import Account

# UAE chart of accounts: (code, English name, Arabic name, type)
UAE_SEED_COA = [
    ("1010", "Cash", "نقد", "asset"),
    ("1020", "Bank", "بنك", "asset"),
    ("1100", "Accounts Receivable", "حسابات مدينة", "asset"),
    ("1200", "VAT Receivable", "ضريبة مستردة", "asset"),
    ("2010", "Accounts Payable", "حسابات دائنة", "liability"),
    ("2100", "VAT Payable", "ضريبة مستحقة", "liability"),
    ("3010", "Owner's Equity", "حقوق الملكية", "equity"),
    ("4010", "Sales Revenue", "إيرادات المبيعات", "income"),
    ("4900", "Other Income", "إيرادات أخرى", "income"),
    ("5010", "COGS", "تكلفة البضاعة المباعة", "expense"),
    ("6010", "Rent Expense", "مصروف الإيجار", "expense"),
    ("6020", "Utilities Expense", "مصروف المرافق", "expense"),
    ("6030", "Marketing Expense", "مصروف التسويق", "expense"),
    ("6040", "Office Supplies", "مستلزمات مكتبية", "expense"),
    ("6050", "Travel Expenses", "مصروفات السفر", "expense"),
]

ACCOUNTS_RECEIVABLE = "Accounts Receivable"
SALES_REVENUE = "Sales Revenue"
VAT_PAYABLE = "VAT Payable"


def seed_chart_of_accounts(company_id: int) -> int:
    """Create any missing seed accounts (matched by English name). Returns how many were added."""
    existing = {
        (a.name_en or "").strip().lower(): a
        for a in db.session.query(Account).filter_by(company_id=company_id).all()
    }
    taken_codes = {a.code for a in existing.values() if a.code}
    created = 0
    for code, name_en, name_ar, acc_type in UAE_SEED_COA:
        if name_en.lower() in existing:
            continue
        db.session.add(Account(
            company_id=company_id,
            code=code if code not in taken_codes else None,
            name_en=name_en,
            name_ar=name_ar,
            type=acc_type,
            is_active=True,
        ))
        created += 1
    if created:
        db.session.flush()
    return created


def find_account(company_id: int, name_en: str) -> Optional[Account]:
    return (
        db.session.query(Account)
        .filter(Account.company_id == company_id, db.func.lower(Account.name_en) == name_en.lower())
        .first()
    )
