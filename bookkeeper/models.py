from .extensions import db
from flask_login import UserMixin
from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash
from decimal import Decimal
from typing import Optional

ACCOUNT_TYPES = ("asset", "liability", "equity", "income", "expense")
# Accounts whose balance grows on the debit side
DEBIT_NORMAL_TYPES = ("asset", "expense")
COMPANY_ROLES = ("owner", "accountant", "cfo", "employee")
ENTRY_STATUSES = ("draft", "posted", "void")
ENTRY_SOURCES = ("manual", "invoice", "receipt", "payment", "reversal", "system")
INVOICE_STATUSES = ("draft", "sent", "paid", "void")


class User(db.Model, UserMixin):
    __tablename__ = "users"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(180), unique=True, index=True, nullable=False)
    # Empty for placeholder users created by a team invitation
    password_hash = db.Column(db.String(256), nullable=False, default="")
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    last_login_at = db.Column(db.DateTime)

    memberships = db.relationship("CompanyUser", back_populates="user", cascade="all, delete-orphan")

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def is_placeholder(self) -> bool:
        return not self.password_hash

    @property
    def is_active(self):
        return bool(self.active)

    def get_id(self):
        return str(self.id)

    def to_dict(self):
        return {"id": self.id, "name": self.name, "email": self.email, "is_admin": bool(self.is_admin)}


class Company(db.Model):
    __tablename__ = "companies"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), unique=True, nullable=False)
    base_currency = db.Column(db.String(3), default="AED", nullable=False)
    locale = db.Column(db.String(5), default="en", nullable=False)  # en / ar
    legal_structure = db.Column(db.String(50))
    industry = db.Column(db.String(100))
    registration_number = db.Column(db.String(100))
    business_address = db.Column(db.Text)
    contact_phone = db.Column(db.String(50))
    contact_email = db.Column(db.String(180))
    website_url = db.Column(db.String(255))
    # Tax & compliance
    trn_vat_number = db.Column(db.String(20))
    tax_registration_type = db.Column(db.String(50))
    vat_filing_frequency = db.Column(db.String(20))  # monthly / quarterly / annually
    tax_registration_date = db.Column(db.DateTime)
    # Invoice customization
    invoice_custom_title = db.Column(db.String(100))
    invoice_footer_note = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    members = db.relationship("CompanyUser", back_populates="company", cascade="all, delete-orphan")

    EDITABLE_FIELDS = (
        "name", "base_currency", "locale", "legal_structure", "industry", "registration_number",
        "business_address", "contact_phone", "contact_email", "website_url", "trn_vat_number",
        "tax_registration_type", "vat_filing_frequency", "invoice_custom_title", "invoice_footer_note",
    )

    @property
    def invoice_title(self) -> str:
        if self.invoice_custom_title:
            return self.invoice_custom_title
        return "Tax Invoice" if self.trn_vat_number else "Invoice"

    def to_dict(self):
        out = {f: getattr(self, f) for f in self.EDITABLE_FIELDS}
        out["id"] = self.id
        out["tax_registration_date"] = _iso(self.tax_registration_date)
        out["created_at"] = _iso(self.created_at)
        return out


class CompanyUser(db.Model):
    __tablename__ = "company_users"
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # One of: owner, accountant, cfo, employee
    role = db.Column(db.String(20), nullable=False, default="owner")
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    company = db.relationship("Company", back_populates="members")
    user = db.relationship("User", back_populates="memberships")

    __table_args__ = (
        db.UniqueConstraint("company_id", "user_id", name="uq_company_user"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "user_id": self.user_id,
            "role": self.role,
            "user": self.user.to_dict() if self.user else None,
            "pending": bool(self.user and self.user.is_placeholder),
            "created_at": _iso(self.created_at),
        }


class Invitation(db.Model):
    __tablename__ = "invitations"
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    email = db.Column(db.String(180), nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False, default="employee")
    invited_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    status = db.Column(db.String(20), default="pending", nullable=False)  # pending / accepted
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    accepted_at = db.Column(db.DateTime)

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "email": self.email,
            "role": self.role,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "accepted_at": _iso(self.accepted_at),
        }


class AuditLog(db.Model):
    __tablename__ = "audit_logs"
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    action = db.Column(db.String(200))
    target_type = db.Column(db.String(100))
    target_id = db.Column(db.Integer)
    meta = db.Column(db.JSON)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow)


# --- General Ledger ---

class Account(db.Model):
    __tablename__ = "accounts"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    code = db.Column(db.String(20), index=True)
    name_en = db.Column(db.String(200), nullable=False)
    name_ar = db.Column(db.String(200))
    # One of: asset, liability, equity, income, expense
    type = db.Column(db.String(20), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("company_id", "code", name="uq_account_company_code"),
    )

    @property
    def is_debit_normal(self) -> bool:
        return self.type in DEBIT_NORMAL_TYPES

    def display_name(self, locale: str = "en") -> str:
        if locale == "ar" and self.name_ar:
            return self.name_ar
        return self.name_en

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "code": self.code,
            "name_en": self.name_en,
            "name_ar": self.name_ar,
            "type": self.type,
            "is_active": bool(self.is_active),
        }


class JournalEntry(db.Model):
    __tablename__ = "journal_entries"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    # JE-YYYYMMDD-NNN
    entry_number = db.Column(db.String(30), nullable=False, index=True)
    date = db.Column(db.DateTime, nullable=False, index=True)
    memo = db.Column(db.Text)
    # draft entries can be edited, posted entries are immutable, void entries were reversed
    status = db.Column(db.String(10), default="draft", nullable=False)
    source = db.Column(db.String(20), default="manual", nullable=False)
    source_id = db.Column(db.Integer, index=True)
    reversed_entry_id = db.Column(db.Integer, db.ForeignKey("journal_entries.id"))
    reversal_reason = db.Column(db.Text)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    posted_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    posted_at = db.Column(db.DateTime)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    updated_at = db.Column(db.DateTime)

    lines = db.relationship(
        "JournalLine", backref="entry", cascade="all, delete-orphan", order_by="JournalLine.id"
    )

    def to_dict(self, with_lines: bool = True):
        out = {
            "id": self.id,
            "company_id": self.company_id,
            "entry_number": self.entry_number,
            "date": _iso(self.date),
            "memo": self.memo,
            "status": self.status,
            "source": self.source,
            "source_id": self.source_id,
            "reversed_entry_id": self.reversed_entry_id,
            "reversal_reason": self.reversal_reason,
            "created_by": self.created_by,
            "posted_by": self.posted_by,
            "posted_at": _iso(self.posted_at),
            "updated_at": _iso(self.updated_at),
        }
        if with_lines:
            out["lines"] = [line.to_dict() for line in self.lines]
        return out


class JournalLine(db.Model):
    __tablename__ = "journal_lines"

    id = db.Column(db.Integer, primary_key=True)
    entry_id = db.Column(db.Integer, db.ForeignKey("journal_entries.id", ondelete="CASCADE"), index=True, nullable=False)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), index=True, nullable=False)
    debit = db.Column(db.Numeric(14, 2), default=0, nullable=False)
    credit = db.Column(db.Numeric(14, 2), default=0, nullable=False)
    description = db.Column(db.Text)
    is_reconciled = db.Column(db.Boolean, default=False, nullable=False)

    account = db.relationship("Account")

    def to_dict(self):
        return {
            "id": self.id,
            "account_id": self.account_id,
            "account": self.account.to_dict() if self.account else None,
            "debit": float(self.debit or 0),
            "credit": float(self.credit or 0),
            "description": self.description,
        }


# --- Sales & purchases ---

class Invoice(db.Model):
    __tablename__ = "invoices"
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    number = db.Column(db.String(100), nullable=False)
    customer_name = db.Column(db.String(200), nullable=False)
    customer_trn = db.Column(db.String(20))
    customer_email = db.Column(db.String(180))
    date = db.Column(db.DateTime, nullable=False)
    due_date = db.Column(db.DateTime)
    currency = db.Column(db.String(3), default="AED", nullable=False)
    subtotal = db.Column(db.Numeric(14, 2), default=0, nullable=False)
    vat_amount = db.Column(db.Numeric(14, 2), default=0, nullable=False)
    total = db.Column(db.Numeric(14, 2), default=0, nullable=False)
    # draft / sent / paid / void
    status = db.Column(db.String(10), default="draft", nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    lines = db.relationship("InvoiceLine", backref="invoice", cascade="all, delete-orphan", order_by="InvoiceLine.id")
    company = db.relationship("Company")

    __table_args__ = (
        db.UniqueConstraint("company_id", "number", name="uq_invoice_company_number"),
    )

    def to_dict(self, with_lines: bool = True):
        out = {
            "id": self.id,
            "company_id": self.company_id,
            "number": self.number,
            "customer_name": self.customer_name,
            "customer_trn": self.customer_trn,
            "customer_email": self.customer_email,
            "date": _iso(self.date),
            "due_date": _iso(self.due_date),
            "currency": self.currency,
            "subtotal": float(self.subtotal or 0),
            "vat_amount": float(self.vat_amount or 0),
            "total": float(self.total or 0),
            "status": self.status,
        }
        if with_lines:
            out["lines"] = [line.to_dict() for line in self.lines]
        return out


class InvoiceLine(db.Model):
    __tablename__ = "invoice_lines"
    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), index=True, nullable=False)
    description = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False)
    # UAE standard rate 5%
    vat_rate = db.Column(db.Numeric(5, 4), default=Decimal("0.05"), nullable=False)

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.quantity or 0) * Decimal(self.unit_price or 0)

    def to_dict(self):
        return {
            "id": self.id,
            "description": self.description,
            "quantity": float(self.quantity or 0),
            "unit_price": float(self.unit_price or 0),
            "vat_rate": float(self.vat_rate or 0),
        }


class Receipt(db.Model):
    __tablename__ = "receipts"
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    merchant = db.Column(db.String(200))
    date = db.Column(db.DateTime)
    # VAT-exclusive amount; VAT is kept separately
    amount = db.Column(db.Numeric(14, 2))
    vat_amount = db.Column(db.Numeric(14, 2))
    currency = db.Column(db.String(3), default="AED")
    category = db.Column(db.String(100))
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"))
    payment_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"))
    posted = db.Column(db.Boolean, default=False, nullable=False)
    journal_entry_id = db.Column(db.Integer, db.ForeignKey("journal_entries.id"))
    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def total_amount(self) -> Decimal:
        return Decimal(self.amount or 0) + Decimal(self.vat_amount or 0)

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "merchant": self.merchant,
            "date": _iso(self.date),
            "amount": float(self.amount or 0),
            "vat_amount": float(self.vat_amount or 0),
            "currency": self.currency,
            "category": self.category,
            "account_id": self.account_id,
            "payment_account_id": self.payment_account_id,
            "posted": bool(self.posted),
            "journal_entry_id": self.journal_entry_id,
        }


class ReminderLog(db.Model):
    __tablename__ = "reminder_logs"
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), index=True)
    recipient = db.Column(db.String(180))
    channel = db.Column(db.String(20), default="email")
    status = db.Column(db.String(20), default="sent")  # sent / failed
    error_message = db.Column(db.Text)
    sent_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "recipient": self.recipient,
            "channel": self.channel,
            "status": self.status,
            "error_message": self.error_message,
            "sent_at": _iso(self.sent_at),
        }


# --- Operations ---

class Backup(db.Model):
    __tablename__ = "backups"
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(200))
    payload = db.Column(db.JSON, nullable=False)
    # Public URL of the off-site copy, when object storage is configured
    path = db.Column(db.Text)
    size_bytes = db.Column(db.Integer)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        counts = (self.payload or {}).get("counts", {})
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "path": self.path,
            "size_bytes": self.size_bytes,
            "counts": counts,
            "created_at": _iso(self.created_at),
        }


class Document(db.Model):
    __tablename__ = "documents"
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    name_ar = db.Column(db.String(200))
    # trade_license / vat_certificate / contract / other
    category = db.Column(db.String(50), default="other", nullable=False)
    description = db.Column(db.Text)
    # Points at a file stored elsewhere; this row only keeps metadata
    file_url = db.Column(db.Text)
    file_name = db.Column(db.String(255))
    mime_type = db.Column(db.String(100))
    expiry_date = db.Column(db.DateTime)
    reminder_days = db.Column(db.Integer, default=30)
    is_archived = db.Column(db.Boolean, default=False, nullable=False)
    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def expires_soon(self) -> bool:
        if not self.expiry_date:
            return False
        days = (self.expiry_date - datetime.utcnow()).days
        return days <= (self.reminder_days or 30)

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "name_ar": self.name_ar,
            "category": self.category,
            "description": self.description,
            "file_url": self.file_url,
            "file_name": self.file_name,
            "mime_type": self.mime_type,
            "expiry_date": _iso(self.expiry_date),
            "reminder_days": self.reminder_days,
            "expires_soon": self.expires_soon,
            "is_archived": bool(self.is_archived),
            "created_at": _iso(self.created_at),
        }


class ComplianceTask(db.Model):
    __tablename__ = "compliance_tasks"
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    category = db.Column(db.String(50), default="vat_filing")  # vat_filing / corporate_tax / payroll / other
    due_date = db.Column(db.DateTime, nullable=False)
    priority = db.Column(db.String(10), default="medium")
    status = db.Column(db.String(20), default="pending", nullable=False)  # pending / completed
    completed_at = db.Column(db.DateTime)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def is_overdue(self) -> bool:
        return self.status != "completed" and self.due_date is not None and self.due_date < datetime.utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "due_date": _iso(self.due_date),
            "priority": self.priority,
            "status": self.status,
            "is_overdue": self.is_overdue,
            "completed_at": _iso(self.completed_at),
        }


class ReferralCode(db.Model):
    __tablename__ = "referral_codes"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    code = db.Column(db.String(40), unique=True, index=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    referrer_reward_type = db.Column(db.String(20), default="credit")
    referrer_reward_value = db.Column(db.Numeric(10, 2), default=50)  # AED credit
    referee_reward_type = db.Column(db.String(20), default="discount")
    referee_reward_value = db.Column(db.Numeric(10, 2), default=20)  # percent
    total_referrals = db.Column(db.Integer, default=0, nullable=False)
    successful_referrals = db.Column(db.Integer, default=0, nullable=False)
    total_rewards_earned = db.Column(db.Numeric(10, 2), default=0)
    expires_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "is_active": bool(self.is_active),
            "referrer_reward_type": self.referrer_reward_type,
            "referrer_reward_value": float(self.referrer_reward_value or 0),
            "referee_reward_type": self.referee_reward_type,
            "referee_reward_value": float(self.referee_reward_value or 0),
            "total_referrals": self.total_referrals or 0,
            "successful_referrals": self.successful_referrals or 0,
            "total_rewards_earned": float(self.total_rewards_earned or 0),
            "expires_at": _iso(self.expires_at),
        }


class Referral(db.Model):
    __tablename__ = "referrals"
    id = db.Column(db.Integer, primary_key=True)
    referral_code_id = db.Column(db.Integer, db.ForeignKey("referral_codes.id", ondelete="CASCADE"), nullable=False)
    referrer_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    referee_email = db.Column(db.String(180), nullable=False)
    status = db.Column(db.String(20), default="pending", nullable=False)  # pending / signed_up / completed
    signup_source = db.Column(db.String(50), default="link")
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "referee_email": self.referee_email,
            "status": self.status,
            "signup_source": self.signup_source,
            "created_at": _iso(self.created_at),
        }


class Feedback(db.Model):
    __tablename__ = "feedback"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    feedback_type = db.Column(db.String(30), nullable=False)
    category = db.Column(db.String(50))
    page_context = db.Column(db.String(500))
    rating = db.Column(db.Integer)  # 1-5 stars
    title = db.Column(db.String(200))
    message = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), default="new", nullable=False)
    allow_contact = db.Column(db.Boolean, default=True, nullable=False)
    contact_email = db.Column(db.String(180))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "feedback_type": self.feedback_type,
            "category": self.category,
            "page_context": self.page_context,
            "rating": self.rating,
            "title": self.title,
            "message": self.message,
            "status": self.status,
            "allow_contact": bool(self.allow_contact),
            "contact_email": self.contact_email,
            "created_at": _iso(self.created_at),
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
