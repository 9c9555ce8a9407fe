"""Initial bookkeeping schema: tenants, ledger, sales, purchases, operations

Revision ID: bk_20261018_01
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'bk_20261018_01'
down_revision = None
branch_labels = None
depends_on = None


def _id():
    return sa.Column('id', sa.Integer(), primary_key=True)


def _company_fk():
    return sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False)


def upgrade():
    # Users and tenants
    op.create_table(
        'users',
        _id(),
        sa.Column('name', sa.String(length=150), nullable=False),
        sa.Column('email', sa.String(length=180), nullable=False),
        sa.Column('password_hash', sa.String(length=256), nullable=False, server_default=''),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('last_login_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'companies',
        _id(),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('base_currency', sa.String(length=3), nullable=False, server_default='AED'),
        sa.Column('locale', sa.String(length=5), nullable=False, server_default='en'),
        sa.Column('legal_structure', sa.String(length=50)),
        sa.Column('industry', sa.String(length=100)),
        sa.Column('registration_number', sa.String(length=100)),
        sa.Column('business_address', sa.Text()),
        sa.Column('contact_phone', sa.String(length=50)),
        sa.Column('contact_email', sa.String(length=180)),
        sa.Column('website_url', sa.String(length=255)),
        sa.Column('trn_vat_number', sa.String(length=20)),
        sa.Column('tax_registration_type', sa.String(length=50)),
        sa.Column('vat_filing_frequency', sa.String(length=20)),
        sa.Column('tax_registration_date', sa.DateTime()),
        sa.Column('invoice_custom_title', sa.String(length=100)),
        sa.Column('invoice_footer_note', sa.Text()),
        sa.Column('created_at', sa.DateTime()),
        sa.UniqueConstraint('name'),
    )

    op.create_table(
        'company_users',
        _id(),
        _company_fk(),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='owner'),
        sa.Column('created_at', sa.DateTime()),
        sa.UniqueConstraint('company_id', 'user_id', name='uq_company_user'),
    )
    op.create_index('ix_company_users_company_id', 'company_users', ['company_id'])
    op.create_index('ix_company_users_user_id', 'company_users', ['user_id'])

    op.create_table(
        'invitations',
        _id(),
        _company_fk(),
        sa.Column('email', sa.String(length=180), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='employee'),
        sa.Column('invited_by_user_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('accepted_at', sa.DateTime()),
    )
    op.create_index('ix_invitations_company_id', 'invitations', ['company_id'])
    op.create_index('ix_invitations_email', 'invitations', ['email'])

    op.create_table(
        'audit_logs',
        _id(),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE')),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('action', sa.String(length=200)),
        sa.Column('target_type', sa.String(length=100)),
        sa.Column('target_id', sa.Integer()),
        sa.Column('meta', sa.JSON()),
        sa.Column('timestamp', sa.DateTime()),
    )
    op.create_index('ix_audit_logs_company_id', 'audit_logs', ['company_id'])

    # General ledger
    op.create_table(
        'accounts',
        _id(),
        _company_fk(),
        sa.Column('code', sa.String(length=20)),
        sa.Column('name_en', sa.String(length=200), nullable=False),
        sa.Column('name_ar', sa.String(length=200)),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime()),
        sa.UniqueConstraint('company_id', 'code', name='uq_account_company_code'),
    )
    op.create_index('ix_accounts_company_id', 'accounts', ['company_id'])
    op.create_index('ix_accounts_code', 'accounts', ['code'])

    op.create_table(
        'journal_entries',
        _id(),
        _company_fk(),
        sa.Column('entry_number', sa.String(length=30), nullable=False),
        sa.Column('date', sa.DateTime(), nullable=False),
        sa.Column('memo', sa.Text()),
        sa.Column('status', sa.String(length=10), nullable=False, server_default='draft'),
        sa.Column('source', sa.String(length=20), nullable=False, server_default='manual'),
        sa.Column('source_id', sa.Integer()),
        sa.Column('reversed_entry_id', sa.Integer(), sa.ForeignKey('journal_entries.id')),
        sa.Column('reversal_reason', sa.Text()),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('posted_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('posted_at', sa.DateTime()),
        sa.Column('updated_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('updated_at', sa.DateTime()),
    )
    with op.batch_alter_table('journal_entries', schema=None) as batch_op:
        batch_op.create_index('ix_journal_entries_company_id', ['company_id'])
        batch_op.create_index('ix_journal_entries_entry_number', ['entry_number'])
        batch_op.create_index('ix_journal_entries_date', ['date'])
        batch_op.create_index('ix_journal_entries_source_id', ['source_id'])

    op.create_table(
        'journal_lines',
        _id(),
        sa.Column('entry_id', sa.Integer(), sa.ForeignKey('journal_entries.id', ondelete='CASCADE'), nullable=False),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('accounts.id'), nullable=False),
        sa.Column('debit', sa.Numeric(precision=14, scale=2), nullable=False, server_default='0'),
        sa.Column('credit', sa.Numeric(precision=14, scale=2), nullable=False, server_default='0'),
        sa.Column('description', sa.Text()),
        sa.Column('is_reconciled', sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index('ix_journal_lines_entry_id', 'journal_lines', ['entry_id'])
    op.create_index('ix_journal_lines_account_id', 'journal_lines', ['account_id'])

    # Sales and purchases
    op.create_table(
        'invoices',
        _id(),
        _company_fk(),
        sa.Column('number', sa.String(length=100), nullable=False),
        sa.Column('customer_name', sa.String(length=200), nullable=False),
        sa.Column('customer_trn', sa.String(length=20)),
        sa.Column('customer_email', sa.String(length=180)),
        sa.Column('date', sa.DateTime(), nullable=False),
        sa.Column('due_date', sa.DateTime()),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='AED'),
        sa.Column('subtotal', sa.Numeric(precision=14, scale=2), nullable=False, server_default='0'),
        sa.Column('vat_amount', sa.Numeric(precision=14, scale=2), nullable=False, server_default='0'),
        sa.Column('total', sa.Numeric(precision=14, scale=2), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=10), nullable=False, server_default='draft'),
        sa.Column('created_at', sa.DateTime()),
        sa.UniqueConstraint('company_id', 'number', name='uq_invoice_company_number'),
    )
    op.create_index('ix_invoices_company_id', 'invoices', ['company_id'])

    op.create_table(
        'invoice_lines',
        _id(),
        sa.Column('invoice_id', sa.Integer(), sa.ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Numeric(precision=12, scale=3), nullable=False),
        sa.Column('unit_price', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('vat_rate', sa.Numeric(precision=5, scale=4), nullable=False, server_default='0.05'),
    )
    op.create_index('ix_invoice_lines_invoice_id', 'invoice_lines', ['invoice_id'])

    op.create_table(
        'receipts',
        _id(),
        _company_fk(),
        sa.Column('merchant', sa.String(length=200)),
        sa.Column('date', sa.DateTime()),
        sa.Column('amount', sa.Numeric(precision=14, scale=2)),
        sa.Column('vat_amount', sa.Numeric(precision=14, scale=2)),
        sa.Column('currency', sa.String(length=3), server_default='AED'),
        sa.Column('category', sa.String(length=100)),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('accounts.id')),
        sa.Column('payment_account_id', sa.Integer(), sa.ForeignKey('accounts.id')),
        sa.Column('posted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('journal_entry_id', sa.Integer(), sa.ForeignKey('journal_entries.id')),
        sa.Column('uploaded_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime()),
    )
    op.create_index('ix_receipts_company_id', 'receipts', ['company_id'])

    op.create_table(
        'reminder_logs',
        _id(),
        _company_fk(),
        sa.Column('invoice_id', sa.Integer(), sa.ForeignKey('invoices.id', ondelete='CASCADE')),
        sa.Column('recipient', sa.String(length=180)),
        sa.Column('channel', sa.String(length=20), server_default='email'),
        sa.Column('status', sa.String(length=20), server_default='sent'),
        sa.Column('error_message', sa.Text()),
        sa.Column('sent_at', sa.DateTime()),
    )
    op.create_index('ix_reminder_logs_company_id', 'reminder_logs', ['company_id'])
    op.create_index('ix_reminder_logs_invoice_id', 'reminder_logs', ['invoice_id'])

    # Operations
    op.create_table(
        'backups',
        _id(),
        _company_fk(),
        sa.Column('name', sa.String(length=200)),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('path', sa.Text()),
        sa.Column('size_bytes', sa.Integer()),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime()),
    )
    op.create_index('ix_backups_company_id', 'backups', ['company_id'])

    op.create_table(
        'documents',
        _id(),
        _company_fk(),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('name_ar', sa.String(length=200)),
        sa.Column('category', sa.String(length=50), nullable=False, server_default='other'),
        sa.Column('description', sa.Text()),
        sa.Column('file_url', sa.Text()),
        sa.Column('file_name', sa.String(length=255)),
        sa.Column('mime_type', sa.String(length=100)),
        sa.Column('expiry_date', sa.DateTime()),
        sa.Column('reminder_days', sa.Integer(), server_default='30'),
        sa.Column('is_archived', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('uploaded_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime()),
    )
    op.create_index('ix_documents_company_id', 'documents', ['company_id'])

    op.create_table(
        'compliance_tasks',
        _id(),
        _company_fk(),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('category', sa.String(length=50), server_default='vat_filing'),
        sa.Column('due_date', sa.DateTime(), nullable=False),
        sa.Column('priority', sa.String(length=10), server_default='medium'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('completed_at', sa.DateTime()),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime()),
    )
    op.create_index('ix_compliance_tasks_company_id', 'compliance_tasks', ['company_id'])

    # Engagement
    op.create_table(
        'referral_codes',
        _id(),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('code', sa.String(length=40), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('referrer_reward_type', sa.String(length=20), server_default='credit'),
        sa.Column('referrer_reward_value', sa.Numeric(precision=10, scale=2), server_default='50'),
        sa.Column('referee_reward_type', sa.String(length=20), server_default='discount'),
        sa.Column('referee_reward_value', sa.Numeric(precision=10, scale=2), server_default='20'),
        sa.Column('total_referrals', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('successful_referrals', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_rewards_earned', sa.Numeric(precision=10, scale=2), server_default='0'),
        sa.Column('expires_at', sa.DateTime()),
        sa.Column('created_at', sa.DateTime()),
        sa.UniqueConstraint('user_id'),
    )
    op.create_index('ix_referral_codes_code', 'referral_codes', ['code'], unique=True)

    op.create_table(
        'referrals',
        _id(),
        sa.Column('referral_code_id', sa.Integer(), sa.ForeignKey('referral_codes.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('referrer_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('referee_email', sa.String(length=180), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('signup_source', sa.String(length=50), server_default='link'),
        sa.Column('created_at', sa.DateTime()),
    )
    op.create_index('ix_referrals_referrer_id', 'referrals', ['referrer_id'])

    op.create_table(
        'feedback',
        _id(),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('feedback_type', sa.String(length=30), nullable=False),
        sa.Column('category', sa.String(length=50)),
        sa.Column('page_context', sa.String(length=500)),
        sa.Column('rating', sa.Integer()),
        sa.Column('title', sa.String(length=200)),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='new'),
        sa.Column('allow_contact', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('contact_email', sa.String(length=180)),
        sa.Column('created_at', sa.DateTime()),
    )
    op.create_index('ix_feedback_user_id', 'feedback', ['user_id'])


def downgrade():
    for table in (
        'feedback', 'referrals', 'referral_codes', 'compliance_tasks', 'documents', 'backups',
        'reminder_logs', 'receipts', 'invoice_lines', 'invoices', 'journal_lines', 'journal_entries',
        'accounts', 'audit_logs', 'invitations', 'company_users', 'companies', 'users',
    ):
        op.drop_table(table)
