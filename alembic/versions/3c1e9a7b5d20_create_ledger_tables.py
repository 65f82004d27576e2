"""create_ledger_tables

Revision ID: 3c1e9a7b5d20
Revises:
Create Date: 2026-09-02 10:14:37.518204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3c1e9a7b5d20'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('conversation_locks',
    sa.Column('lock_key', sa.String(length=160), nullable=False),
    sa.Column('lock_token', sa.String(length=36), nullable=False),
    sa.Column('acquired_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('lock_key'),
    schema='tradeledger'
    )
    op.create_table('pending_state',
    sa.Column('identity', sa.String(length=160), nullable=False),
    sa.Column('state', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('identity'),
    schema='tradeledger'
    )
    op.create_table('audit',
    sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
    sa.Column('owner_id', sa.String(length=64), nullable=False),
    sa.Column('key', sa.String(length=200), nullable=False),
    sa.Column('action', sa.String(length=64), nullable=False),
    sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('owner_id', 'key', name='uq_audit_owner_key'),
    schema='tradeledger'
    )
    op.create_index(op.f('ix_tradeledger_audit_owner_id'), 'audit', ['owner_id'], unique=False, schema='tradeledger')
    op.create_table('jobs',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('owner_id', sa.String(length=64), nullable=False),
    sa.Column('job_no', sa.Integer(), nullable=False),
    sa.Column('name', sa.Text(), nullable=False),
    sa.Column('status', sa.String(length=24), nullable=False),
    sa.Column('active', sa.Boolean(), nullable=False),
    sa.Column('source_msg_id', sa.String(length=200), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('owner_id', 'job_no', name='uq_jobs_owner_job_no'),
    schema='tradeledger'
    )
    op.create_index(op.f('ix_tradeledger_jobs_owner_id'), 'jobs', ['owner_id'], unique=False, schema='tradeledger')
    op.create_index('ix_jobs_owner_lower_name', 'jobs', ['owner_id', sa.text('lower(name)')], unique=False, schema='tradeledger')
    op.create_table('leads',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('owner_id', sa.String(length=64), nullable=False),
    sa.Column('job_id', sa.UUID(), nullable=False),
    sa.Column('customer_name', sa.Text(), nullable=False),
    sa.Column('customer_phone', sa.String(length=32), nullable=True),
    sa.Column('customer_email', sa.Text(), nullable=True),
    sa.Column('customer_address', sa.Text(), nullable=True),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('source_channel', sa.String(length=24), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['job_id'], ['tradeledger.jobs.id'], ),
    sa.PrimaryKeyConstraint('id'),
    schema='tradeledger'
    )
    op.create_index(op.f('ix_tradeledger_leads_owner_id'), 'leads', ['owner_id'], unique=False, schema='tradeledger')
    op.create_table('quotes',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('owner_id', sa.String(length=64), nullable=False),
    sa.Column('job_id', sa.UUID(), nullable=False),
    sa.Column('line_items', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('total_cents', sa.BigInteger(), nullable=False),
    sa.Column('status', sa.String(length=24), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['job_id'], ['tradeledger.jobs.id'], ),
    sa.PrimaryKeyConstraint('id'),
    schema='tradeledger'
    )
    op.create_index(op.f('ix_tradeledger_quotes_owner_id'), 'quotes', ['owner_id'], unique=False, schema='tradeledger')
    op.create_table('agreements',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('owner_id', sa.String(length=64), nullable=False),
    sa.Column('job_id', sa.UUID(), nullable=False),
    sa.Column('quote_id', sa.UUID(), nullable=True),
    sa.Column('terms', sa.Text(), nullable=True),
    sa.Column('contract_price_cents', sa.BigInteger(), nullable=True),
    sa.Column('deposit_cents', sa.BigInteger(), nullable=False),
    sa.Column('retainage_pct', sa.Float(), nullable=True),
    sa.Column('retainage_release_days', sa.Integer(), nullable=True),
    sa.Column('payment_schedule', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column('start_date', sa.Date(), nullable=True),
    sa.Column('sig_required', sa.Boolean(), nullable=False),
    sa.Column('status', sa.String(length=24), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['job_id'], ['tradeledger.jobs.id'], ),
    sa.ForeignKeyConstraint(['quote_id'], ['tradeledger.quotes.id'], ),
    sa.PrimaryKeyConstraint('id'),
    schema='tradeledger'
    )
    op.create_index(op.f('ix_tradeledger_agreements_owner_id'), 'agreements', ['owner_id'], unique=False, schema='tradeledger')
    op.create_table('change_orders',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('owner_id', sa.String(length=64), nullable=False),
    sa.Column('job_id', sa.UUID(), nullable=False),
    sa.Column('agreement_id', sa.UUID(), nullable=True),
    sa.Column('description', sa.Text(), nullable=False),
    sa.Column('amount_cents', sa.BigInteger(), nullable=False),
    sa.Column('line_items', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column('status', sa.String(length=24), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['agreement_id'], ['tradeledger.agreements.id'], ),
    sa.ForeignKeyConstraint(['job_id'], ['tradeledger.jobs.id'], ),
    sa.PrimaryKeyConstraint('id'),
    schema='tradeledger'
    )
    op.create_index(op.f('ix_tradeledger_change_orders_owner_id'), 'change_orders', ['owner_id'], unique=False, schema='tradeledger')
    op.create_table('invoices',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('owner_id', sa.String(length=64), nullable=False),
    sa.Column('job_id', sa.UUID(), nullable=True),
    sa.Column('agreement_id', sa.UUID(), nullable=True),
    sa.Column('invoice_kind', sa.String(length=16), nullable=False),
    sa.Column('status', sa.String(length=16), nullable=False),
    sa.Column('subtotal_cents', sa.BigInteger(), nullable=False),
    sa.Column('tax_cents', sa.BigInteger(), nullable=False),
    sa.Column('total_cents', sa.BigInteger(), nullable=False),
    sa.Column('tax_code', sa.String(length=16), nullable=False),
    sa.Column('due_date', sa.Date(), nullable=True),
    sa.Column('line_items', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column('milestone_label', sa.Text(), nullable=True),
    sa.Column('source_msg_id', sa.String(length=200), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['agreement_id'], ['tradeledger.agreements.id'], ),
    sa.ForeignKeyConstraint(['job_id'], ['tradeledger.jobs.id'], ),
    sa.PrimaryKeyConstraint('id'),
    schema='tradeledger'
    )
    op.create_index(op.f('ix_tradeledger_invoices_owner_id'), 'invoices', ['owner_id'], unique=False, schema='tradeledger')
    op.create_index('uq_invoices_owner_source_msg', 'invoices', ['owner_id', 'source_msg_id'], unique=True, schema='tradeledger', postgresql_where=sa.text('source_msg_id IS NOT NULL'))
    op.create_table('pricing_items',
    sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
    sa.Column('owner_id', sa.String(length=64), nullable=False),
    sa.Column('item_name', sa.Text(), nullable=False),
    sa.Column('unit', sa.String(length=32), nullable=False),
    sa.Column('unit_cost_cents', sa.BigInteger(), nullable=False),
    sa.Column('kind', sa.String(length=32), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('owner_id', 'item_name', name='uq_pricing_items_owner_item'),
    schema='tradeledger'
    )
    op.create_index(op.f('ix_tradeledger_pricing_items_owner_id'), 'pricing_items', ['owner_id'], unique=False, schema='tradeledger')
    op.create_table('transactions',
    sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
    sa.Column('owner_id', sa.String(length=64), nullable=False),
    sa.Column('kind', sa.String(length=16), nullable=False),
    sa.Column('date', sa.Date(), nullable=False),
    sa.Column('description', sa.Text(), nullable=False),
    sa.Column('amount_cents', sa.BigInteger(), nullable=False),
    sa.Column('source', sa.Text(), nullable=False),
    sa.Column('job_id', sa.UUID(), nullable=True),
    sa.Column('job_name', sa.Text(), nullable=True),
    sa.Column('category', sa.Text(), nullable=True),
    sa.Column('user_name', sa.Text(), nullable=True),
    sa.Column('memo', sa.Text(), nullable=True),
    sa.Column('source_msg_id', sa.String(length=200), nullable=True),
    sa.Column('media_url', sa.Text(), nullable=True),
    sa.Column('media_type', sa.String(length=64), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['job_id'], ['tradeledger.jobs.id'], ),
    sa.PrimaryKeyConstraint('id'),
    schema='tradeledger'
    )
    op.create_index(op.f('ix_tradeledger_transactions_owner_id'), 'transactions', ['owner_id'], unique=False, schema='tradeledger')
    op.create_index('uq_transactions_owner_kind_source_msg', 'transactions', ['owner_id', 'kind', 'source_msg_id'], unique=True, schema='tradeledger', postgresql_where=sa.text('source_msg_id IS NOT NULL'))


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('uq_transactions_owner_kind_source_msg', table_name='transactions', schema='tradeledger', postgresql_where=sa.text('source_msg_id IS NOT NULL'))
    op.drop_index(op.f('ix_tradeledger_transactions_owner_id'), table_name='transactions', schema='tradeledger')
    op.drop_table('transactions', schema='tradeledger')
    op.drop_index(op.f('ix_tradeledger_pricing_items_owner_id'), table_name='pricing_items', schema='tradeledger')
    op.drop_table('pricing_items', schema='tradeledger')
    op.drop_index('uq_invoices_owner_source_msg', table_name='invoices', schema='tradeledger', postgresql_where=sa.text('source_msg_id IS NOT NULL'))
    op.drop_index(op.f('ix_tradeledger_invoices_owner_id'), table_name='invoices', schema='tradeledger')
    op.drop_table('invoices', schema='tradeledger')
    op.drop_index(op.f('ix_tradeledger_change_orders_owner_id'), table_name='change_orders', schema='tradeledger')
    op.drop_table('change_orders', schema='tradeledger')
    op.drop_index(op.f('ix_tradeledger_agreements_owner_id'), table_name='agreements', schema='tradeledger')
    op.drop_table('agreements', schema='tradeledger')
    op.drop_index(op.f('ix_tradeledger_quotes_owner_id'), table_name='quotes', schema='tradeledger')
    op.drop_table('quotes', schema='tradeledger')
    op.drop_index(op.f('ix_tradeledger_leads_owner_id'), table_name='leads', schema='tradeledger')
    op.drop_table('leads', schema='tradeledger')
    op.drop_index('ix_jobs_owner_lower_name', table_name='jobs', schema='tradeledger')
    op.drop_index(op.f('ix_tradeledger_jobs_owner_id'), table_name='jobs', schema='tradeledger')
    op.drop_table('jobs', schema='tradeledger')
    op.drop_index(op.f('ix_tradeledger_audit_owner_id'), table_name='audit', schema='tradeledger')
    op.drop_table('audit', schema='tradeledger')
    op.drop_table('pending_state', schema='tradeledger')
    op.drop_table('conversation_locks', schema='tradeledger')
