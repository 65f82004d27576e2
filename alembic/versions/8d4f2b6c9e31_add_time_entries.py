"""add_time_entries

Revision ID: 8d4f2b6c9e31
Revises: 3c1e9a7b5d20
Create Date: 2026-10-18 09:41:12.207315

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '8d4f2b6c9e31'
down_revision: Union[str, Sequence[str], None] = '3c1e9a7b5d20'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('time_entries',
    sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
    sa.Column('owner_id', sa.String(length=64), nullable=False),
    sa.Column('employee_name', sa.Text(), nullable=False),
    sa.Column('action', sa.String(length=16), nullable=False),
    sa.Column('punched_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('job_id', sa.UUID(), nullable=True),
    sa.Column('job_name', sa.Text(), nullable=True),
    sa.Column('source_msg_id', sa.String(length=200), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['job_id'], ['tradeledger.jobs.id'], ),
    sa.PrimaryKeyConstraint('id'),
    schema='tradeledger'
    )
    op.create_index('uq_time_entries_owner_source_msg', 'time_entries', ['owner_id', 'source_msg_id'], unique=True, schema='tradeledger', postgresql_where=sa.text('source_msg_id IS NOT NULL'))
    op.create_index('ix_time_entries_owner_employee_at', 'time_entries', ['owner_id', 'employee_name', 'punched_at'], unique=False, schema='tradeledger')


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_time_entries_owner_employee_at', table_name='time_entries', schema='tradeledger')
    op.drop_index('uq_time_entries_owner_source_msg', table_name='time_entries', schema='tradeledger', postgresql_where=sa.text('source_msg_id IS NOT NULL'))
    op.drop_table('time_entries', schema='tradeledger')
