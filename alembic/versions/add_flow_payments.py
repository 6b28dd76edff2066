"""Add payments table for Flow checkout.

users, units, user_units and expenses are created by the community
management schema; this revision only adds the payment ledger.

Revision ID: add_flow_payments
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = 'add_flow_payments'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'payments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('users.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('expense_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('expenses.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('method', sa.String(20), nullable=False, server_default='FLOW'),
        sa.Column('status', sa.String(20), nullable=False,
                  server_default='PENDING', index=True),
        sa.Column('reference', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('commerce_order', sa.String(100), nullable=False, unique=True),
        sa.Column('gateway_order_id', sa.String(50), nullable=True),
        sa.Column('payment_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
    )

    # Stale-pending sweep scans by status and age
    op.create_index(
        'ix_payments_pending_created_at',
        'payments',
        ['created_at'],
        postgresql_where=sa.text("status = 'PENDING'")
    )


def downgrade() -> None:
    op.drop_index('ix_payments_pending_created_at', table_name='payments')
    op.drop_table('payments')
