"""delivery_dispatch_ledger

Revision ID: 0002_delivery_dispatch
Revises: 0001_init
Create Date: 2025-03-10

"""
from alembic import op
import sqlalchemy as sa

revision = '0002_delivery_dispatch'
down_revision = '0001_init'
branch_labels = None
depends_on = None


def upgrade() -> None:
    # One row per (order, trigger); the unique pair is the dispatch claim
    op.create_table(
        'delivery_dispatches',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('trigger', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer, nullable=False, server_default='0'),
        sa.Column('response', sa.JSON, nullable=True),
        sa.Column('error', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('order_id', 'trigger', name='uq_delivery_dispatch_order_trigger')
    )
    op.create_index('ix_delivery_dispatches_order_id', 'delivery_dispatches', ['order_id'])


def downgrade() -> None:
    op.drop_index('ix_delivery_dispatches_order_id', table_name='delivery_dispatches')
    op.drop_table('delivery_dispatches')
