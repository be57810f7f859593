"""create subscription ledger tables

Revision ID: a1c2e3g4i5k6
Revises:
Create Date: 2024-01-01
"""
from alembic import op
import sqlalchemy as sa


revision = 'a1c2e3g4i5k6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('service_name', sa.String(255), nullable=False),
        sa.Column('billing_cycle', sa.String(16), nullable=False),
        sa.Column('cost_per_cycle', sa.Numeric(12, 2), nullable=True),
        sa.Column('cost_currency', sa.String(3), nullable=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='ACTIVE'),
        sa.Column('purchase_date', sa.Date(), nullable=True),
        sa.Column('renewal_date', sa.Date(), nullable=True),
        sa.Column('cancelled_at', sa.Date(), nullable=True),
        sa.Column('reactivated_at', sa.Date(), nullable=True),
        sa.Column('last_active_renewal_date', sa.Date(), nullable=True),
        sa.Column('assigned_user_id', sa.String(64), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_subscriptions_account_id', 'subscriptions', ['account_id'])
    op.create_index('ix_subscriptions_assigned_user_id', 'subscriptions', ['assigned_user_id'])

    op.create_table(
        'subscription_history',
        sa.Column('id', sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column('subscription_id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(16), nullable=False),
        sa.Column('old_status', sa.String(16), nullable=True),
        sa.Column('new_status', sa.String(16), nullable=True),
        sa.Column('old_renewal_date', sa.Date(), nullable=True),
        sa.Column('new_renewal_date', sa.Date(), nullable=True),
        sa.Column('assignment_date', sa.Date(), nullable=True),
        sa.Column('reactivation_date', sa.Date(), nullable=True),
        sa.Column('old_user_id', sa.String(64), nullable=True),
        sa.Column('new_user_id', sa.String(64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('performed_by', sa.String(64), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_subscription_history_account_id', 'subscription_history', ['account_id'])
    op.create_index(
        'ix_subscription_history_sub_created', 'subscription_history',
        ['subscription_id', 'created_at'],
    )


def downgrade():
    op.drop_index('ix_subscription_history_sub_created', table_name='subscription_history')
    op.drop_index('ix_subscription_history_account_id', table_name='subscription_history')
    op.drop_table('subscription_history')
    op.drop_index('ix_subscriptions_assigned_user_id', table_name='subscriptions')
    op.drop_index('ix_subscriptions_account_id', table_name='subscriptions')
    op.drop_table('subscriptions')
