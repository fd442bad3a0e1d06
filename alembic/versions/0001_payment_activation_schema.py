"""Create payment activation schema.

Revision ID: 0001_payment_activation
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001_payment_activation'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='user'),
        sa.Column('plan_id', sa.String(20), nullable=False, server_default='free'),
        sa.Column('subscription_status', sa.String(20), nullable=False, server_default='inactive'),
        sa.Column('subscription_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('billing_period', sa.String(20), nullable=True),
        sa.Column('billing_cycle_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('monthly_scans_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('monthly_scans_reset_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('daily_scans_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('daily_scans_reset_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('daily_chats_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('daily_chats_reset_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('credits_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('referred_by', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'payments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('owner_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('checkout_ref', sa.String(255), nullable=True, unique=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('type', sa.String(20), nullable=False, server_default='subscription'),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='ZAR'),
        sa.Column('plan_id', sa.String(20), nullable=True),
        sa.Column('credits_amount', sa.Integer(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=False,
                  server_default=sa.text("'{}'::jsonb")),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('granted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_payments_status_created_at', 'payments', ['status', 'created_at'])
    op.create_index('ix_payments_owner_status', 'payments', ['owner_id', 'status'])
    # Guest link-up looks payments up by token
    op.create_index(
        'ix_payments_guest_token',
        'payments',
        [sa.text("(metadata ->> 'guest_token')")],
        postgresql_where=sa.text("owner_id IS NULL"),
    )

    op.create_table(
        'credit_transactions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('payment_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('payments.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(30), nullable=False),
        sa.Column('description', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'affiliates',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('ref_code', sa.String(50), nullable=False, unique=True),
        sa.Column('commission_rate', sa.Numeric(5, 4), nullable=False, server_default='0.2000'),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('total_signups', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_conversions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_earned_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'referrals',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('affiliate_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('affiliates.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('referred_user_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('ref_code_used', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='signed_up'),
        sa.Column('first_payment_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'affiliate_earnings',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('affiliate_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('affiliates.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('referral_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('referrals.id', ondelete='CASCADE'), nullable=False),
        # One commission per payment
        sa.Column('payment_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('payments.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('commission_rate', sa.Numeric(5, 4), nullable=False),
        sa.Column('description', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'side_effect_jobs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('payment_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('payments.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('kind', sa.String(40), nullable=False),
        sa.Column('payload', postgresql.JSONB(), nullable=False,
                  server_default=sa.text("'{}'::jsonb")),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', index=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_attempt_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('payment_id', 'kind', name='uq_side_effect_jobs_payment_kind'),
    )


def downgrade() -> None:
    op.drop_table('side_effect_jobs')
    op.drop_table('affiliate_earnings')
    op.drop_table('referrals')
    op.drop_table('affiliates')
    op.drop_table('credit_transactions')
    op.drop_index('ix_payments_guest_token', table_name='payments')
    op.drop_table('payments')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
