"""initial schema

Revision ID: 2026_10_17_0000
Revises:
Create Date: 2026-10-17 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_17_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, processed_webhooks and credit_ledger."""

    # ========================================================================
    # Create users table
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('credits_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credits_expire_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('plan_code', sa.String(20), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('credits_balance >= 0', name='ck_credits_balance_non_negative'),
        sa.CheckConstraint(
            "plan_code IS NULL OR plan_code IN ('basic', 'standard', 'premium')",
            name='ck_plan_code_valid',
        ),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )

    op.create_index('idx_users_credits_expire_at', 'users', ['credits_expire_at'])

    # ========================================================================
    # Create processed_webhooks table
    # ========================================================================
    op.create_table(
        'processed_webhooks',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('event_key', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.UniqueConstraint('event_key', name='uq_processed_webhooks_event_key'),
    )

    op.create_index('idx_processed_webhooks_created_at', 'processed_webhooks', ['created_at'])

    # ========================================================================
    # Create credit_ledger table
    # ========================================================================
    op.create_table(
        'credit_ledger',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(50), nullable=False),
        sa.Column('ref', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('delta <> 0', name='ck_ledger_delta_non_zero'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_credit_ledger_user', ondelete='RESTRICT'),
    )

    op.create_index('idx_credit_ledger_user_id', 'credit_ledger', ['user_id'])
    op.create_index('idx_credit_ledger_created_at', 'credit_ledger', ['created_at'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('credit_ledger')
    op.drop_table('processed_webhooks')
    op.drop_table('users')
