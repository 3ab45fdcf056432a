"""initial schema

Revision ID: 2026_10_18_0000
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = '2026_10_18_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create accounts, ledger, run log and suggestion tables."""

    # ========================================================================
    # Create accounts table
    # ========================================================================
    op.create_table(
        'accounts',
        sa.Column('id', sa.String(128), primary_key=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('photo_url', sa.String(1024), nullable=True),
        sa.Column('credits', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('credits >= 0', name='ck_credits_non_negative'),
    )

    op.create_index('idx_accounts_created_at', 'accounts', ['created_at'])
    op.create_index('idx_accounts_email', 'accounts', ['email'])

    # ========================================================================
    # Create credit_transactions table
    # ========================================================================
    op.create_table(
        'credit_transactions',
        sa.Column('id', sa.Uuid(), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('account_id', sa.String(128), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('transaction_type', sa.String(20), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('balance_before', sa.BigInteger(), nullable=False),
        sa.Column('balance_after', sa.BigInteger(), nullable=False),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('external_reference', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('amount > 0', name='ck_transaction_amount_positive'),
        sa.CheckConstraint('balance_after >= 0', name='ck_transaction_balance_non_negative'),
        sa.CheckConstraint(
            "transaction_type IN ('debit', 'credit', 'purchase')",
            name='ck_transaction_type',
        ),
    )

    op.create_index('ix_credit_transactions_account_id', 'credit_transactions', ['account_id'])
    op.create_index('idx_credit_transactions_created_at', 'credit_transactions', ['created_at'])
    op.create_index(
        'idx_credit_transactions_reference',
        'credit_transactions',
        ['external_reference'],
        postgresql_where=sa.text('external_reference IS NOT NULL'),
    )

    # ========================================================================
    # Create workflow_run_logs table
    # ========================================================================
    op.create_table(
        'workflow_run_logs',
        sa.Column('id', sa.Uuid(), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('workflow_id', sa.String(100), nullable=False),
        sa.Column('workflow_name', sa.String(255), nullable=False),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('user_email', sa.String(255), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('credit_cost_at_run', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('input_details', JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('output_summary', sa.Text(), nullable=True),
        sa.Column('full_output', JSONB(), nullable=True),
        sa.Column('error_details', sa.Text(), nullable=True),

        # Constraints
        sa.CheckConstraint("status IN ('Completed', 'Failed')", name='ck_run_status'),
        sa.CheckConstraint('credit_cost_at_run >= 0', name='ck_run_cost_non_negative'),
    )

    op.create_index(
        'idx_run_logs_workflow_user_time',
        'workflow_run_logs',
        ['workflow_id', 'user_id', 'timestamp'],
    )
    op.create_index('idx_run_logs_user_time', 'workflow_run_logs', ['user_id', 'timestamp'])
    op.create_index('idx_run_logs_timestamp', 'workflow_run_logs', ['timestamp'])

    # ========================================================================
    # Create tool_suggestions table
    # ========================================================================
    op.create_table(
        'tool_suggestions',
        sa.Column('id', sa.Uuid(), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('tool_name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('user_email', sa.String(255), nullable=True),
        sa.Column('user_id', sa.String(128), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('status', sa.String(20), nullable=False, server_default='New'),
        sa.Column('status_updated_at', sa.DateTime(timezone=True), nullable=True),

        # Constraints
        sa.CheckConstraint(
            "status IN ('New', 'Reviewed', 'Planned', 'Implemented', 'Rejected')",
            name='ck_suggestion_status',
        ),
    )

    op.create_index('idx_tool_suggestions_status', 'tool_suggestions', ['status'])
    op.create_index('idx_tool_suggestions_submitted_at', 'tool_suggestions', ['submitted_at'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('tool_suggestions')
    op.drop_table('workflow_run_logs')
    op.drop_table('credit_transactions')
    op.drop_table('accounts')
