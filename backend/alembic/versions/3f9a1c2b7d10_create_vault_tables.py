"""create_vault_tables

Revision ID: 3f9a1c2b7d10
Revises:
Create Date: 2026-10-16 09:12:44.210518

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a1c2b7d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'vault_strategies',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('vault_address', sa.String(length=128), nullable=False),
        sa.Column('strategy_index', sa.Integer(), nullable=False),
        sa.Column('address', sa.String(length=128), nullable=False),
        sa.Column('allocation_bps', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('has_lockup', sa.Boolean(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=True),
        sa.Column('added_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('removed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_vault_strategies_vault_address', 'vault_strategies', ['vault_address'])
    op.create_index(
        'ix_vault_strategies_vault_index', 'vault_strategies',
        ['vault_address', 'strategy_index'], unique=True,
    )

    op.create_table(
        'vault_withdrawal_requests',
        sa.Column('id', sa.BigInteger().with_variant(sa.Integer(), 'sqlite'), autoincrement=True, nullable=False),
        sa.Column('vault_address', sa.String(length=128), nullable=False),
        sa.Column('holder', sa.String(length=128), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=False),
        sa.Column('receiver', sa.String(length=128), nullable=False),
        sa.Column('shares_burned', sa.String(length=80), nullable=False),
        sa.Column('assets_owed', sa.String(length=80), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed', sa.Boolean(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_vault_withdrawal_requests_vault_address', 'vault_withdrawal_requests', ['vault_address'],
    )
    op.create_index(
        'ix_vault_withdrawal_requests_holder_request', 'vault_withdrawal_requests',
        ['vault_address', 'holder', 'request_id'], unique=True,
    )

    op.create_table(
        'vault_share_balances',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('vault_address', sa.String(length=128), nullable=False),
        sa.Column('holder', sa.String(length=128), nullable=False),
        sa.Column('shares', sa.String(length=80), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_vault_share_balances_vault_address', 'vault_share_balances', ['vault_address'])
    op.create_index(
        'ix_vault_share_balances_vault_holder', 'vault_share_balances',
        ['vault_address', 'holder'], unique=True,
    )

    op.create_table(
        'vault_state',
        sa.Column('vault_address', sa.String(length=128), nullable=False),
        sa.Column('total_shares', sa.String(length=80), nullable=False),
        sa.Column('total_queued_assets', sa.String(length=80), nullable=False),
        sa.Column('cached_total_value', sa.String(length=80), nullable=True),
        sa.Column('cached_update_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paused', sa.Boolean(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('vault_address'),
    )


def downgrade() -> None:
    op.drop_table('vault_state')
    op.drop_index('ix_vault_share_balances_vault_holder', table_name='vault_share_balances')
    op.drop_index('ix_vault_share_balances_vault_address', table_name='vault_share_balances')
    op.drop_table('vault_share_balances')
    op.drop_index('ix_vault_withdrawal_requests_holder_request', table_name='vault_withdrawal_requests')
    op.drop_index('ix_vault_withdrawal_requests_vault_address', table_name='vault_withdrawal_requests')
    op.drop_table('vault_withdrawal_requests')
    op.drop_index('ix_vault_strategies_vault_index', table_name='vault_strategies')
    op.drop_index('ix_vault_strategies_vault_address', table_name='vault_strategies')
    op.drop_table('vault_strategies')
