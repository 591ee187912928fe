"""create_simulation_tables

Revision ID: 8c2e5d41a9f3
Revises: 3f9a1c2b7d10
Create Date: 2026-10-23 14:03:27.551902

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8c2e5d41a9f3'
down_revision: Union[str, None] = '3f9a1c2b7d10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'sim_asset_balances',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('vault_address', sa.String(length=128), nullable=False),
        sa.Column('account', sa.String(length=128), nullable=False),
        sa.Column('balance', sa.String(length=80), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sim_asset_balances_vault_address', 'sim_asset_balances', ['vault_address'])
    op.create_index(
        'ix_sim_asset_balances_vault_account', 'sim_asset_balances',
        ['vault_address', 'account'], unique=True,
    )

    op.create_table(
        'sim_asset_allowances',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('vault_address', sa.String(length=128), nullable=False),
        sa.Column('owner', sa.String(length=128), nullable=False),
        sa.Column('spender', sa.String(length=128), nullable=False),
        sa.Column('amount', sa.String(length=80), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sim_asset_allowances_vault_address', 'sim_asset_allowances', ['vault_address'])
    op.create_index(
        'ix_sim_asset_allowances_vault_pair', 'sim_asset_allowances',
        ['vault_address', 'owner', 'spender'], unique=True,
    )

    op.create_table(
        'sim_strategy_positions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('vault_address', sa.String(length=128), nullable=False),
        sa.Column('strategy_address', sa.String(length=128), nullable=False),
        sa.Column('holder', sa.String(length=128), nullable=False),
        sa.Column('units', sa.String(length=80), nullable=False),
        sa.Column('unlock_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sim_strategy_positions_vault_address', 'sim_strategy_positions', ['vault_address'])
    op.create_index(
        'ix_sim_strategy_positions_vault_strategy_holder', 'sim_strategy_positions',
        ['vault_address', 'strategy_address', 'holder'], unique=True,
    )


def downgrade() -> None:
    op.drop_index('ix_sim_strategy_positions_vault_strategy_holder', table_name='sim_strategy_positions')
    op.drop_index('ix_sim_strategy_positions_vault_address', table_name='sim_strategy_positions')
    op.drop_table('sim_strategy_positions')
    op.drop_index('ix_sim_asset_allowances_vault_pair', table_name='sim_asset_allowances')
    op.drop_index('ix_sim_asset_allowances_vault_address', table_name='sim_asset_allowances')
    op.drop_table('sim_asset_allowances')
    op.drop_index('ix_sim_asset_balances_vault_account', table_name='sim_asset_balances')
    op.drop_index('ix_sim_asset_balances_vault_address', table_name='sim_asset_balances')
    op.drop_table('sim_asset_balances')
