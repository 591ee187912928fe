"""Simulated settlement-layer models.

In simulation mode the asset ledger and the strategies' unit books live in
memory next to the vault. These tables hold them so that a restarted service
finds the assets behind the restored share balances.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from msvault.core.database import Base
from msvault.models.vault import TokenAmount


class SimAssetBalance(Base):
    """Asset balance of one account."""

    __tablename__ = "sim_asset_balances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vault_address: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    account: Mapped[str] = mapped_column(String(128), nullable=False)
    balance: Mapped[int] = mapped_column(TokenAmount, nullable=False)

    __table_args__ = (
        Index("ix_sim_asset_balances_vault_account", "vault_address", "account", unique=True),
    )


class SimAssetAllowance(Base):
    """Allowance granted by ``owner`` to ``spender``."""

    __tablename__ = "sim_asset_allowances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vault_address: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    owner: Mapped[str] = mapped_column(String(128), nullable=False)
    spender: Mapped[str] = mapped_column(String(128), nullable=False)
    amount: Mapped[int] = mapped_column(TokenAmount, nullable=False)

    __table_args__ = (
        Index("ix_sim_asset_allowances_vault_pair", "vault_address", "owner", "spender", unique=True),
    )


class SimStrategyPosition(Base):
    """Units one holder owns in a simulated convertible strategy."""

    __tablename__ = "sim_strategy_positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vault_address: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    strategy_address: Mapped[str] = mapped_column(String(128), nullable=False)
    holder: Mapped[str] = mapped_column(String(128), nullable=False)
    units: Mapped[int] = mapped_column(TokenAmount, nullable=False)
    unlock_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index(
            "ix_sim_strategy_positions_vault_strategy_holder",
            "vault_address", "strategy_address", "holder",
            unique=True,
        ),
    )
