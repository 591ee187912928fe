"""Vault persistence models.

Strategies and withdrawal requests are append-only: rows are updated in
place (active / completed flags) but never deleted.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from msvault.core.database import Base


class TokenAmount(TypeDecorator):
    """Exact integer token amount.

    Amounts can exceed 64 bits, which neither BIGINT nor SQLite NUMERIC hold
    exactly, so they are stored as decimal strings.
    """

    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(int(value))

    def process_result_value(self, value, dialect):
        return None if value is None else int(value)


class VaultStrategy(Base):
    """Registry entry, keyed by its stable index."""

    __tablename__ = "vault_strategies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vault_address: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    strategy_index: Mapped[int] = mapped_column(Integer, nullable=False)
    address: Mapped[str] = mapped_column(String(128), nullable=False)
    allocation_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    has_lockup: Mapped[bool] = mapped_column(Boolean, default=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    removed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_vault_strategies_vault_index", "vault_address", "strategy_index", unique=True),
    )


class VaultWithdrawalRequest(Base):
    """Queued withdrawal claim, fixed in asset units."""

    __tablename__ = "vault_withdrawal_requests"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    vault_address: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    holder: Mapped[str] = mapped_column(String(128), nullable=False)
    request_id: Mapped[int] = mapped_column(Integer, nullable=False)
    receiver: Mapped[str] = mapped_column(String(128), nullable=False)
    shares_burned: Mapped[int] = mapped_column(TokenAmount, nullable=False)
    assets_owed: Mapped[int] = mapped_column(TokenAmount, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, default=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index(
            "ix_vault_withdrawal_requests_holder_request",
            "vault_address", "holder", "request_id",
            unique=True,
        ),
    )


class VaultShareBalance(Base):
    """Share balance of one holder."""

    __tablename__ = "vault_share_balances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vault_address: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    holder: Mapped[str] = mapped_column(String(128), nullable=False)
    shares: Mapped[int] = mapped_column(TokenAmount, nullable=False)

    __table_args__ = (
        Index("ix_vault_share_balances_vault_holder", "vault_address", "holder", unique=True),
    )


class VaultState(Base):
    """Pool-level counters and the last valuation snapshot."""

    __tablename__ = "vault_state"

    vault_address: Mapped[str] = mapped_column(String(128), primary_key=True)
    total_shares: Mapped[int] = mapped_column(TokenAmount, nullable=False, default=0)
    total_queued_assets: Mapped[int] = mapped_column(TokenAmount, nullable=False, default=0)
    cached_total_value: Mapped[Optional[int]] = mapped_column(TokenAmount, nullable=True)
    cached_update_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paused: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
