"""Persist and restore vault state with SQLAlchemy.

The vault itself is an in-memory, synchronous engine. This repository
writes a full snapshot of its accounting state (strategy list, withdrawal
requests, share balances and pool counters) in one session, and rebuilds a
fresh vault from it. Strategy handles are not storable; ``load`` resolves
them by address through a caller-supplied function.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from msvault.core.errors import ValidationError
from msvault.models.simulation import SimAssetAllowance, SimAssetBalance, SimStrategyPosition
from msvault.models.vault import (
    VaultShareBalance,
    VaultState,
    VaultStrategy,
    VaultWithdrawalRequest,
)
from msvault.services.vault.simulation import SimulatedConvertibleStrategy, SimulationEnvironment
from msvault.services.vault.strategies import StrategyHandle, StrategyKind, StrategyRecord
from msvault.services.vault.vault import MultiStrategyVault
from msvault.services.vault.withdrawal_queue import WithdrawalRequest

logger = structlog.get_logger()

StrategyResolver = Callable[[str, StrategyKind, bool], StrategyHandle]


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored times are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class VaultRepository:
    """Snapshot storage for one vault, keyed by its address."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def save(self, vault: MultiStrategyVault) -> None:
        """Upsert the vault's accounting state. Commit is left to the caller."""
        address = vault.address

        await self._save_strategies(vault)
        await self._save_requests(vault)
        await self._save_balances(vault)

        state = await self.session.get(VaultState, address)
        if state is None:
            state = VaultState(vault_address=address)
            self.session.add(state)
        state.total_shares = vault.total_supply
        state.total_queued_assets = vault.total_queued_assets
        state.cached_total_value = vault.cached_total_value
        state.cached_update_time = vault.cached_update_time
        state.paused = vault.paused

        await self.session.flush()
        logger.info(
            "Vault state saved",
            vault=address,
            strategies=len(vault.registry),
            total_shares=vault.total_supply,
            total_queued_assets=vault.total_queued_assets,
        )

    async def load(self, vault: MultiStrategyVault, resolve_strategy: StrategyResolver) -> bool:
        """Restore saved state into a freshly built vault.

        Returns False when nothing was saved for this vault address.
        """
        address = vault.address
        if len(vault.registry) or vault.total_supply or vault.queue.holders():
            raise ValidationError("Vault state can only be loaded into an empty vault", vault=address)

        state = await self.session.get(VaultState, address)
        if state is None:
            return False

        rows = await self.session.execute(
            select(VaultStrategy)
            .where(VaultStrategy.vault_address == address)
            .order_by(VaultStrategy.strategy_index)
        )
        records = []
        for row in rows.scalars().all():
            kind = StrategyKind(row.kind)
            records.append(StrategyRecord(
                index=row.strategy_index,
                handle=resolve_strategy(row.address, kind, row.has_lockup),
                allocation_bps=row.allocation_bps,
                kind=kind,
                has_lockup=row.has_lockup,
                active=row.active,
                added_at=_aware(row.added_at),
                removed_at=_aware(row.removed_at),
            ))
        vault.registry.load(records)

        rows = await self.session.execute(
            select(VaultWithdrawalRequest).where(VaultWithdrawalRequest.vault_address == address)
        )
        vault.queue.load([
            WithdrawalRequest(
                request_id=row.request_id,
                holder=row.holder,
                receiver=row.receiver,
                shares_burned=row.shares_burned,
                assets_owed=row.assets_owed,
                created_at=_aware(row.created_at),
                completed=row.completed,
                completed_at=_aware(row.completed_at),
            )
            for row in rows.scalars().all()
        ])

        rows = await self.session.execute(
            select(VaultShareBalance).where(VaultShareBalance.vault_address == address)
        )
        vault.ledger.load({row.holder: row.shares for row in rows.scalars().all()})

        if vault.total_supply != state.total_shares:
            raise ValidationError(
                "Stored share balances do not add up to the stored supply",
                stored_supply=state.total_shares,
                balance_sum=vault.total_supply,
            )
        if vault.total_queued_assets != state.total_queued_assets:
            raise ValidationError(
                "Stored withdrawal requests do not add up to the stored queued total",
                stored_queued=state.total_queued_assets,
                pending_sum=vault.total_queued_assets,
            )

        vault.cached_total_value = state.cached_total_value
        vault.cached_update_time = _aware(state.cached_update_time)
        vault.paused = state.paused

        logger.info(
            "Vault state loaded",
            vault=address,
            strategies=len(records),
            total_shares=vault.total_supply,
        )
        return True

    # ==================== Internals ====================

    async def _save_strategies(self, vault: MultiStrategyVault) -> None:
        rows = await self.session.execute(
            select(VaultStrategy).where(VaultStrategy.vault_address == vault.address)
        )
        existing: Dict[int, VaultStrategy] = {r.strategy_index: r for r in rows.scalars().all()}
        for record in vault.registry.all():
            row = existing.get(record.index)
            if row is None:
                row = VaultStrategy(
                    vault_address=vault.address,
                    strategy_index=record.index,
                    address=record.address,
                    kind=record.kind.value,
                    added_at=record.added_at,
                )
                self.session.add(row)
            row.allocation_bps = record.allocation_bps
            row.has_lockup = record.has_lockup
            row.active = record.active
            row.removed_at = record.removed_at

    async def _save_requests(self, vault: MultiStrategyVault) -> None:
        rows = await self.session.execute(
            select(VaultWithdrawalRequest).where(VaultWithdrawalRequest.vault_address == vault.address)
        )
        existing: Dict[Tuple[str, int], VaultWithdrawalRequest] = {
            (r.holder, r.request_id): r for r in rows.scalars().all()
        }
        for holder in vault.queue.holders():
            for request in vault.queue.requests_for(holder):
                row = existing.get((holder, request.request_id))
                if row is None:
                    row = VaultWithdrawalRequest(
                        vault_address=vault.address,
                        holder=holder,
                        request_id=request.request_id,
                        receiver=request.receiver,
                        shares_burned=request.shares_burned,
                        assets_owed=request.assets_owed,
                        created_at=request.created_at,
                    )
                    self.session.add(row)
                row.completed = request.completed
                row.completed_at = request.completed_at

    async def _save_balances(self, vault: MultiStrategyVault) -> None:
        rows = await self.session.execute(
            select(VaultShareBalance).where(VaultShareBalance.vault_address == vault.address)
        )
        existing: Dict[str, VaultShareBalance] = {r.holder: r for r in rows.scalars().all()}
        holders = vault.ledger.holders()
        for holder, shares in holders.items():
            row = existing.get(holder)
            if row is None:
                self.session.add(VaultShareBalance(vault_address=vault.address, holder=holder, shares=shares))
            else:
                row.shares = shares
        for holder, row in existing.items():
            if holder not in holders:
                row.shares = 0


class SimulationRepository:
    """Storage for the simulated asset ledger and strategy unit books.

    Saved alongside the vault snapshot so the restored share balances and
    queued claims keep the assets that back them.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def save(self, environment: SimulationEnvironment, vault_address: str) -> None:
        asset = environment.asset

        rows = await self.session.execute(
            select(SimAssetBalance).where(SimAssetBalance.vault_address == vault_address)
        )
        existing_balances = {r.account: r for r in rows.scalars().all()}
        balances = asset.balances()
        for account, balance in balances.items():
            row = existing_balances.get(account)
            if row is None:
                self.session.add(SimAssetBalance(vault_address=vault_address, account=account, balance=balance))
            else:
                row.balance = balance
        for account, row in existing_balances.items():
            if account not in balances:
                row.balance = 0

        rows = await self.session.execute(
            select(SimAssetAllowance).where(SimAssetAllowance.vault_address == vault_address)
        )
        existing_allowances = {(r.owner, r.spender): r for r in rows.scalars().all()}
        allowances = asset.allowances()
        for (owner, spender), amount in allowances.items():
            row = existing_allowances.get((owner, spender))
            if row is None:
                self.session.add(SimAssetAllowance(
                    vault_address=vault_address, owner=owner, spender=spender, amount=amount,
                ))
            else:
                row.amount = amount
        for pair, row in existing_allowances.items():
            if pair not in allowances:
                row.amount = 0

        rows = await self.session.execute(
            select(SimStrategyPosition).where(SimStrategyPosition.vault_address == vault_address)
        )
        existing_positions = {(r.strategy_address, r.holder): r for r in rows.scalars().all()}
        seen = set()
        for address, strategy in environment.strategies.items():
            if not isinstance(strategy, SimulatedConvertibleStrategy):
                continue
            for holder, (units, unlock_at) in strategy.positions().items():
                seen.add((address, holder))
                row = existing_positions.get((address, holder))
                if row is None:
                    self.session.add(SimStrategyPosition(
                        vault_address=vault_address,
                        strategy_address=address,
                        holder=holder,
                        units=units,
                        unlock_at=unlock_at,
                    ))
                else:
                    row.units = units
                    row.unlock_at = unlock_at
        for key, row in existing_positions.items():
            if key not in seen:
                row.units = 0
                row.unlock_at = None

        await self.session.flush()
        logger.info(
            "Simulation state saved",
            vault=vault_address,
            accounts=len(balances),
            strategies=len(environment.strategies),
        )

    async def load(self, environment: SimulationEnvironment, vault_address: str) -> bool:
        """Replace the environment's ledgers with the saved ones.

        Strategies must already be resolved (the vault snapshot loads first).
        Returns False when nothing was saved for this vault address.
        """
        rows = await self.session.execute(
            select(SimAssetBalance).where(SimAssetBalance.vault_address == vault_address)
        )
        balances = {r.account: r.balance for r in rows.scalars().all() if r.balance}
        if not balances:
            return False

        rows = await self.session.execute(
            select(SimAssetAllowance).where(SimAssetAllowance.vault_address == vault_address)
        )
        allowances = {(r.owner, r.spender): r.amount for r in rows.scalars().all() if r.amount}

        rows = await self.session.execute(
            select(SimStrategyPosition).where(SimStrategyPosition.vault_address == vault_address)
        )
        positions: Dict[str, Dict[str, Tuple[int, Optional[datetime]]]] = {}
        for row in rows.scalars().all():
            if row.units:
                positions.setdefault(row.strategy_address, {})[row.holder] = (row.units, _aware(row.unlock_at))

        strategies = {}
        for address in positions:
            strategy = environment.strategies.get(address)
            if not isinstance(strategy, SimulatedConvertibleStrategy):
                raise ValidationError(
                    "Stored strategy positions reference an unknown strategy",
                    vault=vault_address,
                    strategy=address,
                )
            strategies[address] = strategy

        environment.asset.load(balances, allowances)
        for address, strategy in environment.strategies.items():
            if isinstance(strategy, SimulatedConvertibleStrategy):
                strategy.load_positions(positions.get(address, {}))

        logger.info(
            "Simulation state loaded",
            vault=vault_address,
            accounts=len(balances),
            strategies=len(strategies),
        )
        return True
