"""Integration tests for vault persistence.

Uses an in-memory SQLite database; the simulated asset and strategies stay in
memory and are handed back to the restored vault by address.
"""

import sys
from pathlib import Path

# Add backend to Python path
backend_path = Path(__file__).parent.parent.parent
sys.path.insert(0, str(backend_path))

import pytest
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from msvault.core.database import Base
from msvault.core.config import Settings
from msvault.core.errors import ValidationError
from msvault.models.simulation import SimAssetBalance, SimStrategyPosition
from msvault.models.vault import VaultShareBalance, VaultState, VaultWithdrawalRequest
from msvault.services.vault import events as ev
from msvault.services.vault.repository import SimulationRepository, VaultRepository
from msvault.services.vault.service import VaultService
from msvault.services.vault.simulation import SimulatedAsset, SimulationEnvironment, UNLIMITED
from msvault.services.vault.strategies import StrategyKind
from msvault.services.vault.vault import MultiStrategyVault

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
USDC = 10 ** 6


@pytest.fixture
async def test_engine():
    """Create a test database engine with the vault tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def environment():
    return SimulationEnvironment(asset=SimulatedAsset())


@pytest.fixture
def populated_vault(environment):
    """Two strategies (one removed), two holders, one pending and one completed request."""
    asset = environment.asset
    vault = MultiStrategyVault(asset, address="vault")
    vault.add_strategy(environment.resolve("strategy-a"), 6000)
    vault.add_strategy(environment.resolve("strategy-d", StrategyKind.DIRECT), 4000, kind=StrategyKind.DIRECT)
    vault.add_strategy(environment.resolve("strategy-old"), 0)
    vault.remove_strategy(2)

    for account, amount in (("alice", 1000 * USDC), ("bob", 2**70)):
        asset.mint(account, amount)
        asset.approve(account, "vault", UNLIMITED)
        vault.deposit(amount, account)
    vault.rebalance()

    # fully invested, so both withdrawals queue
    vault.withdraw(10 * USDC, "alice", "alice")
    vault.withdraw(20 * USDC, "carol", "alice")
    asset.mint("vault", 10 * USDC)
    vault.complete_withdrawal("alice", 0)
    return vault


def fresh_vault(environment):
    return MultiStrategyVault(environment.asset, address="vault")


class TestSaveLoad:

    @pytest.mark.asyncio
    async def test_round_trip(self, populated_vault, environment, session_factory):
        async with session_factory() as session:
            await VaultRepository(session).save(populated_vault)
            await session.commit()

        restored = fresh_vault(environment)
        async with session_factory() as session:
            assert await VaultRepository(session).load(restored, environment.resolve) is True

        assert restored.total_supply == populated_vault.total_supply
        assert restored.ledger.holders() == populated_vault.ledger.holders()
        assert restored.balance_of("bob") == 2**70
        assert restored.total_queued_assets == populated_vault.total_queued_assets

        original = [r.to_dict() for r in populated_vault.list_strategies()]
        assert [r.to_dict() for r in restored.list_strategies()] == original
        assert restored.list_strategies()[1].kind == StrategyKind.DIRECT

        requests = restored.pending_withdrawals("alice")
        assert [(r.request_id, r.completed, r.receiver) for r in requests] == [
            (0, True, "alice"),
            (1, False, "carol"),
        ]
        assert restored.cached_total_value == populated_vault.cached_total_value
        assert restored.total_value() == populated_vault.total_value()

    @pytest.mark.asyncio
    async def test_restored_vault_keeps_operating(self, populated_vault, environment, session_factory):
        async with session_factory() as session:
            await VaultRepository(session).save(populated_vault)
            await session.commit()

        restored = fresh_vault(environment)
        async with session_factory() as session:
            await VaultRepository(session).load(restored, environment.resolve)

        environment.asset.mint("vault", 20 * USDC)
        request = restored.complete_withdrawal("alice", 1)
        assert request.completed
        assert environment.asset.balance_of("carol") == 20 * USDC

    @pytest.mark.asyncio
    async def test_save_is_an_upsert(self, populated_vault, test_session):
        repo = VaultRepository(test_session)
        await repo.save(populated_vault)
        populated_vault.redeem(populated_vault.balance_of("alice"), "alice", "alice")
        populated_vault.pause()
        await repo.save(populated_vault)
        await test_session.commit()

        rows = (await test_session.execute(select(VaultShareBalance))).scalars().all()
        assert {r.holder: r.shares for r in rows} == {"alice": 0, "bob": 2**70}

        state = await test_session.get(VaultState, "vault")
        assert state.paused is True
        assert state.total_shares == 2**70

        requests = (await test_session.execute(select(VaultWithdrawalRequest))).scalars().all()
        assert len(requests) == len(populated_vault.pending_withdrawals("alice"))

    @pytest.mark.asyncio
    async def test_nothing_saved(self, environment, test_session):
        vault = fresh_vault(environment)
        assert await VaultRepository(test_session).load(vault, environment.resolve) is False

    @pytest.mark.asyncio
    async def test_load_into_used_vault_rejected(self, populated_vault, environment, test_session):
        with pytest.raises(ValidationError):
            await VaultRepository(test_session).load(populated_vault, environment.resolve)

    @pytest.mark.asyncio
    async def test_inconsistent_snapshot_rejected(self, populated_vault, environment, test_session):
        await VaultRepository(test_session).save(populated_vault)
        state = await test_session.get(VaultState, "vault")
        state.total_shares = state.total_shares + 1
        await test_session.flush()

        with pytest.raises(ValidationError):
            await VaultRepository(test_session).load(fresh_vault(environment), environment.resolve)


@pytest.fixture
def service_db(monkeypatch, session_factory):
    """Point VaultService at the in-memory test database."""

    @asynccontextmanager
    async def db_context():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    monkeypatch.setattr("msvault.services.vault.service.get_db_context", db_context)
    return db_context


@pytest.fixture
def persisted_settings():
    return Settings(simulation_seed_balances={"alice": 1000 * USDC}, persist_state=True)


class TestServiceRestart:
    """A second, freshly built service picks up where the first stopped."""

    async def _run_first_service(self, settings):
        service = VaultService.simulated(settings)
        env = service.environment
        vault = service.vault
        await service.execute(vault.add_strategy, env.resolve("strategy-a"), 6000)
        await service.execute(
            vault.add_strategy, env.resolve("strategy-locked", StrategyKind.CONVERTIBLE, True), 4000,
            StrategyKind.CONVERTIBLE, True,
        )
        await service.execute(env.asset.approve, "alice", vault.address, UNLIMITED)
        await service.execute(vault.deposit, 1000 * USDC, "alice")
        await service.execute(vault.rebalance)
        outcome = await service.execute(vault.withdraw, 500 * USDC, "alice", "alice")
        assert outcome.queued
        return service

    @pytest.mark.asyncio
    async def test_restart_keeps_assets_behind_shares(self, service_db, persisted_settings):
        first = await self._run_first_service(persisted_settings)

        restarted = VaultService.simulated(persisted_settings)
        assert await restarted.load() is True
        vault = restarted.vault
        env = restarted.environment

        assert vault.total_supply == 500 * USDC
        assert vault.total_queued_assets == 500 * USDC
        assert vault.total_value() == 1000 * USDC
        assert vault.idle_balance() == 0
        # seed balances are not minted a second time
        assert env.asset.balance_of("alice") == 0
        assert env.asset.allowance("alice", vault.address) == UNLIMITED
        locked = env.strategies["strategy-locked"]
        assert locked.unlock_time(vault.address) == first.environment.strategies["strategy-locked"].unlock_time(vault.address)
        assert locked.is_locked(vault.address)

        locked.unlock()
        await restarted.execute(vault.rebalance)
        await restarted.execute(vault.complete_withdrawal, "alice", 0)

        assert env.asset.balance_of("alice") == 500 * USDC
        assert vault.events.of_type(ev.ValuationChanged) == []
        assert vault.redeem(vault.balance_of("alice"), "alice", "alice").assets == 500 * USDC

    @pytest.mark.asyncio
    async def test_restart_without_simulation_state_is_rejected(self, service_db, persisted_settings, session_factory):
        await self._run_first_service(persisted_settings)
        async with session_factory() as session:
            for row in (await session.execute(select(SimAssetBalance))).scalars().all():
                await session.delete(row)
            await session.commit()

        restarted = VaultService.simulated(persisted_settings)
        with pytest.raises(ValidationError):
            await restarted.load()

    @pytest.mark.asyncio
    async def test_nothing_saved_keeps_seed(self, service_db, persisted_settings):
        fresh = VaultService.simulated(persisted_settings)
        assert await fresh.load() is False
        assert fresh.environment.asset.balance_of("alice") == 1000 * USDC


class TestSimulationRepository:

    @pytest.mark.asyncio
    async def test_unknown_strategy_position_rejected(self, populated_vault, environment, test_session):
        await SimulationRepository(test_session).save(environment, "vault")

        other = SimulationEnvironment(asset=SimulatedAsset())
        with pytest.raises(ValidationError):
            await SimulationRepository(test_session).load(other, "vault")

    @pytest.mark.asyncio
    async def test_positions_upsert(self, populated_vault, environment, test_session):
        repo = SimulationRepository(test_session)
        await repo.save(environment, "vault")
        populated_vault.pause()
        populated_vault.emergency_withdraw_all()
        await repo.save(environment, "vault")
        await test_session.commit()

        rows = (await test_session.execute(select(SimStrategyPosition))).scalars().all()
        assert {(r.strategy_address, r.holder): r.units for r in rows} == {("strategy-a", "vault"): 0}
