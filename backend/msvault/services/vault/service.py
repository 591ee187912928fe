"""Async service wrapper around the vault for the HTTP layer.

The vault core is synchronous and rejects reentrant calls, so concurrent
requests are serialized through one ``asyncio.Lock``. When persistence is
enabled the state is saved after every mutating call, inside the same lock.
"""

import asyncio
from datetime import timedelta
from typing import Any, Callable, Optional, TypeVar

import structlog

from msvault.core.config import Settings, get_settings
from msvault.core.database import get_db_context
from msvault.core.errors import ValidationError
from msvault.services.vault.repository import SimulationRepository, VaultRepository
from msvault.services.vault.simulation import SimulatedAsset, SimulationEnvironment
from msvault.services.vault.vault import MultiStrategyVault

logger = structlog.get_logger()

T = TypeVar("T")


class VaultService:
    """One vault instance plus the lock that serializes access to it."""

    def __init__(
        self,
        vault: MultiStrategyVault,
        environment: Optional[SimulationEnvironment] = None,
        persist: bool = False,
    ):
        self.vault = vault
        self.environment = environment
        self.persist = persist
        self._lock = asyncio.Lock()

    @classmethod
    def simulated(cls, settings: Optional[Settings] = None) -> "VaultService":
        """Vault backed by an in-memory asset, seeded from settings."""
        settings = settings or get_settings()
        asset = SimulatedAsset(symbol=settings.asset_symbol, decimals=settings.asset_decimals)
        environment = SimulationEnvironment(
            asset=asset,
            lockup_period=timedelta(days=settings.simulation_lockup_days),
        )
        environment.seed(settings.simulation_seed_balances)
        vault = MultiStrategyVault.from_settings(asset, settings)
        logger.info(
            "Simulated vault created",
            vault=vault.address,
            asset=asset.symbol,
            seeded_accounts=len(settings.simulation_seed_balances),
        )
        return cls(vault, environment=environment, persist=settings.persist_state)

    @property
    def simulation(self) -> bool:
        return self.environment is not None

    async def read(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a read-only call under the lock."""
        async with self._lock:
            return fn(*args, **kwargs)

    async def execute(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a mutating call under the lock, then persist if enabled."""
        async with self._lock:
            result = fn(*args, **kwargs)
            if self.persist:
                await self._save()
            return result

    async def load(self) -> bool:
        """Restore saved state into the (empty) vault and its simulated world."""
        if self.environment is None:
            raise RuntimeError("Loading requires a strategy resolver; none is configured")
        async with self._lock:
            async with get_db_context() as db:
                if not await VaultRepository(db).load(self.vault, self.environment.resolve):
                    return False
                if not await SimulationRepository(db).load(self.environment, self.vault.address):
                    if self.vault.total_supply:
                        raise ValidationError(
                            "Saved shares have no saved simulation state behind them",
                            vault=self.vault.address,
                            total_shares=self.vault.total_supply,
                        )
                    logger.warning("No simulation state saved; keeping seed balances", vault=self.vault.address)
                return True

    async def save(self) -> None:
        async with self._lock:
            await self._save()

    async def _save(self) -> None:
        try:
            async with get_db_context() as db:
                await VaultRepository(db).save(self.vault)
                if self.environment is not None:
                    await SimulationRepository(db).save(self.environment, self.vault.address)
        except Exception:
            logger.exception("Failed to persist vault state", vault=self.vault.address)
            raise
