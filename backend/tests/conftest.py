"""Pytest configuration and fixtures for vault tests."""

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add backend to Python path
backend_path = Path(__file__).parent.parent
sys.path.insert(0, str(backend_path))

# Set env vars before importing msvault modules so nothing boots against a real DB
os.environ.setdefault("MSVAULT_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("MSVAULT_ENVIRONMENT", "test")

from msvault.services.vault.simulation import (  # noqa: E402
    UNLIMITED,
    SimulatedAsset,
    SimulatedConvertibleStrategy,
    SimulatedDirectStrategy,
    SimulatedLockedStrategy,
)
from msvault.services.vault.vault import MultiStrategyVault  # noqa: E402

USDC = 10 ** 6
VAULT = "vault"
ALICE = "alice"
BOB = "bob"


class ManualClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def fund(asset: SimulatedAsset, account: str, amount: int, spender: str = VAULT) -> None:
    """Mint asset to an account and let the vault pull it."""
    asset.mint(account, amount)
    asset.approve(account, spender, UNLIMITED)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def asset():
    return SimulatedAsset(symbol="USDC", decimals=6)


@pytest.fixture
def vault(asset, clock):
    return MultiStrategyVault(asset, address=VAULT, clock=clock)


@pytest.fixture
def strategy_a(asset):
    return SimulatedConvertibleStrategy(asset, "strategy-a")


@pytest.fixture
def strategy_b(asset):
    return SimulatedConvertibleStrategy(asset, "strategy-b")


@pytest.fixture
def locked_strategy(asset, clock):
    return SimulatedLockedStrategy(asset, "strategy-locked", lockup_period=timedelta(days=7), clock=clock)


@pytest.fixture
def direct_strategy(asset):
    return SimulatedDirectStrategy(asset, "strategy-direct")


@pytest.fixture
def invested_vault(vault, asset, strategy_a, strategy_b):
    """1000 USDC from alice, split 60/40 between two convertible strategies."""
    vault.add_strategy(strategy_a, 6000)
    vault.add_strategy(strategy_b, 4000)
    fund(asset, ALICE, 1000 * USDC)
    vault.deposit(1000 * USDC, ALICE)
    vault.rebalance()
    return vault
