"""In-memory asset and strategies.

Used to run the service without a live settlement layer and as the fixture
world of the test-suite. Every class here implements the checkpoint protocol
so the vault can roll simulated state back together with its own.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

import structlog

from msvault.services.vault.strategies import BPS_DENOMINATOR, StrategyKind

logger = structlog.get_logger()

UNLIMITED = 2**256 - 1


class SimulationError(Exception):
    """A simulated collaborator refused a call (the equivalent of a revert)."""
    pass


class LockupActive(SimulationError):
    pass


class SimulatedAsset:
    """Fungible token ledger with balances and allowances."""

    def __init__(self, symbol: str = "USDC", decimals: int = 6):
        self.symbol = symbol
        self.decimals = decimals
        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}
        self.total_supply = 0

    def units(self, amount: float) -> int:
        """Convert a whole-token amount to smallest units."""
        return int(round(amount * 10 ** self.decimals))

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def mint(self, to: str, amount: int) -> None:
        self._balances[to] = self.balance_of(to) + amount
        self.total_supply += amount

    def burn(self, account: str, amount: int) -> None:
        self._debit(account, amount)
        self.total_supply -= amount

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        if amount < 0:
            raise SimulationError("negative allowance")
        self._allowances[(owner, spender)] = amount
        return True

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        self._move(sender, to, amount)
        return True

    def transfer_from(self, spender: str, source: str, to: str, amount: int) -> bool:
        if spender != source:
            current = self.allowance(source, spender)
            if current < amount:
                raise SimulationError(
                    f"allowance {current} of {source} for {spender} below {amount}"
                )
            if current != UNLIMITED:
                self._allowances[(source, spender)] = current - amount
        self._move(source, to, amount)
        return True

    def _move(self, sender: str, to: str, amount: int) -> None:
        if amount < 0:
            raise SimulationError("negative transfer")
        if not to:
            raise SimulationError("transfer to empty address")
        self._debit(sender, amount)
        self._balances[to] = self.balance_of(to) + amount

    def _debit(self, account: str, amount: int) -> None:
        balance = self.balance_of(account)
        if balance < amount:
            raise SimulationError(f"{account} balance {balance} below {amount}")
        self._balances[account] = balance - amount

    def balances(self) -> Dict[str, int]:
        return dict(self._balances)

    def allowances(self) -> Dict[Tuple[str, str], int]:
        return dict(self._allowances)

    def load(self, balances: Dict[str, int], allowances: Dict[Tuple[str, str], int]) -> None:
        """Replace the whole ledger, e.g. with persisted state."""
        self._balances = dict(balances)
        self._allowances = dict(allowances)
        self.total_supply = sum(self._balances.values())

    def checkpoint(self):
        return dict(self._balances), dict(self._allowances), self.total_supply

    def restore(self, token) -> None:
        balances, allowances, supply = token
        self._balances = dict(balances)
        self._allowances = dict(allowances)
        self.total_supply = supply


class SimulatedConvertibleStrategy:
    """Tokenized yield vault: issues units against deposited assets.

    The exchange rate is the asset balance it holds over units outstanding, so
    minting assets to it (``simulate_yield``) raises the value of every unit.
    ``deposit`` pulls from ``receiver``, which must have approved the strategy.
    """

    kind = StrategyKind.CONVERTIBLE

    def __init__(self, asset: SimulatedAsset, address: str, name: Optional[str] = None):
        self.asset = asset
        self.address = address
        self.name = name or address
        self._units: Dict[str, int] = {}
        self.total_units = 0
        self.failing = False

    def total_assets(self) -> int:
        return self.asset.balance_of(self.address)

    def balance_of(self, holder: str) -> int:
        self._check_available("balance_of")
        return self._units.get(holder, 0)

    def convert_to_assets(self, units: int) -> int:
        self._check_available("convert_to_assets")
        if self.total_units == 0:
            return units
        return units * self.total_assets() // self.total_units

    def convert_to_shares(self, assets: int) -> int:
        self._check_available("convert_to_shares")
        total_assets = self.total_assets()
        if self.total_units == 0 or total_assets == 0:
            return assets
        return assets * self.total_units // total_assets

    def deposit(self, assets: int, receiver: str) -> int:
        self._check_available("deposit")
        units = self.convert_to_shares(assets)
        if units == 0:
            raise SimulationError("deposit too small")
        self.asset.transfer_from(self.address, receiver, self.address, assets)
        self._units[receiver] = self._units.get(receiver, 0) + units
        self.total_units += units
        self._on_deposit(receiver)
        return units

    def redeem(self, units: int, receiver: str, owner: str) -> int:
        self._check_available("redeem")
        self._check_redeemable(owner)
        held = self._units.get(owner, 0)
        if units > held:
            raise SimulationError(f"{owner} holds {held} units, {units} requested")
        assets = self.convert_to_assets(units)
        self._units[owner] = held - units
        self.total_units -= units
        self.asset.transfer(self.address, receiver, assets)
        return assets

    def simulate_yield(self, bps: int) -> int:
        """Grow held assets by ``bps`` basis points. Returns the amount added."""
        gain = self.total_assets() * bps // BPS_DENOMINATOR
        self.asset.mint(self.address, gain)
        logger.debug("Simulated yield", strategy=self.address, bps=bps, gain=gain)
        return gain

    def simulate_loss(self, bps: int) -> int:
        """Shrink held assets by ``bps`` basis points. Returns the amount lost."""
        loss = self.total_assets() * bps // BPS_DENOMINATOR
        self.asset.burn(self.address, loss)
        logger.debug("Simulated loss", strategy=self.address, bps=bps, loss=loss)
        return loss

    def _check_available(self, operation: str) -> None:
        if self.failing:
            raise SimulationError(f"{self.address} unavailable during {operation}")

    def _check_redeemable(self, owner: str) -> None:
        pass

    def _on_deposit(self, receiver: str) -> None:
        pass

    def positions(self) -> Dict[str, Tuple[int, Optional[datetime]]]:
        """Units per holder, with the lockup end where one applies."""
        return {holder: (units, None) for holder, units in self._units.items()}

    def load_positions(self, positions: Dict[str, Tuple[int, Optional[datetime]]]) -> None:
        self._units = {holder: units for holder, (units, _) in positions.items()}
        self.total_units = sum(self._units.values())

    def checkpoint(self):
        return dict(self._units), self.total_units

    def restore(self, token) -> None:
        units, total = token
        self._units = dict(units)
        self.total_units = total


class SimulatedLockedStrategy(SimulatedConvertibleStrategy):
    """Convertible strategy whose units cannot be redeemed during a lockup.

    Every deposit restarts the holder's lockup window.
    """

    def __init__(
        self,
        asset: SimulatedAsset,
        address: str,
        name: Optional[str] = None,
        lockup_period: timedelta = timedelta(days=7),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(asset, address, name)
        self.lockup_period = lockup_period
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._unlock_at: Dict[str, datetime] = {}

    def unlock_time(self, holder: str) -> Optional[datetime]:
        return self._unlock_at.get(holder)

    def is_locked(self, holder: str) -> bool:
        unlock_at = self._unlock_at.get(holder)
        return unlock_at is not None and self._clock() < unlock_at

    def unlock(self, holder: Optional[str] = None) -> None:
        """End the lockup now, for one holder or everybody."""
        if holder is None:
            self._unlock_at.clear()
        else:
            self._unlock_at.pop(holder, None)

    def _on_deposit(self, receiver: str) -> None:
        self._unlock_at[receiver] = self._clock() + self.lockup_period

    def _check_redeemable(self, owner: str) -> None:
        if self.is_locked(owner):
            raise LockupActive(f"{self.address} units of {owner} locked until {self._unlock_at[owner].isoformat()}")

    def positions(self) -> Dict[str, Tuple[int, Optional[datetime]]]:
        return {holder: (units, self._unlock_at.get(holder)) for holder, units in self._units.items()}

    def load_positions(self, positions: Dict[str, Tuple[int, Optional[datetime]]]) -> None:
        super().load_positions(positions)
        self._unlock_at = {holder: unlock_at for holder, (_, unlock_at) in positions.items() if unlock_at is not None}

    def checkpoint(self):
        return super().checkpoint(), dict(self._unlock_at)

    def restore(self, token) -> None:
        base, unlock_at = token
        super().restore(base)
        self._unlock_at = dict(unlock_at)


class SimulatedDirectStrategy:
    """Plain account holding assets for a single pool, no unit conversion."""

    kind = StrategyKind.DIRECT

    def __init__(self, asset: SimulatedAsset, address: str, name: Optional[str] = None):
        self.asset = asset
        self.address = address
        self.name = name or address
        self.failing = False

    def balance_of(self, holder: str) -> int:
        if self.failing:
            raise SimulationError(f"{self.address} unavailable during balance_of")
        return self.asset.balance_of(self.address)

    def simulate_yield(self, bps: int) -> int:
        gain = self.asset.balance_of(self.address) * bps // BPS_DENOMINATOR
        self.asset.mint(self.address, gain)
        return gain

    def checkpoint(self):
        return None

    def restore(self, token) -> None:
        pass


@dataclass
class SimulationEnvironment:
    """Asset plus strategies addressed by name, for the simulated service."""
    asset: SimulatedAsset
    strategies: Dict[str, object] = field(default_factory=dict)
    lockup_period: timedelta = timedelta(days=7)

    def resolve(self, address: str, kind: StrategyKind = StrategyKind.CONVERTIBLE, has_lockup: bool = False):
        """Return the strategy at ``address``, creating it on first use."""
        existing = self.strategies.get(address)
        if existing is not None:
            return existing
        kind = StrategyKind(kind)
        if kind == StrategyKind.DIRECT:
            strategy = SimulatedDirectStrategy(self.asset, address)
        elif has_lockup:
            strategy = SimulatedLockedStrategy(self.asset, address, lockup_period=self.lockup_period)
        else:
            strategy = SimulatedConvertibleStrategy(self.asset, address)
        self.strategies[address] = strategy
        logger.info("Simulated strategy created", address=address, kind=kind.value, has_lockup=has_lockup)
        return strategy

    def seed(self, balances: Dict[str, int]) -> None:
        for account, amount in balances.items():
            self.asset.mint(account, amount)
