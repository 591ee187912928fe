"""Valuation oracle.

Total managed value = idle balance + the asset value of every active
strategy position. Read-only: nothing here mutates vault or strategy state.
A strategy that fails or answers nonsense makes the whole valuation
unavailable; no cached or estimated value is ever substituted.
"""

from dataclasses import dataclass
from typing import Dict, List

from msvault.services.vault.capabilities import AssetToken
from msvault.services.vault.external import call_for_amount
from msvault.services.vault.registry import StrategyRegistry
from msvault.services.vault.strategies import StrategyKind, StrategyRecord


@dataclass
class StrategyValue:
    """Live holding of the pool in one strategy."""
    index: int
    address: str
    kind: StrategyKind
    units: int   # strategy units held (equals value for direct strategies)
    value: int   # asset units


class ValuationOracle:
    """Computes the pool's total managed value from live balances."""

    def __init__(self, asset: AssetToken, registry: StrategyRegistry, pool_address: str):
        self.asset = asset
        self.registry = registry
        self.pool_address = pool_address

    def idle_balance(self) -> int:
        return call_for_amount(
            self.asset.symbol, "balance_of", self.asset.balance_of, self.pool_address
        )

    def held_units(self, record: StrategyRecord) -> int:
        """Units (convertible) or asset units (direct) the pool holds in a strategy."""
        return call_for_amount(
            record.address, "balance_of", record.handle.balance_of, self.pool_address
        )

    def strategy_value(self, record: StrategyRecord) -> StrategyValue:
        units = self.held_units(record)
        if record.kind == StrategyKind.CONVERTIBLE:
            value = (
                call_for_amount(
                    record.address, "convert_to_assets", record.handle.convert_to_assets, units
                )
                if units > 0 else 0
            )
        else:
            value = units
        return StrategyValue(
            index=record.index,
            address=record.address,
            kind=record.kind,
            units=units,
            value=value,
        )

    def breakdown(self) -> List[StrategyValue]:
        """Live values of all active strategies, in registry order."""
        return [self.strategy_value(r) for r in self.registry.active()]

    def total_value(self) -> int:
        """Idle balance plus the convertible balance of every active strategy."""
        return self.idle_balance() + sum(v.value for v in self.breakdown())

    def values_by_index(self) -> Dict[int, int]:
        return {v.index: v.value for v in self.breakdown()}
