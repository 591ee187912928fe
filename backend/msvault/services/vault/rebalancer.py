"""Rebalancer moving capital between the idle pool and strategies.

Two ordered passes over active strategies, driven by a single valuation
snapshot taken before any external call:

1. Divest - strategies above target return the excess to the idle pool
2. Invest - strategies below target receive their shortfall, capped by the
   idle balance that is not reserved for queued withdrawals

Targets are fixed for the whole call so value drift caused by the passes
themselves cannot make the algorithm oscillate. Earlier-registered strategies
are funded first when idle liquidity runs short.

The rebalancer does not guard or roll back anything itself: the vault runs it
inside its reentrancy guard and transaction, so any failure here unwinds the
whole rebalance.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import structlog

from msvault.core.errors import ExternalFailure, UnsupportedDivestment
from msvault.services.vault.capabilities import AssetToken
from msvault.services.vault.external import call_external, call_for_amount
from msvault.services.vault.registry import StrategyRegistry
from msvault.services.vault.strategies import StrategyKind, StrategyRecord
from msvault.services.vault.valuation import ValuationOracle

logger = structlog.get_logger()


class MoveAction(str, Enum):
    """What the rebalance does with one strategy."""
    DIVEST = "divest"
    INVEST = "invest"
    HOLD = "hold"


@dataclass
class StrategyDelta:
    """Planned movement for one strategy, computed from the snapshot."""
    index: int
    address: str
    kind: StrategyKind
    allocation_bps: int
    current_value: int
    target_value: int
    held_units: int

    @property
    def delta(self) -> int:
        """Positive when the strategy needs funding, negative when over target."""
        return self.target_value - self.current_value

    @property
    def action(self) -> MoveAction:
        if self.delta < 0:
            return MoveAction.DIVEST
        if self.delta > 0:
            return MoveAction.INVEST
        return MoveAction.HOLD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "address": self.address,
            "kind": self.kind.value,
            "allocation_bps": self.allocation_bps,
            "current_value": self.current_value,
            "target_value": self.target_value,
            "delta": self.delta,
            "action": self.action.value,
        }


@dataclass
class RebalancePlan:
    """Snapshot-based plan. Computing it performs only read calls."""
    total_value: int
    queued_assets: int
    idle_balance: int
    deltas: List[StrategyDelta]

    @property
    def allocatable_value(self) -> int:
        """Value targets are computed from: pool value net of queued claims."""
        return max(self.total_value - self.queued_assets, 0)

    @property
    def blocking(self) -> List[StrategyDelta]:
        """Direct strategies that would need divesting; these cannot be unwound."""
        return [
            d for d in self.deltas
            if d.kind == StrategyKind.DIRECT and d.action == MoveAction.DIVEST
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_value": self.total_value,
            "queued_assets": self.queued_assets,
            "allocatable_value": self.allocatable_value,
            "idle_balance": self.idle_balance,
            "deltas": [d.to_dict() for d in self.deltas],
            "blocked_by": [d.index for d in self.blocking],
        }


@dataclass
class StrategyMove:
    """Capital actually moved for one strategy."""
    index: int
    action: MoveAction
    requested: int
    moved: int
    units: int = 0


@dataclass
class RebalanceResult:
    """Result of an executed rebalance."""
    timestamp: datetime
    total_value: int
    idle_before: int
    idle_after: int
    moves: List[StrategyMove] = field(default_factory=list)

    @property
    def total_divested(self) -> int:
        return sum(m.moved for m in self.moves if m.action == MoveAction.DIVEST)

    @property
    def total_invested(self) -> int:
        return sum(m.moved for m in self.moves if m.action == MoveAction.INVEST)

    @property
    def summary(self) -> str:
        return (
            f"Divested {self.total_divested}, invested {self.total_invested} "
            f"across {len(self.moves)} strategies"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "total_value": self.total_value,
            "idle_before": self.idle_before,
            "idle_after": self.idle_after,
            "total_divested": self.total_divested,
            "total_invested": self.total_invested,
            "moves": [
                {
                    "index": m.index,
                    "action": m.action.value,
                    "requested": m.requested,
                    "moved": m.moved,
                    "units": m.units,
                }
                for m in self.moves
            ],
            "summary": self.summary,
        }


class Rebalancer:
    """Computes and executes allocation deltas for active strategies."""

    def __init__(
        self,
        asset: AssetToken,
        registry: StrategyRegistry,
        oracle: ValuationOracle,
        pool_address: str,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.asset = asset
        self.registry = registry
        self.oracle = oracle
        self.pool_address = pool_address
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def plan(self, queued_assets: int = 0) -> RebalancePlan:
        """Take the valuation snapshot and compute per-strategy deltas."""
        idle = self.oracle.idle_balance()
        values = self.oracle.breakdown()
        total_value = idle + sum(v.value for v in values)
        base = max(total_value - queued_assets, 0)

        records = {r.index: r for r in self.registry.active()}
        deltas = [
            StrategyDelta(
                index=v.index,
                address=v.address,
                kind=v.kind,
                allocation_bps=records[v.index].allocation_bps,
                current_value=v.value,
                target_value=records[v.index].target_for(base),
                held_units=v.units,
            )
            for v in values
        ]
        return RebalancePlan(
            total_value=total_value,
            queued_assets=queued_assets,
            idle_balance=idle,
            deltas=deltas,
        )

    def execute(self, plan: RebalancePlan) -> RebalanceResult:
        """Run the divest pass then the invest pass for a computed plan."""
        blocking = plan.blocking
        if blocking:
            first = blocking[0]
            raise UnsupportedDivestment(first.index, -first.delta)

        logger.info(
            "Rebalance started",
            total_value=plan.total_value,
            queued_assets=plan.queued_assets,
            idle_balance=plan.idle_balance,
            strategies=len(plan.deltas),
        )

        moves: List[StrategyMove] = []

        # Pass 1: divest
        for delta in plan.deltas:
            if delta.action != MoveAction.DIVEST:
                continue
            record = self.registry.get(delta.index)
            moves.append(self._divest(record, delta))

        # Pass 2: invest, capped by unreserved idle balance
        available = max(self.oracle.idle_balance() - plan.queued_assets, 0)
        for delta in plan.deltas:
            if delta.action != MoveAction.INVEST:
                continue
            amount = min(delta.delta, available)
            if amount <= 0:
                logger.info(
                    "Idle balance exhausted, strategy left underfunded",
                    index=delta.index,
                    shortfall=delta.delta,
                )
                moves.append(StrategyMove(delta.index, MoveAction.INVEST, delta.delta, 0))
                continue
            record = self.registry.get(delta.index)
            move = self._invest(record, amount)
            move.requested = delta.delta
            moves.append(move)
            available -= move.moved

        result = RebalanceResult(
            timestamp=self._clock(),
            total_value=plan.total_value,
            idle_before=plan.idle_balance,
            idle_after=self.oracle.idle_balance(),
            moves=moves,
        )
        logger.info(
            "Rebalance completed",
            total_divested=result.total_divested,
            total_invested=result.total_invested,
            idle_after=result.idle_after,
        )
        return result

    # ==================== Capital movement ====================

    def _divest(self, record: StrategyRecord, delta: StrategyDelta) -> StrategyMove:
        excess = -delta.delta
        handle = record.handle
        units = call_for_amount(record.address, "convert_to_shares", handle.convert_to_shares, excess)
        units = min(units, delta.held_units)
        if units == 0:
            return StrategyMove(record.index, MoveAction.DIVEST, excess, 0)

        idle_before = self.oracle.idle_balance()
        returned = call_for_amount(
            record.address, "redeem", handle.redeem, units, self.pool_address, self.pool_address
        )
        received = self.oracle.idle_balance() - idle_before
        if received != returned:
            raise ExternalFailure(
                f"{record.address}.redeem reported {returned} but pool received {received}",
                target=record.address,
                operation="redeem",
            )

        logger.debug("Strategy divested", index=record.index, units=units, assets=returned)
        return StrategyMove(record.index, MoveAction.DIVEST, excess, returned, units)

    def _invest(self, record: StrategyRecord, amount: int) -> StrategyMove:
        idle_before = self.oracle.idle_balance()
        units = 0

        if record.kind == StrategyKind.CONVERTIBLE:
            self._asset_call("approve", self.asset.approve, self.pool_address, record.address, amount)
            units = call_for_amount(
                record.address, "deposit", record.handle.deposit, amount, self.pool_address
            )
            if units == 0:
                raise ExternalFailure(
                    f"{record.address}.deposit issued no units for {amount}",
                    target=record.address,
                    operation="deposit",
                )
            leftover = call_for_amount(
                self.asset.symbol, "allowance", self.asset.allowance, self.pool_address, record.address
            )
            if leftover:
                self._asset_call("approve", self.asset.approve, self.pool_address, record.address, 0)
        else:
            self._asset_call("transfer", self.asset.transfer, self.pool_address, record.address, amount)

        sent = idle_before - self.oracle.idle_balance()
        if sent != amount:
            raise ExternalFailure(
                f"Investing {amount} into {record.address} moved {sent} from the pool",
                target=record.address,
                operation="deposit",
            )

        logger.debug("Strategy funded", index=record.index, assets=amount, units=units)
        return StrategyMove(record.index, MoveAction.INVEST, amount, amount, units)

    def _asset_call(self, operation: str, fn: Callable[..., Any], *args) -> None:
        ok = call_external(self.asset.symbol, operation, fn, *args)
        if ok is not True:
            raise ExternalFailure(
                f"{self.asset.symbol}.{operation} returned {ok!r}",
                target=self.asset.symbol,
                operation=operation,
            )
