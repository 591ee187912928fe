"""Multi-strategy vault.

The vault is the single pool context: it owns the share ledger, the strategy
registry, the withdrawal queue and the valuation cache, and it is the only
place those are mutated. Every balance-affecting entry point runs through
``_operation``, which

- rejects reentrant calls (one guard shared by all entry points)
- rejects calls while paused, where the entry point is pause-gated
- checkpoints vault state and every checkpointable collaborator, and
  restores all of it if anything inside the operation raises
- buffers events and publishes them only once the operation commits
- reports yield or loss accrued since the last operation, then refreshes the
  valuation snapshot when the operation succeeds

Share conversion uses the pool's net value: total managed value minus the
assets escrowed for pending withdrawal requests. Escrowed claims are fixed in
asset terms and no longer belong to share holders.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Union

import structlog

from msvault.core.config import Settings, get_settings
from msvault.core.errors import (
    ExternalFailure,
    InsufficientLiquidity,
    InsufficientShares,
    InvalidAddress,
    NoSharesOutstanding,
    ReentrancyError,
    VaultError,
    VaultNotPaused,
    VaultPaused,
    ZeroAmount,
)
from msvault.services.vault import events as ev
from msvault.services.vault.capabilities import AssetToken, Checkpointable
from msvault.services.vault.external import call_external, call_for_amount
from msvault.services.vault.rebalancer import RebalancePlan, RebalanceResult, Rebalancer
from msvault.services.vault.registry import StrategyRegistry
from msvault.services.vault.share_ledger import Rounding, ShareLedger
from msvault.services.vault.strategies import (
    StrategyHandle,
    StrategyKind,
    StrategyRecord,
)
from msvault.services.vault.valuation import StrategyValue, ValuationOracle
from msvault.services.vault.withdrawal_queue import WithdrawalQueue, WithdrawalRequest

logger = structlog.get_logger()


@dataclass
class WithdrawalOutcome:
    """Result of withdraw/redeem: paid out now, or queued."""
    assets: int
    shares: int
    request: Optional[WithdrawalRequest] = None

    @property
    def queued(self) -> bool:
        return self.request is not None


@dataclass
class EmergencyResult:
    """Result of an emergency unwind."""
    recovered: int
    redeemed: Dict[int, int] = field(default_factory=dict)
    skipped: List[int] = field(default_factory=list)


@dataclass
class VaultMetrics:
    """Point-in-time metrics for operators and UIs."""
    total_value: int
    net_value: int
    total_shares: int
    price_per_share: Decimal
    total_queued: int
    idle_balance: int
    strategy_count: int
    active_allocation_bps: int
    paused: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_value": self.total_value,
            "net_value": self.net_value,
            "total_shares": self.total_shares,
            "price_per_share": str(self.price_per_share),
            "total_queued": self.total_queued,
            "idle_balance": self.idle_balance,
            "strategy_count": self.strategy_count,
            "active_allocation_bps": self.active_allocation_bps,
            "paused": self.paused,
        }


class MultiStrategyVault:
    """Pooled single-asset vault spread across strategies."""

    def __init__(
        self,
        asset: AssetToken,
        address: str = "vault",
        name: str = "Multi Strategy Vault",
        symbol: str = "MSV",
        max_strategy_allocation_bps: int = 6000,
        max_total_allocation_bps: int = 10_000,
        collaborators: Iterable[Checkpointable] = (),
        clock: Optional[Callable[[], datetime]] = None,
        event_bus: Optional[ev.EventBus] = None,
    ):
        if not address:
            raise InvalidAddress("vault")
        self.asset = asset
        self.address = address
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.ledger = ShareLedger(name=name, symbol=symbol, decimals=asset.decimals)
        self.registry = StrategyRegistry(
            max_strategy_bps=max_strategy_allocation_bps,
            max_total_bps=max_total_allocation_bps,
            clock=self._clock,
        )
        self.queue = WithdrawalQueue(clock=self._clock)
        self.oracle = ValuationOracle(asset, self.registry, address)
        self.rebalancer = Rebalancer(asset, self.registry, self.oracle, address, clock=self._clock)
        self.events = event_bus or ev.EventBus()

        self.paused = False
        # net value (total minus queued claims) at the last commit
        self.cached_total_value: Optional[int] = None
        self.cached_update_time: Optional[datetime] = None

        self._collaborators = list(collaborators)
        self._active_operation: Optional[str] = None
        self._pending_events: List[ev.VaultEvent] = []

    @classmethod
    def from_settings(
        cls,
        asset: AssetToken,
        settings: Optional[Settings] = None,
        **overrides,
    ) -> "MultiStrategyVault":
        """Build a vault from application settings."""
        settings = settings or get_settings()
        kwargs = dict(
            address=settings.vault_address,
            name=settings.vault_name,
            symbol=settings.vault_symbol,
            max_strategy_allocation_bps=settings.max_strategy_allocation_bps,
            max_total_allocation_bps=settings.max_total_allocation_bps,
        )
        kwargs.update(overrides)
        return cls(asset, **kwargs)

    # ==================== Transaction boundary ====================

    @contextmanager
    def _operation(
        self,
        name: str,
        pause_gated: bool = True,
        track_valuation: bool = True,
    ) -> Iterator[None]:
        if self._active_operation is not None:
            raise ReentrancyError(name, self._active_operation)
        if pause_gated and self.paused:
            raise VaultPaused()

        saved = self._checkpoint()
        self._active_operation = name
        self._pending_events = []
        try:
            if track_valuation:
                self._accrue()
            yield
            if track_valuation:
                self._refresh_valuation()
        except BaseException as e:
            self._restore(saved)
            self._pending_events = []
            if isinstance(e, ExternalFailure):
                logger.error("Vault operation failed", operation=name, error=str(e))
            elif isinstance(e, VaultError):
                logger.warning("Vault operation rejected", operation=name, error=e.code, detail=e.message)
            elif isinstance(e, Exception):
                logger.exception("Vault operation crashed", operation=name)
            else:
                logger.warning("Vault operation interrupted", operation=name, error=type(e).__name__)
            raise
        finally:
            self._active_operation = None

        committed = self._pending_events
        self._pending_events = []
        self.events.publish(committed)

    def _emit(self, event: ev.VaultEvent) -> None:
        self._pending_events.append(event)

    def _checkpointables(self) -> List[Checkpointable]:
        seen = set()
        targets: List[Checkpointable] = []
        candidates = [self.asset, *(r.handle for r in self.registry.all()), *self._collaborators]
        for obj in candidates:
            if isinstance(obj, Checkpointable) and id(obj) not in seen:
                seen.add(id(obj))
                targets.append(obj)
        return targets

    def _checkpoint(self) -> Dict[str, Any]:
        return {
            "ledger": self.ledger.checkpoint(),
            "registry": self.registry.checkpoint(),
            "queue": self.queue.checkpoint(),
            "cache": (self.cached_total_value, self.cached_update_time),
            "paused": self.paused,
            "collaborators": [(c, c.checkpoint()) for c in self._checkpointables()],
        }

    def _restore(self, saved: Dict[str, Any]) -> None:
        for collaborator, token in saved["collaborators"]:
            collaborator.restore(token)
        self.ledger.restore(saved["ledger"])
        self.registry.restore(saved["registry"])
        self.queue.restore(saved["queue"])
        self.cached_total_value, self.cached_update_time = saved["cache"]
        self.paused = saved["paused"]

    def _accrue(self) -> None:
        """Report value drift since the last committed operation."""
        current = self.net_value()
        previous = self.cached_total_value
        if previous is None or current == previous:
            return
        delta = current - previous
        logger.info(
            "Yield accrued" if delta > 0 else "Loss realized",
            previous_total=previous,
            new_total=current,
            delta=delta,
        )
        self._emit(ev.ValuationChanged(previous_total=previous, new_total=current, delta=delta))

    def _refresh_valuation(self) -> None:
        self.cached_total_value = self.net_value()
        self.cached_update_time = self._clock()

    # ==================== Valuation views ====================

    def total_value(self) -> int:
        """Idle balance plus every active strategy's value."""
        return self.oracle.total_value()

    def net_value(self) -> int:
        """Total value minus assets escrowed for pending withdrawals."""
        return max(self.oracle.total_value() - self.queue.total_queued_assets, 0)

    def idle_balance(self) -> int:
        return self.oracle.idle_balance()

    def strategy_values(self) -> List[StrategyValue]:
        return self.oracle.breakdown()

    # ==================== Share views ====================

    @property
    def total_supply(self) -> int:
        return self.ledger.total_supply

    def balance_of(self, holder: str) -> int:
        return self.ledger.balance_of(holder)

    def convert_to_shares(self, assets: int) -> int:
        return self.ledger.shares_for(assets, self.net_value(), Rounding.DOWN)

    def convert_to_assets(self, shares: int) -> int:
        return self.ledger.assets_for(shares, self.net_value(), Rounding.DOWN)

    def preview_deposit(self, assets: int) -> int:
        return self.ledger.shares_for(assets, self.net_value(), Rounding.DOWN)

    def preview_mint(self, shares: int) -> int:
        return self._assets_to_mint(shares, self.net_value())

    def preview_withdraw(self, assets: int) -> int:
        return self._shares_to_withdraw(assets, self.net_value())

    def preview_redeem(self, shares: int) -> int:
        return self.ledger.assets_for(shares, self.net_value(), Rounding.DOWN)

    def max_withdraw(self, owner: str) -> int:
        shares = self.ledger.balance_of(owner)
        if shares == 0:
            return 0
        return self.ledger.assets_for(shares, self.net_value(), Rounding.DOWN)

    def max_redeem(self, owner: str) -> int:
        return self.ledger.balance_of(owner)

    def _assets_to_mint(self, shares: int, value: int) -> int:
        if self.ledger.total_supply == 0:
            return shares
        return self.ledger.assets_for(shares, value, Rounding.UP)

    def _shares_to_withdraw(self, assets: int, value: int) -> int:
        if self.ledger.total_supply == 0:
            raise NoSharesOutstanding()
        return self.ledger.shares_for(assets, value, Rounding.UP)

    # ==================== Deposits ====================

    def deposit(self, assets: int, receiver: str, caller: Optional[str] = None) -> int:
        """Pull ``assets`` from caller and mint shares to receiver. Returns shares."""
        caller = caller or receiver
        self._require_amount(assets, "assets")
        self._require_address(receiver, "receiver")

        with self._operation("deposit"):
            shares = self.ledger.shares_for(assets, self.net_value(), Rounding.DOWN)
            if shares == 0:
                raise ZeroAmount("shares")
            self._pull(caller, assets)
            self.ledger.mint(receiver, shares)
            self._emit(ev.Deposit(caller=caller, receiver=receiver, assets=assets, shares=shares))

        logger.info("Deposit", receiver=receiver, assets=assets, shares=shares)
        return shares

    def mint(self, shares: int, receiver: str, caller: Optional[str] = None) -> int:
        """Mint exactly ``shares`` to receiver. Returns assets pulled from caller."""
        caller = caller or receiver
        self._require_amount(shares, "shares")
        self._require_address(receiver, "receiver")

        with self._operation("mint"):
            assets = self._assets_to_mint(shares, self.net_value())
            if assets == 0:
                raise ZeroAmount("assets")
            self._pull(caller, assets)
            self.ledger.mint(receiver, shares)
            self._emit(ev.Deposit(caller=caller, receiver=receiver, assets=assets, shares=shares))

        logger.info("Mint", receiver=receiver, assets=assets, shares=shares)
        return assets

    # ==================== Withdrawals ====================

    def withdraw(
        self,
        assets: int,
        receiver: str,
        owner: str,
        caller: Optional[str] = None,
    ) -> WithdrawalOutcome:
        """Withdraw exactly ``assets``, burning the shares that cover them.

        Pays out immediately when unreserved idle balance covers the amount,
        otherwise burns the shares now and queues a fixed asset claim.
        """
        caller = caller or owner
        self._require_amount(assets, "assets")
        self._require_address(receiver, "receiver")
        self._require_address(owner, "owner")

        with self._operation("withdraw"):
            shares = self._shares_to_withdraw(assets, self.net_value())
            outcome = self._settle(caller, receiver, owner, assets, shares)
        return outcome

    def redeem(
        self,
        shares: int,
        receiver: str,
        owner: str,
        caller: Optional[str] = None,
    ) -> WithdrawalOutcome:
        """Burn ``shares`` for their asset value, paid now or queued."""
        caller = caller or owner
        self._require_amount(shares, "shares")
        self._require_address(receiver, "receiver")
        self._require_address(owner, "owner")

        with self._operation("redeem"):
            assets = self.ledger.assets_for(shares, self.net_value(), Rounding.DOWN)
            if assets == 0:
                raise ZeroAmount("assets")
            outcome = self._settle(caller, receiver, owner, assets, shares)
        return outcome

    def _settle(self, caller: str, receiver: str, owner: str, assets: int, shares: int) -> WithdrawalOutcome:
        """Burn shares, then pay out or queue. Shares and assets come from one snapshot."""
        balance = self.ledger.balance_of(owner)
        if shares > balance:
            raise InsufficientShares(owner, shares, balance)
        self.ledger.spend_allowance(owner, caller, shares)
        self.ledger.burn(owner, shares)

        available = self.oracle.idle_balance() - self.queue.total_queued_assets
        if available >= assets:
            self._pay(receiver, assets)
            self._emit(ev.Withdraw(
                caller=caller, receiver=receiver, owner=owner, assets=assets, shares=shares,
            ))
            logger.info("Withdrawal paid", owner=owner, receiver=receiver, assets=assets, shares=shares)
            return WithdrawalOutcome(assets=assets, shares=shares)

        request = self.queue.enqueue(owner, shares, assets, receiver=receiver)
        self._emit(ev.WithdrawalQueued(
            holder=owner, shares=shares, assets=assets, request_id=request.request_id,
        ))
        logger.info(
            "Withdrawal queued",
            owner=owner,
            assets=assets,
            shares=shares,
            request_id=request.request_id,
            available=max(available, 0),
        )
        return WithdrawalOutcome(assets=assets, shares=shares, request=request)

    def complete_withdrawal(self, holder: str, request_id: int) -> WithdrawalRequest:
        """Settle a queued request once idle balance covers it."""
        self._require_address(holder, "holder")

        with self._operation("complete_withdrawal"):
            request = self.queue.get_pending(holder, request_id)
            idle = self.oracle.idle_balance()
            if idle < request.assets_owed:
                raise InsufficientLiquidity(request.assets_owed, idle)
            request = self.queue.mark_completed(holder, request_id)
            self._pay(request.receiver, request.assets_owed)
            self._emit(ev.WithdrawalCompleted(
                holder=holder, request_id=request_id, assets=request.assets_owed,
            ))

        logger.info(
            "Queued withdrawal completed",
            holder=holder,
            request_id=request_id,
            assets=request.assets_owed,
        )
        return request

    def pending_withdrawals(self, holder: str) -> List[WithdrawalRequest]:
        """All of a holder's withdrawal requests, pending and completed."""
        return self.queue.requests_for(holder)

    @property
    def total_queued_assets(self) -> int:
        return self.queue.total_queued_assets

    # ==================== Strategy management ====================

    def add_strategy(
        self,
        handle: StrategyHandle,
        allocation_bps: int,
        kind: Union[StrategyKind, str] = StrategyKind.CONVERTIBLE,
        has_lockup: bool = False,
    ) -> int:
        """Register a strategy. Returns its stable index."""
        with self._operation("add_strategy", pause_gated=False, track_valuation=False):
            record = self.registry.add(handle, allocation_bps, kind, has_lockup)
            self._emit(ev.StrategyAdded(
                index=record.index,
                address=record.address,
                allocation_bps=record.allocation_bps,
                kind=record.kind.value,
                has_lockup=record.has_lockup,
            ))
        return record.index

    def update_allocation(self, index: int, new_bps: int) -> StrategyRecord:
        with self._operation("update_allocation", pause_gated=False, track_valuation=False):
            previous, record = self.registry.update_allocation(index, new_bps)
            self._emit(ev.StrategyUpdated(index=index, previous_bps=previous, allocation_bps=new_bps))
        return record

    def remove_strategy(self, index: int) -> StrategyRecord:
        """Deactivate a strategy. Calling it again is a no-op."""
        with self._operation("remove_strategy", pause_gated=False, track_valuation=False):
            if self.registry.remove(index):
                self._emit(ev.StrategyRemoved(index=index))
            record = self.registry.get(index)
        return record

    def list_strategies(self) -> List[StrategyRecord]:
        return self.registry.all()

    # ==================== Rebalancing ====================

    def plan_rebalance(self) -> RebalancePlan:
        """Preview the deltas a rebalance would act on. Read-only."""
        return self.rebalancer.plan(self.queue.total_queued_assets)

    def rebalance(self) -> RebalanceResult:
        """Move capital between idle balance and strategies to match targets."""
        with self._operation("rebalance"):
            plan = self.rebalancer.plan(self.queue.total_queued_assets)
            result = self.rebalancer.execute(plan)
            self._emit(ev.RebalanceCompleted(
                timestamp=result.timestamp,
                total_divested=result.total_divested,
                total_invested=result.total_invested,
            ))
        return result

    # ==================== Pause and emergency unwind ====================

    def pause(self) -> None:
        with self._operation("pause", track_valuation=False):
            self.paused = True
            self._emit(ev.Paused(timestamp=self._clock()))
        logger.warning("Vault paused")

    def unpause(self) -> None:
        if not self.paused:
            raise VaultNotPaused()
        with self._operation("unpause", pause_gated=False, track_valuation=False):
            self.paused = False
            self._emit(ev.Unpaused(timestamp=self._clock()))
        logger.info("Vault unpaused")

    def emergency_withdraw_all(self) -> EmergencyResult:
        """Redeem every unit held in convertible strategies back to idle.

        Only allowed while paused. Direct strategies cannot be unwound from the
        pool side and are reported as skipped.
        """
        if not self.paused:
            raise VaultNotPaused()

        with self._operation("emergency_withdraw_all", pause_gated=False, track_valuation=False):
            result = EmergencyResult(recovered=0)
            for record in self.registry.all():
                units = self.oracle.held_units(record)
                if units == 0:
                    continue
                if record.kind == StrategyKind.DIRECT:
                    logger.warning(
                        "Direct strategy cannot be unwound by the vault",
                        index=record.index,
                        address=record.address,
                        balance=units,
                    )
                    result.skipped.append(record.index)
                    continue

                idle_before = self.oracle.idle_balance()
                returned = call_for_amount(
                    record.address, "redeem", record.handle.redeem, units, self.address, self.address
                )
                received = self.oracle.idle_balance() - idle_before
                if received != returned:
                    raise ExternalFailure(
                        f"{record.address}.redeem reported {returned} but pool received {received}",
                        target=record.address,
                        operation="redeem",
                    )
                result.redeemed[record.index] = returned
                result.recovered += returned

            self._emit(ev.EmergencyWithdrawal(recovered=result.recovered, skipped_strategies=list(result.skipped)))

        logger.warning("Emergency withdrawal executed", recovered=result.recovered, skipped=result.skipped)
        return result

    # ==================== Share token ====================

    def approve(self, owner: str, spender: str, shares: int) -> None:
        self.ledger.approve(owner, spender, shares)

    def allowance(self, owner: str, spender: str) -> int:
        return self.ledger.allowance(owner, spender)

    def transfer(self, sender: str, to: str, shares: int) -> None:
        with self._operation("transfer", track_valuation=False):
            self.ledger.transfer(sender, to, shares)

    # ==================== Metrics ====================

    def metrics(self) -> VaultMetrics:
        idle = self.oracle.idle_balance()
        total = idle + sum(v.value for v in self.oracle.breakdown())
        queued = self.queue.total_queued_assets
        net = max(total - queued, 0)
        supply = self.ledger.total_supply
        price = Decimal(net) / Decimal(supply) if supply else Decimal(1)
        return VaultMetrics(
            total_value=total,
            net_value=net,
            total_shares=supply,
            price_per_share=price,
            total_queued=queued,
            idle_balance=idle,
            strategy_count=len(self.registry.active()),
            active_allocation_bps=self.registry.active_allocation_bps(),
            paused=self.paused,
        )

    # ==================== Asset movement ====================

    def _pull(self, source: str, amount: int) -> None:
        """Receive ``amount`` from source before any shares are created."""
        before = self.oracle.idle_balance()
        ok = call_external(
            self.asset.symbol, "transfer_from",
            self.asset.transfer_from, self.address, source, self.address, amount,
        )
        if ok is not True:
            raise ExternalFailure(
                f"{self.asset.symbol}.transfer_from returned {ok!r}",
                target=self.asset.symbol,
                operation="transfer_from",
            )
        received = self.oracle.idle_balance() - before
        if received != amount:
            raise ExternalFailure(
                f"Expected to receive {amount} {self.asset.symbol}, got {received}",
                target=self.asset.symbol,
                operation="transfer_from",
            )

    def _pay(self, receiver: str, amount: int) -> None:
        ok = call_external(
            self.asset.symbol, "transfer",
            self.asset.transfer, self.address, receiver, amount,
        )
        if ok is not True:
            raise ExternalFailure(
                f"{self.asset.symbol}.transfer returned {ok!r}",
                target=self.asset.symbol,
                operation="transfer",
            )

    @staticmethod
    def _require_amount(amount: int, field_name: str) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ZeroAmount(field_name)

    @staticmethod
    def _require_address(address: str, field_name: str) -> None:
        if not address:
            raise InvalidAddress(field_name)
