"""Vault signals.

Events are plain dataclasses. The vault buffers them while an operation runs
and publishes them through the EventBus only once the operation commits, so a
failed operation never leaks a signal.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

import structlog

logger = structlog.get_logger()


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class VaultEvent:
    """Base class for vault signals."""

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        for key, value in payload.items():
            if isinstance(value, datetime):
                payload[key] = value.isoformat()
        return {"signal": self.name, **payload}


@dataclass(frozen=True)
class Deposit(VaultEvent):
    caller: str
    receiver: str
    assets: int
    shares: int


@dataclass(frozen=True)
class Withdraw(VaultEvent):
    caller: str
    receiver: str
    owner: str
    assets: int
    shares: int


@dataclass(frozen=True)
class StrategyAdded(VaultEvent):
    index: int
    address: str
    allocation_bps: int
    kind: str
    has_lockup: bool


@dataclass(frozen=True)
class StrategyUpdated(VaultEvent):
    index: int
    previous_bps: int
    allocation_bps: int


@dataclass(frozen=True)
class StrategyRemoved(VaultEvent):
    index: int


@dataclass(frozen=True)
class RebalanceCompleted(VaultEvent):
    timestamp: datetime
    total_divested: int
    total_invested: int


@dataclass(frozen=True)
class WithdrawalQueued(VaultEvent):
    holder: str
    shares: int
    assets: int
    request_id: int


@dataclass(frozen=True)
class WithdrawalCompleted(VaultEvent):
    holder: str
    request_id: int
    assets: int


@dataclass(frozen=True)
class ValuationChanged(VaultEvent):
    previous_total: int
    new_total: int
    delta: int


@dataclass(frozen=True)
class EmergencyWithdrawal(VaultEvent):
    recovered: int
    skipped_strategies: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class Paused(VaultEvent):
    timestamp: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class Unpaused(VaultEvent):
    timestamp: datetime = field(default_factory=_now)


Subscriber = Callable[[VaultEvent], None]


class EventBus:
    """Fan-out of committed vault events to subscribers.

    Keeps an in-memory history so operators and tests can inspect what was
    emitted.
    """

    def __init__(self, keep_history: bool = True):
        self._subscribers: List[Subscriber] = []
        self._keep_history = keep_history
        self.history: List[VaultEvent] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback. Returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, events: List[VaultEvent]) -> None:
        for event in events:
            logger.info("Vault event", **event.to_dict())
            if self._keep_history:
                self.history.append(event)
            for callback in list(self._subscribers):
                try:
                    callback(event)
                except Exception:
                    # subscribers run after commit and never fail the operation
                    logger.exception("Event subscriber failed", signal=event.name)

    def of_type(self, event_type: type) -> List[VaultEvent]:
        return [e for e in self.history if isinstance(e, event_type)]
