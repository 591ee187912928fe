"""Strategy registry with allocation-cap enforcement.

Strategies are appended and soft-deleted, never removed, so indices stay valid
for every external reference. Two invariants hold after every mutation:

- each active strategy's allocation is at most the per-strategy cap
- active allocations sum to at most the aggregate cap

All checks run before the record list is touched, so a rejected call leaves
the registry exactly as it was.
"""

from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple, Union

import structlog

from msvault.core.errors import (
    AllocationExceedsMax,
    DuplicateStrategy,
    InvalidAddress,
    InvalidStrategyIndex,
    StrategyInactive,
    TotalAllocationInvalid,
    ValidationError,
)
from msvault.services.vault.strategies import (
    BPS_DENOMINATOR,
    StrategyHandle,
    StrategyKind,
    StrategyRecord,
)

logger = structlog.get_logger()

_CONVERTIBLE_METHODS = ("deposit", "redeem", "convert_to_assets", "convert_to_shares", "balance_of")


class StrategyRegistry:
    """Ordered, append-only list of strategies."""

    def __init__(
        self,
        max_strategy_bps: int = 6000,
        max_total_bps: int = BPS_DENOMINATOR,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if not 0 <= max_strategy_bps <= BPS_DENOMINATOR:
            raise ValidationError("Per-strategy cap must be within 0..10000 bps")
        if not 0 <= max_total_bps <= BPS_DENOMINATOR:
            raise ValidationError("Aggregate cap must be within 0..10000 bps")
        self.max_strategy_bps = max_strategy_bps
        self.max_total_bps = max_total_bps
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._records: List[StrategyRecord] = []

    # ==================== Queries ====================

    def __len__(self) -> int:
        return len(self._records)

    def get(self, index: int) -> StrategyRecord:
        if not isinstance(index, int) or index < 0 or index >= len(self._records):
            raise InvalidStrategyIndex(index, len(self._records))
        return self._records[index]

    def all(self) -> List[StrategyRecord]:
        return list(self._records)

    def active(self) -> List[StrategyRecord]:
        return [r for r in self._records if r.active]

    def active_allocation_bps(self, exclude_index: Optional[int] = None) -> int:
        return sum(
            r.allocation_bps for r in self._records
            if r.active and r.index != exclude_index
        )

    def find_active(self, address: str) -> Optional[StrategyRecord]:
        for record in self._records:
            if record.active and record.address == address:
                return record
        return None

    # ==================== Mutations ====================

    def add(
        self,
        handle: StrategyHandle,
        allocation_bps: int,
        kind: Union[StrategyKind, str],
        has_lockup: bool = False,
    ) -> StrategyRecord:
        """Append a new active strategy."""
        kind = self._parse_kind(kind)
        address = getattr(handle, "address", None)
        if handle is None or not address:
            raise InvalidAddress("strategy")
        if kind == StrategyKind.CONVERTIBLE:
            missing = [m for m in _CONVERTIBLE_METHODS if not callable(getattr(handle, m, None))]
            if missing:
                raise ValidationError(
                    f"Strategy {address} does not implement {', '.join(missing)}",
                    address=address,
                )
        elif not callable(getattr(handle, "balance_of", None)):
            raise ValidationError(f"Strategy {address} does not implement balance_of", address=address)

        existing = self.find_active(address)
        if existing is not None:
            raise DuplicateStrategy(address, existing.index)

        self._check_caps(allocation_bps, self.active_allocation_bps())

        record = StrategyRecord(
            index=len(self._records),
            handle=handle,
            allocation_bps=allocation_bps,
            kind=kind,
            has_lockup=bool(has_lockup),
            added_at=self._clock(),
        )
        self._records.append(record)

        logger.info(
            "Strategy added",
            index=record.index,
            address=address,
            allocation_bps=allocation_bps,
            kind=kind.value,
            has_lockup=record.has_lockup,
        )
        return record

    def update_allocation(self, index: int, new_bps: int) -> Tuple[int, StrategyRecord]:
        """Change one active strategy's target. Returns (previous_bps, record)."""
        record = self.get(index)
        if not record.active:
            raise StrategyInactive(index)

        self._check_caps(new_bps, self.active_allocation_bps(exclude_index=index))

        previous = record.allocation_bps
        record.allocation_bps = new_bps
        logger.info(
            "Strategy allocation updated",
            index=index,
            previous_bps=previous,
            allocation_bps=new_bps,
        )
        return previous, record

    def remove(self, index: int) -> bool:
        """Soft-delete a strategy. Returns False if it was already inactive."""
        record = self.get(index)
        if not record.active:
            return False
        record.active = False
        record.removed_at = self._clock()
        logger.info("Strategy removed", index=index, address=record.address)
        return True

    def load(self, records: List[StrategyRecord]) -> None:
        """Replace the registry contents, e.g. when restoring from storage."""
        ordered = sorted(records, key=lambda r: r.index)
        if [r.index for r in ordered] != list(range(len(ordered))):
            raise ValidationError("Strategy indices must be contiguous from 0")
        self._records = ordered

    # ==================== Checkpointing ====================

    def checkpoint(self) -> List[StrategyRecord]:
        return [replace(r) for r in self._records]

    def restore(self, token: List[StrategyRecord]) -> None:
        self._records = [replace(r) for r in token]

    # ==================== Internals ====================

    def _check_caps(self, allocation_bps: int, other_active_bps: int) -> None:
        if not isinstance(allocation_bps, int) or isinstance(allocation_bps, bool) or allocation_bps < 0:
            raise ValidationError(
                "Allocation must be a non-negative integer number of bps",
                allocation_bps=allocation_bps,
            )
        if allocation_bps > self.max_strategy_bps:
            raise AllocationExceedsMax(allocation_bps, self.max_strategy_bps)
        total = other_active_bps + allocation_bps
        if total > self.max_total_bps:
            raise TotalAllocationInvalid(total, self.max_total_bps)

    @staticmethod
    def _parse_kind(kind: Union[StrategyKind, str]) -> StrategyKind:
        try:
            return StrategyKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown strategy kind: {kind!r}", kind=str(kind)) from None
