"""Strategy records held by the registry.

A strategy is a tagged variant: the ``kind`` field says which capability the
handle implements and every caller matches on it.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from msvault.services.vault.capabilities import ConvertibleStrategy, DirectStrategy

BPS_DENOMINATOR = 10_000


class StrategyKind(str, Enum):
    """Capability shape of a sub-account."""
    CONVERTIBLE = "convertible"  # issues units with a published exchange rate
    DIRECT = "direct"            # holds raw asset units, no conversion


StrategyHandle = Union[ConvertibleStrategy, DirectStrategy]


@dataclass
class StrategyRecord:
    """One registry entry. Index is a stable handle, never reused."""
    index: int
    handle: StrategyHandle
    allocation_bps: int
    kind: StrategyKind
    has_lockup: bool = False
    active: bool = True
    added_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    removed_at: Optional[datetime] = None

    @property
    def address(self) -> str:
        return self.handle.address

    @property
    def is_convertible(self) -> bool:
        return self.kind == StrategyKind.CONVERTIBLE

    def target_for(self, total_value: int) -> int:
        """Target holding in asset units for a given pool value (rounded down)."""
        return total_value * self.allocation_bps // BPS_DENOMINATOR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "address": self.address,
            "allocation_bps": self.allocation_bps,
            "kind": self.kind.value,
            "has_lockup": self.has_lockup,
            "active": self.active,
            "added_at": self.added_at.isoformat(),
            "removed_at": self.removed_at.isoformat() if self.removed_at else None,
        }
