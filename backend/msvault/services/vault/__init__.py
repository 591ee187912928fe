"""Multi-strategy vault engine.

Share ledger, strategy registry, valuation, rebalancing and the withdrawal
queue, tied together by MultiStrategyVault.
"""

from msvault.services.vault.events import EventBus, VaultEvent
from msvault.services.vault.rebalancer import (
    MoveAction,
    RebalancePlan,
    RebalanceResult,
    Rebalancer,
)
from msvault.services.vault.registry import StrategyRegistry
from msvault.services.vault.share_ledger import Rounding, ShareLedger
from msvault.services.vault.strategies import StrategyKind, StrategyRecord
from msvault.services.vault.valuation import StrategyValue, ValuationOracle
from msvault.services.vault.vault import (
    EmergencyResult,
    MultiStrategyVault,
    VaultMetrics,
    WithdrawalOutcome,
)
from msvault.services.vault.withdrawal_queue import (
    RequestStatus,
    WithdrawalQueue,
    WithdrawalRequest,
)

__all__ = [
    # Vault
    "MultiStrategyVault",
    "VaultMetrics",
    "WithdrawalOutcome",
    "EmergencyResult",
    # Components
    "ShareLedger",
    "Rounding",
    "StrategyRegistry",
    "StrategyKind",
    "StrategyRecord",
    "ValuationOracle",
    "StrategyValue",
    "Rebalancer",
    "RebalancePlan",
    "RebalanceResult",
    "MoveAction",
    "WithdrawalQueue",
    "WithdrawalRequest",
    "RequestStatus",
    # Events
    "EventBus",
    "VaultEvent",
]
