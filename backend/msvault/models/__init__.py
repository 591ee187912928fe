"""Database models."""

from msvault.models.vault import (
    VaultShareBalance,
    VaultState,
    VaultStrategy,
    VaultWithdrawalRequest,
)
from msvault.models.simulation import (
    SimAssetAllowance,
    SimAssetBalance,
    SimStrategyPosition,
)

__all__ = [
    "VaultStrategy",
    "VaultWithdrawalRequest",
    "VaultShareBalance",
    "VaultState",
    "SimAssetBalance",
    "SimAssetAllowance",
    "SimStrategyPosition",
]
