"""Pydantic schemas for API request/response models."""

from msvault.schemas.common import (
    HealthResponse,
    ErrorResponse,
)
from msvault.schemas.vault import (
    DepositRequest,
    MintRequest,
    WithdrawRequest,
    RedeemRequest,
    DepositResponse,
    WithdrawalResponse,
    WithdrawalRequestResponse,
    WithdrawalListResponse,
    StrategyCreate,
    StrategyUpdate,
    StrategyResponse,
    StrategyListResponse,
    VaultMetricsResponse,
    RebalancePlanResponse,
    RebalanceResponse,
    EmergencyResponse,
)

__all__ = [
    "HealthResponse",
    "ErrorResponse",
    "DepositRequest",
    "MintRequest",
    "WithdrawRequest",
    "RedeemRequest",
    "DepositResponse",
    "WithdrawalResponse",
    "WithdrawalRequestResponse",
    "WithdrawalListResponse",
    "StrategyCreate",
    "StrategyUpdate",
    "StrategyResponse",
    "StrategyListResponse",
    "VaultMetricsResponse",
    "RebalancePlanResponse",
    "RebalanceResponse",
    "EmergencyResponse",
]
