"""Vault API schemas.

Amounts are integers in the asset's smallest unit (or raw share units).
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from msvault.services.vault.strategies import StrategyKind


# ==================== Requests ====================

class DepositRequest(BaseModel):
    """Deposit assets, mint shares to receiver."""
    assets: int = Field(..., gt=0)
    receiver: str = Field(..., min_length=1)
    caller: Optional[str] = Field(default=None, description="Account paying; defaults to receiver")


class MintRequest(BaseModel):
    """Mint exact shares to receiver."""
    shares: int = Field(..., gt=0)
    receiver: str = Field(..., min_length=1)
    caller: Optional[str] = None


class WithdrawRequest(BaseModel):
    """Withdraw exact assets from owner's shares."""
    assets: int = Field(..., gt=0)
    receiver: str = Field(..., min_length=1)
    owner: str = Field(..., min_length=1)
    caller: Optional[str] = Field(default=None, description="Acting account; defaults to owner")


class RedeemRequest(BaseModel):
    """Redeem exact shares of owner."""
    shares: int = Field(..., gt=0)
    receiver: str = Field(..., min_length=1)
    owner: str = Field(..., min_length=1)
    caller: Optional[str] = None


class StrategyCreate(BaseModel):
    """Register a strategy."""
    address: str = Field(..., min_length=1)
    allocation_bps: int = Field(..., ge=0, le=10000)
    kind: StrategyKind = StrategyKind.CONVERTIBLE
    has_lockup: bool = False


class StrategyUpdate(BaseModel):
    """Change a strategy's target allocation."""
    allocation_bps: int = Field(..., ge=0, le=10000)


# ==================== Responses ====================

class DepositResponse(BaseModel):
    assets: int
    shares: int


class WithdrawalRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    request_id: int
    holder: str
    receiver: str
    shares_burned: int
    assets_owed: int
    created_at: datetime
    completed: bool
    completed_at: Optional[datetime] = None
    status: str


class WithdrawalResponse(BaseModel):
    assets: int
    shares: int
    queued: bool
    request: Optional[WithdrawalRequestResponse] = None


class WithdrawalListResponse(BaseModel):
    holder: str
    requests: List[WithdrawalRequestResponse]
    pending_count: int
    pending_assets: int


class StrategyResponse(BaseModel):
    index: int
    address: str
    allocation_bps: int
    kind: StrategyKind
    has_lockup: bool
    active: bool
    added_at: datetime
    removed_at: Optional[datetime] = None
    current_value: Optional[int] = None


class StrategyListResponse(BaseModel):
    strategies: List[StrategyResponse]
    active_allocation_bps: int
    max_strategy_allocation_bps: int
    max_total_allocation_bps: int


class VaultMetricsResponse(BaseModel):
    total_value: int
    net_value: int
    total_shares: int
    price_per_share: Decimal
    total_queued: int
    idle_balance: int
    strategy_count: int
    active_allocation_bps: int
    paused: bool
    cached_net_value: Optional[int] = Field(
        default=None,
        description="Net value (total minus queued claims) at the last committed operation",
    )
    cached_update_time: Optional[datetime] = None


class TotalValueResponse(BaseModel):
    total_value: int
    idle_balance: int
    as_of: datetime


class StrategyDeltaResponse(BaseModel):
    index: int
    address: str
    kind: StrategyKind
    allocation_bps: int
    current_value: int
    target_value: int
    delta: int
    action: str


class RebalancePlanResponse(BaseModel):
    total_value: int
    queued_assets: int
    allocatable_value: int
    idle_balance: int
    deltas: List[StrategyDeltaResponse]
    blocked_by: List[int] = []


class StrategyMoveResponse(BaseModel):
    index: int
    action: str
    requested: int
    moved: int
    units: int


class RebalanceResponse(BaseModel):
    timestamp: datetime
    total_value: int
    idle_before: int
    idle_after: int
    total_divested: int
    total_invested: int
    moves: List[StrategyMoveResponse]
    summary: str


class EmergencyResponse(BaseModel):
    recovered: int
    redeemed: dict
    skipped: List[int]


class PauseResponse(BaseModel):
    paused: bool


# ==================== Simulation ====================

class FaucetRequest(BaseModel):
    account: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)


class ApproveRequest(BaseModel):
    owner: str = Field(..., min_length=1)
    amount: Optional[int] = Field(default=None, ge=0, description="Defaults to unlimited")


class YieldRequest(BaseModel):
    bps: int = Field(..., description="Positive for yield, negative for a loss", ge=-10000, le=100000)


class BalanceResponse(BaseModel):
    account: str
    asset_balance: int
    share_balance: int
