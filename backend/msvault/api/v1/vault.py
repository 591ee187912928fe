"""Vault API endpoints: deposits, withdrawals, rebalancing and pause controls."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from msvault.api.v1.deps import get_vault_service
from msvault.schemas.vault import (
    DepositRequest,
    DepositResponse,
    EmergencyResponse,
    MintRequest,
    PauseResponse,
    RebalancePlanResponse,
    RebalanceResponse,
    RedeemRequest,
    TotalValueResponse,
    VaultMetricsResponse,
    WithdrawalRequestResponse,
    WithdrawalResponse,
    WithdrawRequest,
)
from msvault.services.vault.service import VaultService
from msvault.services.vault.vault import WithdrawalOutcome

router = APIRouter()


def _outcome_response(outcome: WithdrawalOutcome) -> WithdrawalResponse:
    return WithdrawalResponse(
        assets=outcome.assets,
        shares=outcome.shares,
        queued=outcome.queued,
        request=(
            WithdrawalRequestResponse(**outcome.request.to_dict())
            if outcome.request is not None else None
        ),
    )


# ==================== Views ====================

@router.get("/metrics", response_model=VaultMetricsResponse)
async def get_metrics(service: VaultService = Depends(get_vault_service)) -> VaultMetricsResponse:
    """Current value, supply, share price and queue totals."""
    vault = service.vault
    metrics = await service.read(vault.metrics)
    return VaultMetricsResponse(
        total_value=metrics.total_value,
        net_value=metrics.net_value,
        total_shares=metrics.total_shares,
        price_per_share=metrics.price_per_share,
        total_queued=metrics.total_queued,
        idle_balance=metrics.idle_balance,
        strategy_count=metrics.strategy_count,
        active_allocation_bps=metrics.active_allocation_bps,
        paused=metrics.paused,
        cached_net_value=vault.cached_total_value,
        cached_update_time=vault.cached_update_time,
    )


@router.get("/total-value", response_model=TotalValueResponse)
async def get_total_value(service: VaultService = Depends(get_vault_service)) -> TotalValueResponse:
    vault = service.vault
    total = await service.read(vault.total_value)
    idle = await service.read(vault.idle_balance)
    return TotalValueResponse(total_value=total, idle_balance=idle, as_of=datetime.now(timezone.utc))


# ==================== Deposits ====================

@router.post("/deposit", response_model=DepositResponse)
async def deposit(
    body: DepositRequest,
    service: VaultService = Depends(get_vault_service),
) -> DepositResponse:
    """Deposit assets and mint shares at the current share price (rounded down)."""
    shares = await service.execute(service.vault.deposit, body.assets, body.receiver, body.caller)
    return DepositResponse(assets=body.assets, shares=shares)


@router.post("/mint", response_model=DepositResponse)
async def mint(
    body: MintRequest,
    service: VaultService = Depends(get_vault_service),
) -> DepositResponse:
    """Mint exact shares; the asset cost is rounded up."""
    assets = await service.execute(service.vault.mint, body.shares, body.receiver, body.caller)
    return DepositResponse(assets=assets, shares=body.shares)


# ==================== Withdrawals ====================

@router.post("/withdraw", response_model=WithdrawalResponse)
async def withdraw(
    body: WithdrawRequest,
    service: VaultService = Depends(get_vault_service),
) -> WithdrawalResponse:
    """Withdraw exact assets. Queued when idle liquidity does not cover them."""
    outcome = await service.execute(
        service.vault.withdraw, body.assets, body.receiver, body.owner, body.caller,
    )
    return _outcome_response(outcome)


@router.post("/redeem", response_model=WithdrawalResponse)
async def redeem(
    body: RedeemRequest,
    service: VaultService = Depends(get_vault_service),
) -> WithdrawalResponse:
    """Redeem exact shares. Queued when idle liquidity does not cover them."""
    outcome = await service.execute(
        service.vault.redeem, body.shares, body.receiver, body.owner, body.caller,
    )
    return _outcome_response(outcome)


# ==================== Rebalancing ====================

@router.get("/rebalance/plan", response_model=RebalancePlanResponse)
async def get_rebalance_plan(service: VaultService = Depends(get_vault_service)) -> RebalancePlanResponse:
    """Preview the per-strategy deltas a rebalance would act on."""
    plan = await service.read(service.vault.plan_rebalance)
    return RebalancePlanResponse(**plan.to_dict())


@router.post("/rebalance", response_model=RebalanceResponse)
async def rebalance(service: VaultService = Depends(get_vault_service)) -> RebalanceResponse:
    result = await service.execute(service.vault.rebalance)
    return RebalanceResponse(**result.to_dict())


# ==================== Pause and emergency ====================

@router.post("/pause", response_model=PauseResponse)
async def pause(service: VaultService = Depends(get_vault_service)) -> PauseResponse:
    await service.execute(service.vault.pause)
    return PauseResponse(paused=service.vault.paused)


@router.post("/unpause", response_model=PauseResponse)
async def unpause(service: VaultService = Depends(get_vault_service)) -> PauseResponse:
    await service.execute(service.vault.unpause)
    return PauseResponse(paused=service.vault.paused)


@router.post("/emergency-withdraw", response_model=EmergencyResponse)
async def emergency_withdraw(service: VaultService = Depends(get_vault_service)) -> EmergencyResponse:
    """Pull every convertible strategy's units back to idle. Requires the vault to be paused."""
    result = await service.execute(service.vault.emergency_withdraw_all)
    return EmergencyResponse(
        recovered=result.recovered,
        redeemed={str(index): amount for index, amount in result.redeemed.items()},
        skipped=result.skipped,
    )
