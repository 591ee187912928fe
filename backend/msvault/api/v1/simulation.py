"""Simulation-mode endpoints.

Drive the in-memory asset and strategies behind the vault: fund accounts,
grant the vault an allowance, and move strategy values to exercise yield,
loss and lockups. Respond 404 unless the service runs in simulation mode.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException

from msvault.api.v1.deps import get_simulation_service
from msvault.schemas.vault import (
    ApproveRequest,
    BalanceResponse,
    FaucetRequest,
    YieldRequest,
)
from msvault.services.vault.service import VaultService
from msvault.services.vault.simulation import (
    UNLIMITED,
    SimulatedDirectStrategy,
    SimulatedLockedStrategy,
)

logger = structlog.get_logger()
router = APIRouter()


def _strategy(service: VaultService, address: str):
    strategy = service.environment.strategies.get(address)
    if strategy is None:
        raise HTTPException(status_code=404, detail=f"Simulated strategy {address} not found")
    return strategy


def _balance(service: VaultService, account: str) -> BalanceResponse:
    return BalanceResponse(
        account=account,
        asset_balance=service.environment.asset.balance_of(account),
        share_balance=service.vault.balance_of(account),
    )


@router.get("/accounts/{account}", response_model=BalanceResponse)
async def get_balance(
    account: str,
    service: VaultService = Depends(get_simulation_service),
) -> BalanceResponse:
    return await service.read(_balance, service, account)


@router.post("/faucet", response_model=BalanceResponse)
async def faucet(
    body: FaucetRequest,
    service: VaultService = Depends(get_simulation_service),
) -> BalanceResponse:
    """Mint simulated asset to an account."""
    await service.execute(service.environment.asset.mint, body.account, body.amount)
    logger.info("Faucet", account=body.account, amount=body.amount)
    return await service.read(_balance, service, body.account)


@router.post("/approve")
async def approve(
    body: ApproveRequest,
    service: VaultService = Depends(get_simulation_service),
) -> dict:
    """Let the vault pull asset from ``owner``."""
    amount = UNLIMITED if body.amount is None else body.amount
    spender = service.vault.address
    await service.execute(service.environment.asset.approve, body.owner, spender, amount)
    return {"owner": body.owner, "spender": spender, "allowance": amount}


@router.post("/strategies/{address}/yield")
async def simulate_yield(
    address: str,
    body: YieldRequest,
    service: VaultService = Depends(get_simulation_service),
) -> dict:
    """Grow (positive bps) or shrink (negative bps) a strategy's holdings."""
    strategy = _strategy(service, address)
    if body.bps >= 0:
        change = await service.execute(strategy.simulate_yield, body.bps)
    elif isinstance(strategy, SimulatedDirectStrategy):
        raise HTTPException(status_code=422, detail="Direct strategies do not simulate losses")
    else:
        change = -(await service.execute(strategy.simulate_loss, -body.bps))
    return {"address": address, "bps": body.bps, "change": change}


@router.post("/strategies/{address}/unlock")
async def unlock(
    address: str,
    service: VaultService = Depends(get_simulation_service),
) -> dict:
    """End a locked strategy's lockup for every holder."""
    strategy = _strategy(service, address)
    if not isinstance(strategy, SimulatedLockedStrategy):
        raise HTTPException(status_code=422, detail=f"{address} has no lockup")
    await service.execute(strategy.unlock)
    return {"address": address, "locked": False}
