"""Strategy registry endpoints.

Strategy handles are resolved by address. In simulation mode an unknown
address creates a simulated strategy of the requested kind.
"""

from typing import Dict

from fastapi import APIRouter, Depends, HTTPException

from msvault.api.v1.deps import get_vault_service
from msvault.schemas.vault import (
    StrategyCreate,
    StrategyListResponse,
    StrategyResponse,
    StrategyUpdate,
)
from msvault.services.vault.service import VaultService
from msvault.services.vault.strategies import StrategyRecord

router = APIRouter()


def _strategy_response(record: StrategyRecord, values: Dict[int, int]) -> StrategyResponse:
    return StrategyResponse(**record.to_dict(), current_value=values.get(record.index))


def _strategy_list(vault) -> StrategyListResponse:
    values = vault.oracle.values_by_index()
    return StrategyListResponse(
        strategies=[_strategy_response(r, values) for r in vault.list_strategies()],
        active_allocation_bps=vault.registry.active_allocation_bps(),
        max_strategy_allocation_bps=vault.registry.max_strategy_bps,
        max_total_allocation_bps=vault.registry.max_total_bps,
    )


@router.get("", response_model=StrategyListResponse)
async def list_strategies(service: VaultService = Depends(get_vault_service)) -> StrategyListResponse:
    """All strategies ever registered, in index order, with current values of active ones."""
    return await service.read(_strategy_list, service.vault)


@router.post("", response_model=StrategyResponse, status_code=201)
async def add_strategy(
    body: StrategyCreate,
    service: VaultService = Depends(get_vault_service),
) -> StrategyResponse:
    if service.environment is None:
        raise HTTPException(status_code=501, detail="No strategy resolver configured")
    handle = service.environment.resolve(body.address, body.kind, body.has_lockup)
    index = await service.execute(
        service.vault.add_strategy, handle, body.allocation_bps, body.kind, body.has_lockup,
    )
    return _strategy_response(service.vault.registry.get(index), {})


@router.patch("/{index}", response_model=StrategyResponse)
async def update_strategy(
    index: int,
    body: StrategyUpdate,
    service: VaultService = Depends(get_vault_service),
) -> StrategyResponse:
    record = await service.execute(service.vault.update_allocation, index, body.allocation_bps)
    return _strategy_response(record, {})


@router.delete("/{index}", response_model=StrategyResponse)
async def remove_strategy(
    index: int,
    service: VaultService = Depends(get_vault_service),
) -> StrategyResponse:
    """Deactivate a strategy. Its capital stays put until an emergency unwind."""
    record = await service.execute(service.vault.remove_strategy, index)
    return _strategy_response(record, {})
