"""Withdrawal queue endpoints."""

from fastapi import APIRouter, Depends

from msvault.api.v1.deps import get_vault_service
from msvault.schemas.vault import WithdrawalListResponse, WithdrawalRequestResponse
from msvault.services.vault.service import VaultService

router = APIRouter()


@router.get("/{holder}", response_model=WithdrawalListResponse)
async def list_withdrawals(
    holder: str,
    service: VaultService = Depends(get_vault_service),
) -> WithdrawalListResponse:
    requests = await service.read(service.vault.pending_withdrawals, holder)
    pending = [r for r in requests if not r.completed]
    return WithdrawalListResponse(
        holder=holder,
        requests=[WithdrawalRequestResponse(**r.to_dict()) for r in requests],
        pending_count=len(pending),
        pending_assets=sum(r.assets_owed for r in pending),
    )


@router.post("/{holder}/{request_id}/complete", response_model=WithdrawalRequestResponse)
async def complete_withdrawal(
    holder: str,
    request_id: int,
    service: VaultService = Depends(get_vault_service),
) -> WithdrawalRequestResponse:
    """Pay a queued request out of idle balance."""
    request = await service.execute(service.vault.complete_withdrawal, holder, request_id)
    return WithdrawalRequestResponse(**request.to_dict())
