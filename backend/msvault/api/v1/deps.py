"""Shared FastAPI dependencies."""

from fastapi import HTTPException, Request

from msvault.services.vault.service import VaultService


def get_vault_service(request: Request) -> VaultService:
    """The vault service created at startup."""
    service = getattr(request.app.state, "vault_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Vault service not initialized")
    return service


def get_simulation_service(request: Request) -> VaultService:
    """The vault service, only when it runs against simulated collaborators."""
    service = get_vault_service(request)
    if not service.simulation:
        raise HTTPException(status_code=404, detail="Simulation endpoints are disabled")
    return service
