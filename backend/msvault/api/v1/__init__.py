"""API v1 router."""

from fastapi import APIRouter

from msvault.api.v1 import health, simulation, strategies, vault, withdrawals

router = APIRouter(prefix="/api/v1")

router.include_router(health.router, tags=["Health"])
router.include_router(vault.router, prefix="/vault", tags=["Vault"])
router.include_router(strategies.router, prefix="/strategies", tags=["Strategies"])
router.include_router(withdrawals.router, prefix="/withdrawals", tags=["Withdrawals"])
router.include_router(simulation.router, prefix="/simulation", tags=["Simulation"])
