"""Health check endpoint."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text

from msvault import __version__
from msvault.api.v1.deps import get_vault_service
from msvault.core.database import get_db_context
from msvault.schemas.common import HealthResponse
from msvault.services.vault.service import VaultService

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(service: VaultService = Depends(get_vault_service)) -> HealthResponse:
    """Check the vault and, when persistence is on, the database."""
    now = datetime.now(timezone.utc)

    if service.persist:
        try:
            async with get_db_context() as db:
                await db.execute(text("SELECT 1"))
            db_status = "healthy"
        except Exception as e:
            db_status = f"unhealthy: {str(e)[:50]}"
    else:
        db_status = "disabled"

    return HealthResponse(
        status="degraded" if db_status.startswith("unhealthy") else "healthy",
        timestamp=now,
        version=__version__,
        database=db_status,
        vault_paused=service.vault.paused,
        simulation=service.simulation,
    )
