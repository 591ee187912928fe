"""FastAPI application entry point."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from msvault import __version__
from msvault.api.v1 import router as api_router
from msvault.core.config import get_settings
from msvault.core.database import close_db, init_db
from msvault.core.errors import (
    ExternalFailure,
    InsufficientState,
    InvariantViolation,
    ReentrancyError,
    ValidationError,
    VaultError,
    VaultNotPaused,
    VaultPaused,
)
from msvault.core.logging import configure_logging
from msvault.schemas.common import ErrorResponse
from msvault.services.vault.service import VaultService

logger = structlog.get_logger()

# Most specific first
ERROR_STATUS = (
    (VaultPaused, 423),
    (VaultNotPaused, 409),
    (ReentrancyError, 409),
    (ExternalFailure, 502),
    (ValidationError, 422),
    (InvariantViolation, 409),
    (InsufficientState, 409),
)


def status_for(error: VaultError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 400


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    configure_logging(settings.log_level, json_logs=settings.log_json)
    logger.info("Starting Multi Strategy Vault API", version=__version__, environment=settings.environment)

    service = VaultService.simulated(settings)
    if service.persist:
        await init_db()
        logger.info("Database initialized")
        if await service.load():
            logger.info("Vault state restored", vault=service.vault.address)
    app.state.vault_service = service

    yield

    logger.info("Shutting down...")
    if service.persist:
        await service.save()
        await close_db()
    logger.info("Cleanup complete")


app = FastAPI(
    title="Multi Strategy Vault API",
    description="Pooled single-asset vault allocating capital across yield strategies",
    version=__version__,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3050",
        "http://127.0.0.1:3050",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(VaultError)
async def vault_error_handler(request: Request, exc: VaultError) -> JSONResponse:
    status = status_for(exc)
    body = ErrorResponse(error=exc.code, detail=exc.message, context=exc.context)
    return JSONResponse(status_code=status, content=body.model_dump(mode="json"))


app.include_router(api_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Multi Strategy Vault API",
        "version": __version__,
        "docs": "/api/docs",
        "health": "/api/v1/health",
    }
