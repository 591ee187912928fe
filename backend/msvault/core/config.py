"""Application configuration loaded from environment variables."""

from functools import lru_cache
from typing import Dict

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MSVAULT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Share token
    vault_name: str = Field(default="Multi Strategy Vault")
    vault_symbol: str = Field(default="MSV")
    vault_address: str = Field(
        default="vault",
        description="Handle the vault uses as its own account on the asset ledger"
    )

    # Underlying asset
    asset_symbol: str = Field(default="USDC")
    asset_decimals: int = Field(default=6, ge=0, le=36)

    # Allocation caps (basis points)
    max_strategy_allocation_bps: int = Field(
        default=6000,
        ge=0,
        le=10000,
        description="Max target allocation of a single strategy (60%)"
    )
    max_total_allocation_bps: int = Field(
        default=10000,
        ge=0,
        le=10000,
        description="Max aggregate target allocation over active strategies (100%)"
    )

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./msvault.db",
        description="SQLAlchemy async connection URL"
    )

    # Environment
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    # Server
    backend_port: int = Field(default=8060)

    # Persistence
    persist_state: bool = Field(
        default=False,
        description="Load vault state at startup and save it after every mutating request"
    )

    # Simulation mode (in-memory asset and strategies behind the API)
    simulation_seed_balances: Dict[str, int] = Field(
        default_factory=dict,
        description="Initial simulated asset balances, in smallest units"
    )
    simulation_lockup_days: int = Field(
        default=7,
        ge=0,
        description="Lockup window of simulated locked strategies"
    )

    @property
    def database_url_sync(self) -> str:
        """Get synchronous database URL for Alembic migrations."""
        return (
            self.database_url
            .replace("postgresql+asyncpg://", "postgresql://")
            .replace("sqlite+aiosqlite://", "sqlite://")
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
