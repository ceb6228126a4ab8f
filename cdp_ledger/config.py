"""
config.py - Environment-based configuration using pydantic-settings.

Every value has a default, so the ledger runs without any environment. Override
with CDP_* environment variables or a .env file, e.g. CDP_PRICE_LIFE_SECONDS=900.
Fixed-point values are given in their scaled integer form; out-of-range values
fail with a pydantic ValidationError when Settings() is built.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings

from .fixed_point import RAD, RAY


class Settings(BaseSettings):
    """Ledger settings loaded from environment variables / .env file."""

    # --- Ledger ---
    LEDGER_NAME: str = "cdp-ledger"
    VERBOSE: bool = False
    TOTAL_DEBT_CEILING: int = Field(default=10_000_000 * RAD, ge=0)

    # --- Oracle ---
    PRICE_LIFE_SECONDS: int = Field(default=3600, gt=0)
    STABLECOIN_REFERENCE_PRICE: int = Field(default=RAY, gt=0)

    # --- Stability fee ---
    GLOBAL_STABILITY_FEE_RATE: int = Field(default=0, ge=0)
    # ~500% APR compounded per second
    MAX_STABILITY_FEE_RATE: int = Field(default=1_000_000_005_781_378_656_804_591_712, ge=RAY)

    # --- Liquidation ---
    COLLECT_FEES_BEFORE_LIQUIDATION: bool = True
    CHECK_PRICE_BEFORE_LIQUIDATION: bool = True
    FLASH_LENDING_ENABLED: bool = True

    # --- Component accounts ---
    DEPLOYER_ADDRESS: str = "deployer"
    BOOK_KEEPER_ADDRESS: str = "book_keeper"
    LIQUIDATION_ENGINE_ADDRESS: str = "liquidation_engine"
    FIXED_SPREAD_STRATEGY_ADDRESS: str = "fixed_spread_liquidation_strategy"
    SYSTEM_DEBT_ENGINE_ADDRESS: str = "system_debt_engine"
    STABILITY_FEE_COLLECTOR_ADDRESS: str = "stability_fee_collector"
    PRICE_ORACLE_ADDRESS: str = "price_oracle"

    model_config = {
        "env_prefix": "CDP_",
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Singleton access to ledger settings."""
    return Settings()
