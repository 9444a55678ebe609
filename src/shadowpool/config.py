"""Runtime configuration loaded from environment variables and ``.env``."""

import logging
from functools import lru_cache
from typing import Dict

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shadowpool.core.accumulator import MAX_TREE_DEPTH
from shadowpool.core.fees import BPS_DENOMINATOR, DEFAULT_FEE_BPS
from shadowpool.core.root_history import DEFAULT_ROOT_HISTORY_SIZE


class Settings(BaseSettings):
    """Shadow Pool settings, e.g. ``SHADOWPOOL_TREE_DEPTH=16``."""

    model_config = SettingsConfigDict(
        env_prefix="SHADOWPOOL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    tree_depth: int = Field(default=MAX_TREE_DEPTH, ge=1, le=MAX_TREE_DEPTH)
    root_history_size: int = Field(default=DEFAULT_ROOT_HISTORY_SIZE, ge=1)
    default_fee_bps: int = Field(default=DEFAULT_FEE_BPS, ge=0, le=BPS_DENOMINATOR)
    database_url: str = "sqlite:///shadow_pool.db"
    persist: bool = False
    # Opening balances for the in-memory ledger, e.g. '{"alice": 5000000000}'
    genesis_balances: Dict[str, int] = Field(default_factory=dict)
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("genesis_balances")
    @classmethod
    def _non_negative_balances(cls, value: Dict[str, int]) -> Dict[str, int]:
        for account, amount in value.items():
            if amount < 0:
                raise ValueError(f"Genesis balance for {account} must be non-negative")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get or create the process-wide settings."""
    return Settings()


def reset_settings() -> None:
    """Drop cached settings (for testing)."""
    get_settings.cache_clear()


def configure_logging(level: str = "INFO") -> None:
    """Basic log format for the API process."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
