from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LEDGER_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    environment: Literal["development", "staging", "production"] = "development"
    service_name: str = "points-ledger"
    version: str = "1.0.0"
    log_level: str = "INFO"
    log_json: bool = False

    # Earning: one point per 25 cents spent
    points_per_dollar: Decimal = Decimal("4")
    max_transaction_points: int = Field(default=1_000_000, gt=0)

    # Optimistic commits re-validate and retry this many times before giving up
    conflict_retry_attempts: int = Field(default=3, ge=1)

    default_page_size: int = Field(default=10, gt=0)
    max_page_size: int = Field(default=100, gt=0)

    seed_demo_data: bool = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
