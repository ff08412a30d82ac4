from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from compute_fabric.api.database import is_in_memory_sqlite
from compute_fabric.containers import validate_memory_limit


class Settings(BaseSettings):
    PROJECT_NAME: str = "ComputeFabric Orchestrator"

    # Database
    DATABASE_URL: str = "sqlite:///./var/compute_fabric.db"

    # Scheduling
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_INTERVAL_SECONDS: float = 10.0

    # Pricing
    COMPUTE_RATE_PER_MINUTE: float = 0.10
    PROVIDER_PAYOUT_SHARE: float = 0.8
    FAILED_JOB_COST_FACTOR: float = 0.5

    # Payments (no secret key -> simulation mode)
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_API_BASE: str = "https://api.stripe.com/v1"
    PAYMENT_CURRENCY: str = "usd"
    PAYMENT_TIMEOUT_SECONDS: float = 10.0
    SIMULATED_PAYMENT_SUCCESS_RATE: float = 0.95

    # Containers
    CONTAINER_MEMORY_LIMIT: str = "4g"
    CONTAINER_CPU_LIMIT: float = 2.0

    # Listing
    DEFAULT_JOB_LIST_LIMIT: int = 100
    MAX_JOB_LIST_LIMIT: int = 500

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[Path] = None
    JSON_LOGS: bool = False

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    @field_validator("CONTAINER_MEMORY_LIMIT")
    @classmethod
    def _check_memory_limit(cls, value: str) -> str:
        if not validate_memory_limit(value):
            raise ValueError(f"CONTAINER_MEMORY_LIMIT must look like '512m' or '4g', got {value!r}")
        return value

    @field_validator("CONTAINER_CPU_LIMIT")
    @classmethod
    def _check_cpu_limit(cls, value: float) -> float:
        if value <= 0:
            raise ValueError(f"CONTAINER_CPU_LIMIT must be positive, got {value}")
        return value

    @model_validator(mode="after")
    def _check_scheduler_database(self) -> "Settings":
        # In-memory SQLite shares a single connection between all sessions.
        if self.SCHEDULER_ENABLED and is_in_memory_sqlite(self.DATABASE_URL):
            raise ValueError("SCHEDULER_ENABLED requires a file or server DATABASE_URL, not in-memory SQLite")
        return self


@lru_cache()
def get_settings() -> Settings:
    return Settings()
