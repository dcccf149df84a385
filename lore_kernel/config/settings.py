"""Runtime configuration for the lore kernel."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from lore_kernel.models.config import (
    CycleConfig,
    EngineConfig,
    VotingConfig,
)


class Settings(BaseSettings):
    """Environment-driven runtime settings."""

    model_config = SettingsConfigDict(env_prefix="LORE_KERNEL_", env_file=".env", extra="ignore")

    app_name: str = "lore-kernel"
    log_level: str = "INFO"
    log_dir: Optional[str] = None
    db_path: str = Field(
        default="lore_kernel.db",
        description="SQLite file backing the key-value store; ':memory:' for an ephemeral store.",
    )
    store_timeout_seconds: float = 2.0
    cache_enabled: bool = True
    cycle_schedule: str = "0 12 * * *"
    cycle_lease_seconds: int = 1800
    eligible_population: int = 100
    fallback_option_index: Optional[int] = None

    def to_engine_config(self) -> EngineConfig:
        config = EngineConfig(
            voting=VotingConfig(
                eligible_population=self.eligible_population,
                fallback_option_index=self.fallback_option_index,
            ),
            cycle=CycleConfig(
                schedule=self.cycle_schedule,
                lease_seconds=self.cycle_lease_seconds,
            ),
        )
        config.cache.enabled = self.cache_enabled
        return config
