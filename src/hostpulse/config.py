"""Configuration settings for hostpulse."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from hostpulse.control import ControlAction, default_commands
from hostpulse.monitor import CpuMode


class Settings(BaseSettings):
    """Configuration for the hostpulse server, read from HOSTPULSE_* variables."""

    model_config = SettingsConfigDict(env_prefix="HOSTPULSE_", env_file=".env", extra="ignore")

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=3001, ge=1, le=65535)
    log_level: str = "INFO"

    # Sampling
    sample_interval_ms: int = Field(default=1000, ge=100)
    disk_path: str = "/"
    cpu_mode: CpuMode = CpuMode.DELTA

    # Control actions
    restart_command: list[str] = Field(
        default_factory=lambda: default_commands()[ControlAction.RESTART]
    )
    shutdown_command: list[str] = Field(
        default_factory=lambda: default_commands()[ControlAction.SHUTDOWN]
    )
    control_dry_run: bool = False

    @property
    def sample_interval(self) -> float:
        """Sampling interval in seconds."""
        return self.sample_interval_ms / 1000

    @property
    def control_commands(self) -> dict[ControlAction, list[str]]:
        return {
            ControlAction.RESTART: self.restart_command,
            ControlAction.SHUTDOWN: self.shutdown_command,
        }


@lru_cache
def get_settings() -> Settings:
    """Get the process-wide settings instance."""
    return Settings()
