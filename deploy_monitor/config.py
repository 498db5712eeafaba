from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MonitorSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CFDEV_MONITOR_", extra="ignore")

    director_ip: str = Field(default="10.144.0.4")
    director_port: int = Field(default=25555, ge=1)
    director_scheme: str = Field(default="https")
    director_client: str = Field(default="admin")
    state_bosh_dir: str = Field(default=str(Path.home() / ".cfdev" / "state" / "bosh"))
    deployment_name: str = Field(default="cf")

    progress_interval_sec: float = Field(default=1.0, gt=0)
    resolve_backoff_initial_sec: float = Field(default=0.05, ge=0)
    resolve_backoff_max_sec: float = Field(default=2.0, ge=0)
    resolve_backoff_factor: float = Field(default=2.0, ge=1)
    stall_timeout_sec: float = Field(default=60.0, ge=0)
    task_poll_interval_sec: float = Field(default=0.5, gt=0)
    task_timeout_sec: float = Field(default=300.0, gt=0)

    retry_attempts: int = Field(default=3, ge=1)
    retry_sleep_sec: int = Field(default=1, ge=0)

    analytics_url: str | None = Field(default=None)
    analytics_write_key: str | None = Field(default=None)
    analytics_user_id: str = Field(default="anonymous")
    plugin_version: str = Field(default="0.1.0")

    log_level: str = Field(default="INFO")

    @property
    def director_url(self) -> str:
        return f"{self.director_scheme}://{self.director_ip}:{self.director_port}"


@lru_cache(maxsize=1)
def get_monitor_settings() -> MonitorSettings:
    return MonitorSettings()
