from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FakeDirectorSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FAKE_DIRECTOR_", extra="ignore")

    bind_host: str = Field(default="0.0.0.0")
    bind_port: int = Field(default=25555, ge=1)

    # Number of task polls answered with "processing" before a task is done.
    task_processing_polls: int = Field(default=0, ge=0)
    seed_releases_csv: str = Field(default="")

    @property
    def seed_releases(self) -> list[str]:
        return [x.strip() for x in self.seed_releases_csv.split(",") if x.strip()]


@lru_cache(maxsize=1)
def get_settings() -> FakeDirectorSettings:
    return FakeDirectorSettings()
