from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class HostSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CFDEV_", extra="ignore")

    home: str = Field(default=str(Path.home() / ".cfdev"))
    cache_dir: str | None = Field(default=None)
    state_linuxkit_dir: str | None = Field(default=None)

    boot_image_name: str = Field(default="cfdev-efi-v2.iso")
    data_disk_name: str = Field(default="disk.vhdx")

    hypervisor_backend: str = Field(default="hyperv")
    powershell_binary: str = Field(default="powershell.exe")
    command_timeout_sec: int = Field(default=120, ge=1)

    default_memory_mb: int = Field(default=8192, ge=1)
    default_cpu_count: int = Field(default=4, ge=1)

    @property
    def resolved_cache_dir(self) -> Path:
        if self.cache_dir:
            return Path(self.cache_dir)
        return Path(self.home) / "cache"

    @property
    def resolved_state_linuxkit_dir(self) -> Path:
        if self.state_linuxkit_dir:
            return Path(self.state_linuxkit_dir)
        return Path(self.home) / "state" / "linuxkit"

    @property
    def boot_image_path(self) -> Path:
        return self.resolved_cache_dir / self.boot_image_name

    @property
    def data_disk_path(self) -> Path:
        return self.resolved_state_linuxkit_dir / self.data_disk_name

    def validate_backend(self) -> None:
        allowed_backends = {"hyperv", "memory"}
        if self.hypervisor_backend not in allowed_backends:
            raise ValueError(
                f"unsupported hypervisor_backend {self.hypervisor_backend}; expected one of {sorted(allowed_backends)}"
            )


@lru_cache(maxsize=1)
def get_host_settings() -> HostSettings:
    settings = HostSettings()
    settings.validate_backend()
    return settings
