from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field


class VMRuntimeState(str, Enum):
    ABSENT = "absent"
    OFF = "off"
    RUNNING = "running"


@dataclass
class VM:
    name: str
    memory_mb: int
    cpu_count: int

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("vm name is required")
        if self.memory_mb <= 0:
            raise ValueError(f"memory_mb must be positive, got {self.memory_mb}")
        if self.cpu_count <= 0:
            raise ValueError(f"cpu_count must be positive, got {self.cpu_count}")


class VMCreateRequest(BaseModel):
    memory_mb: int | None = Field(default=None, gt=0)
    cpu_count: int | None = Field(default=None, gt=0)


class VMStateResponse(BaseModel):
    name: str
    state: VMRuntimeState
    running: bool
