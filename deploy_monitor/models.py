from dataclasses import asdict, dataclass, field
from enum import Enum


class ProgressState(str, Enum):
    UPLOADING_RELEASES = "uploading-releases"
    DEPLOYING = "deploying"
    RUNNING_ERRAND = "running-errand"
    STALLED = "stalled"


@dataclass(frozen=True)
class InstanceInfo:
    process_state: str
    processes: list = field(default_factory=list)
    job_name: str | None = None
    index: int | None = None
    vm_cid: str | None = None

    @property
    def converged(self) -> bool:
        return self.process_state == "running" and len(self.processes) > 0

    @classmethod
    def from_payload(cls, payload: dict) -> "InstanceInfo":
        processes = payload.get("processes")
        index = payload.get("index")
        return cls(
            process_state=str(payload.get("process_state") or ""),
            processes=list(processes) if isinstance(processes, list) else [],
            job_name=payload.get("job_name"),
            index=index if isinstance(index, int) else None,
            vm_cid=payload.get("vm_cid"),
        )


@dataclass(frozen=True)
class VMProgress:
    state: ProgressState
    releases: int = 0
    total: int = 0
    done: int = 0
    elapsed: float = 0.0
    orchestrator_reachable: bool = True

    def __post_init__(self) -> None:
        if self.done > self.total:
            raise ValueError(f"done ({self.done}) cannot exceed total ({self.total})")

    def to_dict(self) -> dict:
        data = asdict(self)
        data["state"] = self.state.value
        return data


def count_done(instances: list[InstanceInfo]) -> int:
    return sum(1 for instance in instances if instance.converged)
