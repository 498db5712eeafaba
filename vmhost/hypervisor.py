import logging
import subprocess
from dataclasses import dataclass, field
from threading import Lock
from typing import Protocol

from vmhost.config import HostSettings
from vmhost.errors import HypervisorError, NotFoundError
from vmhost.models import VMRuntimeState


logger = logging.getLogger(__name__)

_NOT_FOUND_MARKERS = (
    "unable to find a virtual machine",
    "objectnotfound",
)


class HypervisorCommands(Protocol):
    def create(
        self,
        name: str,
        memory_mb: int,
        cpu_count: int,
        boot_image_path: str,
        data_disk_path: str,
    ) -> None: ...

    def start(self, name: str) -> None: ...

    def stop(self, name: str) -> None: ...

    def destroy(self, name: str) -> None: ...

    def exists(self, name: str) -> bool: ...

    def query_running(self, name: str) -> bool: ...


def ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def build_create_script(
    name: str,
    memory_mb: int,
    cpu_count: int,
    boot_image_path: str,
    data_disk_path: str,
) -> str:
    vm = ps_quote(name)
    lines = [
        "$ErrorActionPreference = 'Stop'",
        f"New-VM -Name {vm} -Generation 2 -NoVHD | Out-Null",
        (
            f"Set-VM -Name {vm} -AutomaticStartAction Nothing -AutomaticStopAction ShutDown "
            f"-CheckpointType Disabled -MemoryStartupBytes {memory_mb}MB -StaticMemory "
            f"-ProcessorCount {cpu_count}"
        ),
        f"Add-VMDvdDrive -VMName {vm} -Path {ps_quote(boot_image_path)}",
        f"Add-VMHardDiskDrive -VMName {vm} -Path {ps_quote(data_disk_path)}",
        (
            f"Set-VMFirmware -VMName {vm} -EnableSecureBoot Off "
            f"-FirstBootDevice (Get-VMDvdDrive -VMName {vm})"
        ),
    ]
    return "; ".join(lines)


def build_lookup_script(name: str) -> str:
    # Get-VM -Name treats * ? [ as wildcards, so match the name exactly instead.
    return f"(Get-VM -ErrorAction SilentlyContinue | Where-Object {{ $_.Name -eq {ps_quote(name)} }})"


def build_start_script(name: str) -> str:
    missing = ps_quote(f"Hyper-V was unable to find a virtual machine with name {name}.")
    return (
        f"$ErrorActionPreference = 'Stop'; $vm = {build_lookup_script(name)}; "
        f"if (-not $vm) {{ throw {missing} }}; $vm | Start-VM"
    )


def build_stop_script(name: str) -> str:
    # An empty pipeline is a no-op, so a missing VM is not an error.
    return f"{build_lookup_script(name)} | Stop-VM -TurnOff -Force"


def build_destroy_script(name: str) -> str:
    return (
        f"$vm = {build_lookup_script(name)}; "
        "if ($vm) { $vm | Stop-VM -TurnOff -Force; $vm | Remove-VM -Force }"
    )


def build_state_script(name: str) -> str:
    return f"({build_lookup_script(name)}).State"


def build_name_script(name: str) -> str:
    return f"{build_lookup_script(name)} | Select-Object -ExpandProperty Name"


class HyperVCommands:
    """Hyper-V backend driven through PowerShell cmdlets."""

    def __init__(self, powershell_binary: str = "powershell.exe", timeout_sec: int = 120):
        self.powershell_binary = powershell_binary
        self.timeout_sec = timeout_sec

    def _run(self, script: str, *, check: bool = True) -> subprocess.CompletedProcess[str]:
        args = [self.powershell_binary, "-NoProfile", "-NonInteractive", "-Command", script]
        logger.debug("running powershell script=%s", script)
        try:
            proc = subprocess.run(
                args,
                check=False,
                text=True,
                capture_output=True,
                timeout=self.timeout_sec,
            )
        except FileNotFoundError as exc:
            raise HypervisorError(f"command not found: {self.powershell_binary}") from exc
        except subprocess.TimeoutExpired as exc:
            raise HypervisorError(
                f"powershell command timed out after {self.timeout_sec}s: {script}"
            ) from exc
        except OSError as exc:
            raise HypervisorError(f"could not run powershell command '{script}': {exc}") from exc

        if check and proc.returncode != 0:
            stderr = (proc.stderr or "").strip()
            stdout = (proc.stdout or "").strip()
            details = stderr or stdout
            if details:
                raise HypervisorError(
                    f"powershell command failed (exit {proc.returncode}): {script}\n{details}"
                )
            raise HypervisorError(f"powershell command failed (exit {proc.returncode}): {script}")
        return proc

    def create(
        self,
        name: str,
        memory_mb: int,
        cpu_count: int,
        boot_image_path: str,
        data_disk_path: str,
    ) -> None:
        self._run(
            build_create_script(name, memory_mb, cpu_count, boot_image_path, data_disk_path)
        )

    def start(self, name: str) -> None:
        try:
            self._run(build_start_script(name))
        except HypervisorError as exc:
            text = str(exc).lower()
            if any(marker in text for marker in _NOT_FOUND_MARKERS):
                raise NotFoundError(name) from exc
            raise

    def stop(self, name: str) -> None:
        self._run(build_stop_script(name))

    def destroy(self, name: str) -> None:
        self._run(build_destroy_script(name))

    def exists(self, name: str) -> bool:
        proc = self._run(build_name_script(name))
        names = [line.strip() for line in (proc.stdout or "").splitlines()]
        return name in names

    def query_running(self, name: str) -> bool:
        proc = self._run(build_state_script(name))
        return (proc.stdout or "").strip().lower() == "running"


@dataclass
class MemoryVM:
    memory_mb: int
    cpu_count: int
    boot_image_path: str
    data_disk_path: str
    running: bool = False
    history: list[str] = field(default_factory=list)


class InMemoryHypervisor:
    """Process-local hypervisor with Hyper-V's observable semantics."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._vms: dict[str, MemoryVM] = {}

    def create(
        self,
        name: str,
        memory_mb: int,
        cpu_count: int,
        boot_image_path: str,
        data_disk_path: str,
    ) -> None:
        with self._lock:
            if name in self._vms:
                raise HypervisorError(f"a virtual machine named {name} already exists")
            self._vms[name] = MemoryVM(
                memory_mb=memory_mb,
                cpu_count=cpu_count,
                boot_image_path=boot_image_path,
                data_disk_path=data_disk_path,
                history=["create"],
            )

    def start(self, name: str) -> None:
        with self._lock:
            vm = self._vms.get(name)
            if vm is None:
                raise NotFoundError(name)
            vm.running = True
            vm.history.append("start")

    def stop(self, name: str) -> None:
        with self._lock:
            vm = self._vms.get(name)
            if vm is None:
                return
            vm.running = False
            vm.history.append("stop")

    def destroy(self, name: str) -> None:
        with self._lock:
            self._vms.pop(name, None)

    def exists(self, name: str) -> bool:
        with self._lock:
            return name in self._vms

    def query_running(self, name: str) -> bool:
        with self._lock:
            vm = self._vms.get(name)
            return bool(vm and vm.running)

    def get(self, name: str) -> MemoryVM | None:
        with self._lock:
            return self._vms.get(name)


def build_hypervisor(settings: HostSettings) -> HypervisorCommands:
    if settings.hypervisor_backend == "memory":
        return InMemoryHypervisor()
    return HyperVCommands(settings.powershell_binary, settings.command_timeout_sec)


def observe_state(hypervisor: HypervisorCommands, name: str) -> VMRuntimeState:
    if not hypervisor.exists(name):
        return VMRuntimeState.ABSENT
    if hypervisor.query_running(name):
        return VMRuntimeState.RUNNING
    return VMRuntimeState.OFF
