import random
import string

import pytest

from vmhost.config import HostSettings
from vmhost.errors import CreationError, HypervisorCommandError, HypervisorError, NotFoundError
from vmhost.hypervisor import InMemoryHypervisor
from vmhost.models import VM, VMRuntimeState
from vmhost.supervisor import VMSupervisor


def _random_vm_name() -> str:
    return "some-vm" + "".join(random.choices(string.ascii_letters, k=10))


@pytest.fixture
def hypervisor() -> InMemoryHypervisor:
    return InMemoryHypervisor()


@pytest.fixture
def supervisor(hypervisor, tmp_path) -> VMSupervisor:
    settings = HostSettings(home=str(tmp_path), hypervisor_backend="memory")
    return VMSupervisor(hypervisor, settings)


def test_unknown_vm_start_fails_with_exact_message(supervisor):
    name = _random_vm_name()
    with pytest.raises(NotFoundError) as excinfo:
        supervisor.start(name)
    assert str(excinfo.value) == f"hyperv vm with name {name} does not exist"


def test_unknown_vm_stop_destroy_and_is_running_succeed(supervisor):
    name = _random_vm_name()
    supervisor.stop(name)
    supervisor.destroy(name)
    assert supervisor.is_running(name) is False
    assert supervisor.exists(name) is False
    assert supervisor.state(name) is VMRuntimeState.ABSENT


def test_create_attaches_boot_image_and_data_disk(supervisor, hypervisor, tmp_path):
    supervisor.create_vm(VM(name="cfdev", memory_mb=2000, cpu_count=1))
    vm = hypervisor.get("cfdev")
    assert vm is not None
    assert vm.memory_mb == 2000
    assert vm.cpu_count == 1
    assert vm.boot_image_path == str(tmp_path / "cache" / "cfdev-efi-v2.iso")
    assert vm.data_disk_path == str(tmp_path / "state" / "linuxkit" / "disk.vhdx")


def test_created_vm_is_powered_off(supervisor):
    supervisor.create_vm(VM(name="cfdev", memory_mb=1024, cpu_count=2))
    assert supervisor.is_running("cfdev") is False
    assert supervisor.state("cfdev") is VMRuntimeState.OFF


def test_start_is_idempotent(supervisor, hypervisor):
    supervisor.create_vm(VM(name="cfdev", memory_mb=1024, cpu_count=2))
    supervisor.start("cfdev")
    assert supervisor.is_running("cfdev") is True
    supervisor.start("cfdev")
    assert supervisor.is_running("cfdev") is True
    assert hypervisor.get("cfdev").history.count("start") == 1


def test_stop_is_idempotent(supervisor, hypervisor):
    supervisor.create_vm(VM(name="cfdev", memory_mb=1024, cpu_count=2))
    supervisor.start("cfdev")
    supervisor.stop("cfdev")
    assert supervisor.is_running("cfdev") is False
    supervisor.stop("cfdev")
    assert hypervisor.get("cfdev").history.count("stop") == 1


def test_destroy_after_stop_removes_vm(supervisor):
    supervisor.create_vm(VM(name="cfdev", memory_mb=1024, cpu_count=2))
    supervisor.start("cfdev")
    supervisor.stop("cfdev")
    supervisor.destroy("cfdev")
    with pytest.raises(NotFoundError):
        supervisor.start("cfdev")


def test_destroy_running_vm_directly(supervisor):
    supervisor.create_vm(VM(name="cfdev", memory_mb=1024, cpu_count=2))
    supervisor.start("cfdev")
    supervisor.destroy("cfdev")
    assert supervisor.state("cfdev") is VMRuntimeState.ABSENT


def test_create_name_collision_raises_creation_error(supervisor):
    supervisor.create_vm(VM(name="cfdev", memory_mb=1024, cpu_count=2))
    with pytest.raises(CreationError) as excinfo:
        supervisor.create_vm(VM(name="cfdev", memory_mb=1024, cpu_count=2))
    assert "cfdev" in str(excinfo.value)
    assert "already exists" in str(excinfo.value)


def test_vm_rejects_non_positive_resources():
    with pytest.raises(ValueError):
        VM(name="cfdev", memory_mb=0, cpu_count=1)
    with pytest.raises(ValueError):
        VM(name="cfdev", memory_mb=1024, cpu_count=0)


class _BrokenHypervisor(InMemoryHypervisor):
    def exists(self, name: str) -> bool:
        raise HypervisorError("powershell unavailable")


def test_is_running_never_raises(tmp_path):
    supervisor = VMSupervisor(_BrokenHypervisor(), HostSettings(home=str(tmp_path)))
    assert supervisor.is_running("cfdev") is False


def test_lifecycle_errors_name_command_and_vm(tmp_path):
    supervisor = VMSupervisor(_BrokenHypervisor(), HostSettings(home=str(tmp_path)))
    with pytest.raises(HypervisorCommandError) as excinfo:
        supervisor.stop("cfdev")
    assert excinfo.value.command == "stop"
    assert excinfo.value.name == "cfdev"
    assert "powershell unavailable" in str(excinfo.value)
