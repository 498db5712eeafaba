import logging

from vmhost.config import HostSettings
from vmhost.errors import CreationError, HypervisorCommandError, HypervisorError, NotFoundError
from vmhost.hypervisor import HypervisorCommands, observe_state
from vmhost.models import VM, VMRuntimeState
from vmhost.state_machine import Action, LifecycleOp, plan, target_state


logger = logging.getLogger(__name__)


class VMSupervisor:
    """Lifecycle operations over a named VM.

    The hypervisor is the source of truth; every call round-trips to it and
    nothing about a VM is remembered between calls.
    """

    def __init__(self, hypervisor: HypervisorCommands, settings: HostSettings):
        self.hypervisor = hypervisor
        self.settings = settings

    def create_vm(self, vm: VM) -> None:
        boot_image = str(self.settings.boot_image_path)
        data_disk = str(self.settings.data_disk_path)
        logger.info(
            "creating vm name=%s memory_mb=%s cpu_count=%s boot_image=%s data_disk=%s",
            vm.name,
            vm.memory_mb,
            vm.cpu_count,
            boot_image,
            data_disk,
        )
        try:
            self.hypervisor.create(vm.name, vm.memory_mb, vm.cpu_count, boot_image, data_disk)
        except HypervisorError as exc:
            logger.error("vm creation failed name=%s reason=%s", vm.name, exc)
            raise CreationError(vm.name, str(exc)) from exc

    def start(self, name: str) -> None:
        action = self._plan(LifecycleOp.START, name)
        if action is Action.NOT_FOUND:
            raise NotFoundError(name)
        if action is Action.NOOP:
            logger.debug("vm already running name=%s", name)
            return
        logger.info("starting vm name=%s", name)
        try:
            self.hypervisor.start(name)
        except NotFoundError:
            raise
        except HypervisorError as exc:
            raise HypervisorCommandError("start", name, str(exc)) from exc

    def stop(self, name: str) -> None:
        action = self._plan(LifecycleOp.STOP, name)
        if action is Action.NOOP:
            logger.debug("vm not running, nothing to stop name=%s", name)
            return
        logger.info("stopping vm name=%s", name)
        try:
            self.hypervisor.stop(name)
        except HypervisorError as exc:
            raise HypervisorCommandError("stop", name, str(exc)) from exc

    def destroy(self, name: str) -> None:
        action = self._plan(LifecycleOp.DESTROY, name)
        if action is Action.NOOP:
            logger.debug("vm does not exist, nothing to destroy name=%s", name)
            return
        logger.info("destroying vm name=%s", name)
        try:
            self.hypervisor.destroy(name)
        except HypervisorError as exc:
            raise HypervisorCommandError("destroy", name, str(exc)) from exc

    def is_running(self, name: str) -> bool:
        try:
            return self.hypervisor.exists(name) and self.hypervisor.query_running(name)
        except HypervisorError as exc:
            logger.warning("vm running query failed name=%s reason=%s", name, exc)
            return False

    def exists(self, name: str) -> bool:
        return self.hypervisor.exists(name)

    def state(self, name: str) -> VMRuntimeState:
        return observe_state(self.hypervisor, name)

    def _plan(self, op: LifecycleOp, name: str) -> Action:
        try:
            current = observe_state(self.hypervisor, name)
        except HypervisorError as exc:
            raise HypervisorCommandError(op.value, name, str(exc)) from exc
        action = plan(op, current)
        logger.debug(
            "vm %s planned name=%s current=%s target=%s action=%s",
            op.value,
            name,
            current.value,
            target_state(op).value,
            action.value,
        )
        return action
