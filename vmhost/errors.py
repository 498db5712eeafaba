class HypervisorError(RuntimeError):
    """Raised when a hypervisor command fails in a lifecycle-sensitive way."""


class NotFoundError(HypervisorError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"hyperv vm with name {name} does not exist")


class CreationError(HypervisorError):
    def __init__(self, name: str, detail: str):
        self.name = name
        self.detail = detail
        super().__init__(f"failed to create hyperv vm {name}: {detail}")


class HypervisorCommandError(HypervisorError):
    def __init__(self, command: str, name: str, detail: str):
        self.command = command
        self.name = name
        self.detail = detail
        super().__init__(f"hyperv {command} failed for vm {name}: {detail}")
