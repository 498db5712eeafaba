from enum import Enum

from vmhost.models import VMRuntimeState


class LifecycleOp(str, Enum):
    START = "start"
    STOP = "stop"
    DESTROY = "destroy"


class Action(str, Enum):
    RUN = "run"
    NOOP = "noop"
    NOT_FOUND = "not_found"


ACTIONS: dict[str, dict[str, Action]] = {
    LifecycleOp.START.value: {
        VMRuntimeState.ABSENT.value: Action.NOT_FOUND,
        VMRuntimeState.OFF.value: Action.RUN,
        VMRuntimeState.RUNNING.value: Action.NOOP,
    },
    LifecycleOp.STOP.value: {
        VMRuntimeState.ABSENT.value: Action.NOOP,
        VMRuntimeState.OFF.value: Action.NOOP,
        VMRuntimeState.RUNNING.value: Action.RUN,
    },
    LifecycleOp.DESTROY.value: {
        VMRuntimeState.ABSENT.value: Action.NOOP,
        VMRuntimeState.OFF.value: Action.RUN,
        VMRuntimeState.RUNNING.value: Action.RUN,
    },
}

TARGET_STATES: dict[str, VMRuntimeState] = {
    LifecycleOp.START.value: VMRuntimeState.RUNNING,
    LifecycleOp.STOP.value: VMRuntimeState.OFF,
    LifecycleOp.DESTROY.value: VMRuntimeState.ABSENT,
}


def plan(op: LifecycleOp, current: VMRuntimeState) -> Action:
    return ACTIONS[op.value][current.value]


def target_state(op: LifecycleOp) -> VMRuntimeState:
    return TARGET_STATES[op.value]
