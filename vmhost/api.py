import logging
from datetime import UTC, datetime
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException

from vmhost.config import get_host_settings
from vmhost.errors import CreationError, HypervisorError, NotFoundError
from vmhost.hypervisor import build_hypervisor
from vmhost.models import VM, VMCreateRequest, VMStateResponse
from vmhost.supervisor import VMSupervisor


router = APIRouter()
logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_supervisor() -> VMSupervisor:
    settings = get_host_settings()
    return VMSupervisor(build_hypervisor(settings), settings)


def _state_response(supervisor: VMSupervisor, name: str) -> VMStateResponse:
    try:
        state = supervisor.state(name)
    except HypervisorError as exc:
        raise HTTPException(status_code=502, detail={"vm": name, "reason": str(exc)}) from exc
    return VMStateResponse(name=name, state=state, running=supervisor.is_running(name))


def _raise_lifecycle_error(op: str, name: str, exc: HypervisorError) -> None:
    logger.error("vm %s failed name=%s reason=%s", op, name, exc)
    status_code = 404 if isinstance(exc, NotFoundError) else 502
    raise HTTPException(
        status_code=status_code, detail={"vm": name, "op": op, "reason": str(exc)}
    ) from exc


@router.get("/healthz")
def healthz() -> dict:
    settings = get_host_settings()
    return {
        "status": "ok",
        "hypervisor_backend": settings.hypervisor_backend,
        "boot_image_path": str(settings.boot_image_path),
        "data_disk_path": str(settings.data_disk_path),
        "generated_at": datetime.now(UTC).isoformat(),
    }


@router.put("/v1/vms/{name}", response_model=VMStateResponse)
def create_vm(
    name: str,
    req: VMCreateRequest,
    supervisor: VMSupervisor = Depends(get_supervisor),
) -> VMStateResponse:
    settings = get_host_settings()
    try:
        supervisor.create_vm(
            VM(
                name=name,
                memory_mb=req.memory_mb or settings.default_memory_mb,
                cpu_count=req.cpu_count or settings.default_cpu_count,
            )
        )
    except CreationError as exc:
        _raise_lifecycle_error("create", name, exc)
    return _state_response(supervisor, name)


@router.post("/v1/vms/{name}/start", response_model=VMStateResponse)
def start_vm(name: str, supervisor: VMSupervisor = Depends(get_supervisor)) -> VMStateResponse:
    try:
        supervisor.start(name)
    except HypervisorError as exc:
        _raise_lifecycle_error("start", name, exc)
    return _state_response(supervisor, name)


@router.post("/v1/vms/{name}/stop", response_model=VMStateResponse)
def stop_vm(name: str, supervisor: VMSupervisor = Depends(get_supervisor)) -> VMStateResponse:
    try:
        supervisor.stop(name)
    except HypervisorError as exc:
        _raise_lifecycle_error("stop", name, exc)
    return _state_response(supervisor, name)


@router.delete("/v1/vms/{name}", response_model=VMStateResponse)
def destroy_vm(name: str, supervisor: VMSupervisor = Depends(get_supervisor)) -> VMStateResponse:
    try:
        supervisor.destroy(name)
    except HypervisorError as exc:
        _raise_lifecycle_error("destroy", name, exc)
    return _state_response(supervisor, name)


@router.get("/v1/vms/{name}", response_model=VMStateResponse)
def get_vm(name: str, supervisor: VMSupervisor = Depends(get_supervisor)) -> VMStateResponse:
    return _state_response(supervisor, name)
