import json
import logging
from datetime import UTC, datetime
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from deploy_monitor.clients.director import DirectorClient
from deploy_monitor.clients.http import RetryPolicy
from deploy_monitor.config import get_monitor_settings
from deploy_monitor.metrics import metrics
from deploy_monitor.models import ProgressState, VMProgress
from deploy_monitor.monitor import MonitorCancelled, ProgressMonitor
from telemetry.sink import AnalyticsError, AnalyticsSink, HttpAnalyticsSink, TrackEvent, platform_properties


router = APIRouter()
logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_monitor() -> ProgressMonitor:
    settings = get_monitor_settings()
    return ProgressMonitor.from_settings(DirectorClient.from_settings(settings), settings)


@lru_cache(maxsize=1)
def get_analytics_sink() -> AnalyticsSink | None:
    settings = get_monitor_settings()
    if not settings.analytics_url or not settings.analytics_write_key:
        return None
    return HttpAnalyticsSink(
        settings.analytics_url,
        settings.analytics_write_key,
        RetryPolicy(settings.retry_attempts, settings.retry_sleep_sec),
    )


def _track_converged(sink: AnalyticsSink | None, name: str, snapshot: VMProgress) -> None:
    if sink is None:
        return
    settings = get_monitor_settings()
    properties = platform_properties(settings.plugin_version)
    properties.update(
        {"deployment": name, "instances": snapshot.total, "duration_sec": round(snapshot.elapsed, 1)}
    )
    try:
        sink.enqueue(
            TrackEvent(user_id=settings.analytics_user_id, event="deployment converged", properties=properties)
        )
        sink.flush()
    except AnalyticsError as exc:
        logger.warning("analytics delivery failed deployment=%s reason=%s", name, exc)


@router.get("/healthz")
def healthz() -> dict:
    settings = get_monitor_settings()
    return {
        "status": "ok",
        "director_url": settings.director_url,
        "deployment_name": settings.deployment_name,
        "generated_at": datetime.now(UTC).isoformat(),
    }


@router.get("/metrics")
def get_metrics() -> dict[str, int]:
    return metrics.snapshot()


@router.get("/v1/deployments/{name}/progress")
def get_progress(
    name: str,
    errand: bool = Query(default=False),
    since_sec: float = Query(default=0.0, ge=0),
    timeout_sec: float | None = Query(default=None, gt=0),
    monitor: ProgressMonitor = Depends(get_monitor),
) -> dict:
    start = monitor.clock() - since_sec
    try:
        snapshot = monitor.get_vm_progress(start, name, is_errand=errand, timeout_sec=timeout_sec)
    except MonitorCancelled as exc:
        raise HTTPException(status_code=504, detail={"deployment": name, "reason": str(exc)}) from exc
    return snapshot.to_dict()


@router.get("/v1/deployments/{name}/progress/stream")
def stream_progress(
    name: str,
    monitor: ProgressMonitor = Depends(get_monitor),
    sink: AnalyticsSink | None = Depends(get_analytics_sink),
) -> StreamingResponse:
    stream = monitor.vm_progress(name)

    def body():
        last: VMProgress | None = None
        try:
            for snapshot in stream:
                last = snapshot
                yield json.dumps(snapshot.to_dict()) + "\n"
        finally:
            stream.cancel()
        if last is not None and last.state is ProgressState.DEPLOYING and last.done >= last.total:
            _track_converged(sink, name, last)

    return StreamingResponse(body(), media_type="application/x-ndjson")
