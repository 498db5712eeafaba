import logging
import platform
from datetime import UTC, datetime
from threading import Lock
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, Field

from deploy_monitor.clients.http import RequestFailure, RetryPolicy, request_with_retry


logger = logging.getLogger(__name__)


class TrackEvent(BaseModel):
    user_id: str
    event: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    properties: dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": "track",
            "userId": self.user_id,
            "event": self.event,
            "timestamp": self.timestamp.isoformat(),
            "properties": self.properties,
        }


class AnalyticsError(RuntimeError):
    pass


class AnalyticsSink(Protocol):
    def enqueue(self, event: TrackEvent) -> None: ...

    def flush(self) -> None: ...


def platform_properties(plugin_version: str) -> dict[str, str]:
    return {
        "os": platform.system().lower(),
        "os_version": platform.release(),
        "plugin_version": plugin_version,
    }


class MemorySink:
    def __init__(self) -> None:
        self._lock = Lock()
        self.events: list[TrackEvent] = []

    def enqueue(self, event: TrackEvent) -> None:
        with self._lock:
            self.events.append(event)

    def flush(self) -> None:
        return


class HttpAnalyticsSink:
    """Buffers events and posts them as one batch to ``/v1/batch``."""

    def __init__(
        self,
        base_url: str,
        write_key: str,
        retry: RetryPolicy,
        *,
        flush_at: int = 20,
        http_client: httpx.Client | None = None,
    ):
        self.retry = retry
        self.flush_at = flush_at
        self.client = http_client or httpx.Client(
            base_url=base_url.rstrip("/"), auth=(write_key, ""), timeout=10.0
        )
        self._lock = Lock()
        self._buffer: list[TrackEvent] = []

    def enqueue(self, event: TrackEvent) -> None:
        with self._lock:
            self._buffer.append(event)
            should_flush = len(self._buffer) >= self.flush_at
        if should_flush:
            self.flush()

    def flush(self) -> None:
        with self._lock:
            batch, self._buffer = self._buffer, []
        if not batch:
            return
        try:
            request_with_retry(
                self.client,
                "POST",
                "/v1/batch",
                self.retry,
                json={"batch": [event.to_payload() for event in batch]},
            )
        except RequestFailure as exc:
            raise AnalyticsError(f"failed to send analytics: {exc}") from exc
        logger.debug("analytics batch sent events=%s", len(batch))
