import json
from datetime import UTC, datetime

import httpx
import pytest

from telemetry.sink import AnalyticsError, HttpAnalyticsSink, TrackEvent, platform_properties
from deploy_monitor.clients.http import RetryPolicy


def _sink(handler, flush_at: int = 20) -> HttpAnalyticsSink:
    client = httpx.Client(base_url="http://analytics.test", transport=httpx.MockTransport(handler))
    return HttpAnalyticsSink(
        "http://analytics.test", "key", RetryPolicy(1, 0), flush_at=flush_at, http_client=client
    )


def test_flush_posts_buffered_events_as_batch():
    seen: list[dict] = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True}, request=request)

    sink = _sink(handler)
    ts = datetime(2024, 1, 2, tzinfo=UTC)
    sink.enqueue(TrackEvent(user_id="u1", event="org created", timestamp=ts, properties={"os": "linux"}))
    sink.enqueue(TrackEvent(user_id="u1", event="created service"))
    assert seen == []

    sink.flush()

    assert len(seen) == 1
    batch = seen[0]["batch"]
    assert [item["event"] for item in batch] == ["org created", "created service"]
    assert batch[0]["userId"] == "u1"
    assert batch[0]["timestamp"] == ts.isoformat()
    assert batch[0]["properties"] == {"os": "linux"}


def test_enqueue_flushes_when_buffer_full():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, request=request)

    sink = _sink(handler, flush_at=2)
    sink.enqueue(TrackEvent(user_id="u", event="a"))
    sink.enqueue(TrackEvent(user_id="u", event="b"))
    assert len(calls) == 1


def test_delivery_failure_raises_analytics_error():
    sink = _sink(lambda request: httpx.Response(500, request=request))
    sink.enqueue(TrackEvent(user_id="u", event="a"))
    with pytest.raises(AnalyticsError, match="failed to send analytics"):
        sink.flush()


def test_platform_properties_include_versions():
    props = platform_properties("1.2.3")
    assert props["plugin_version"] == "1.2.3"
    assert set(props) == {"os", "os_version", "plugin_version"}
