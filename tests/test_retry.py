import httpx
import pytest

from deploy_monitor.clients.http import Backoff, RequestFailure, RetryPolicy, request_with_retry


def test_request_with_retry_raises_after_attempts():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(status_code=500, request=request)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    with pytest.raises(RequestFailure) as excinfo:
        request_with_retry(
            client, "GET", "http://example.test", RetryPolicy(attempts=2, sleep_sec=0)
        )
    assert len(calls) == 2
    assert excinfo.value.status_code == 500
    assert excinfo.value.attempts == 2


def test_request_with_retry_does_not_retry_not_found():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(status_code=404, text="missing", request=request)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    with pytest.raises(RequestFailure) as excinfo:
        request_with_retry(
            client, "GET", "http://example.test", RetryPolicy(attempts=3, sleep_sec=0)
        )
    assert len(calls) == 1
    assert excinfo.value.status_code == 404
    assert "HTTP 404: missing" in str(excinfo.value)


def test_request_with_retry_succeeds():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(
            status_code=200, json={"ok": True}, request=request
        )
    )
    client = httpx.Client(transport=transport)
    response = request_with_retry(
        client, "GET", "http://example.test", RetryPolicy(attempts=2, sleep_sec=0)
    )
    assert response.json() == {"ok": True}


def test_backoff_grows_and_caps():
    delays = Backoff(0.1, 0.5, 2.0).delays()
    assert [round(next(delays), 3) for _ in range(5)] == [0.1, 0.2, 0.4, 0.5, 0.5]


def test_backoff_zero_initial_retries_immediately():
    delays = Backoff(0.0, 1.0).delays()
    assert [next(delays) for _ in range(3)] == [0.0, 0.0, 0.0]
