from collections import Counter
from threading import Lock


class Metrics:
    """Process-wide counters and gauges served by ``GET /metrics``."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: Counter[str] = Counter()
        self._gauges: dict[str, int] = {}

    def inc(self, key: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[key] += amount

    def adjust_gauge(self, key: str, delta: int) -> None:
        with self._lock:
            self._gauges[key] = self._gauges.get(key, 0) + delta

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            merged = dict(self._counters)
            merged.update(self._gauges)
            return merged


metrics = Metrics()
