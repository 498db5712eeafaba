"""Convergence tracking for a director deployment.

A monitor answers two kinds of questions about a named deployment: a blocking
one-shot snapshot, and a stream of snapshots produced by a background thread
until every instance reports a running process. Director outages never reach
the caller as errors; they show up as skipped ticks and, after
``stall_timeout_sec`` without a successful observation, as a ``stalled``
snapshot.
"""

import logging
import queue
import threading
import time
from collections.abc import Callable, Iterator

from deploy_monitor.clients.director import Deployment, DirectorClient, DirectorError
from deploy_monitor.clients.http import Backoff
from deploy_monitor.config import MonitorSettings
from deploy_monitor.metrics import metrics
from deploy_monitor.models import InstanceInfo, ProgressState, VMProgress, count_done


logger = logging.getLogger(__name__)

_CLOSED = object()
_QUEUE_POLL_SEC = 0.05


class MonitorCancelled(RuntimeError):
    """Raised when deployment lookup is abandoned before it succeeds."""


class StopSignal:
    """Set when any of the wrapped events is set."""

    def __init__(self, *events: threading.Event | None):
        self._events = [event for event in events if event is not None]
        if not self._events:
            self._events.append(threading.Event())

    def set(self) -> None:
        self._events[0].set()

    def is_set(self) -> bool:
        return any(event.is_set() for event in self._events)

    def wait(self, timeout: float) -> bool:
        if len(self._events) == 1:
            return self._events[0].wait(timeout)
        deadline = time.monotonic() + timeout
        while not self.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self._events[0].wait(min(remaining, _QUEUE_POLL_SEC))
        return True


class ProgressStream:
    """Iterable view over one streaming session.

    The queue holds at most one snapshot, so a slow consumer throttles the
    producer instead of losing snapshots.
    """

    def __init__(self, deployment_name: str, stop: StopSignal):
        self.deployment_name = deployment_name
        self._queue: queue.Queue = queue.Queue(maxsize=1)
        self._stop = stop
        self._finished = threading.Event()
        self._thread: threading.Thread | None = None

    def __iter__(self) -> Iterator[VMProgress]:
        while True:
            try:
                item = self._queue.get(timeout=_QUEUE_POLL_SEC)
            except queue.Empty:
                if self._finished.is_set() and self._queue.empty():
                    return
                continue
            if item is _CLOSED:
                return
            yield item

    def __enter__(self) -> "ProgressStream":
        return self

    def __exit__(self, *_exc) -> None:
        self.cancel()

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def cancel(self) -> None:
        self._stop.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _emit(self, item: object) -> bool:
        while not self._stop.is_set():
            try:
                self._queue.put(item, timeout=_QUEUE_POLL_SEC)
                return True
            except queue.Full:
                continue
        return False

    def _close(self) -> None:
        self._finished.set()
        try:
            self._queue.put_nowait(_CLOSED)
        except queue.Full:
            pass


class ProgressMonitor:
    def __init__(
        self,
        director: DirectorClient,
        *,
        interval_sec: float = 1.0,
        backoff: Backoff | None = None,
        stall_timeout_sec: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.director = director
        self.interval_sec = interval_sec
        self.backoff = backoff or Backoff(0.05, 2.0)
        self.stall_timeout_sec = stall_timeout_sec
        self.clock = clock

    @classmethod
    def from_settings(cls, director: DirectorClient, settings: MonitorSettings) -> "ProgressMonitor":
        return cls(
            director,
            interval_sec=settings.progress_interval_sec,
            backoff=Backoff(
                settings.resolve_backoff_initial_sec,
                settings.resolve_backoff_max_sec,
                settings.resolve_backoff_factor,
            ),
            stall_timeout_sec=settings.stall_timeout_sec,
        )

    def _elapsed(self, start: float) -> float:
        return max(self.clock() - start, 0.0)

    def find_deployment(
        self,
        name: str,
        stop_event: threading.Event | StopSignal | None = None,
        timeout_sec: float | None = None,
        on_failure: Callable[[], None] | None = None,
    ) -> Deployment:
        """Resolve a deployment, retrying with backoff until it is registered.

        ``on_failure`` runs after every failed attempt, before the stop and
        timeout checks.
        """
        stop = stop_event if isinstance(stop_event, StopSignal) else StopSignal(stop_event)
        deadline = self.clock() + timeout_sec if timeout_sec is not None else None
        delays = self.backoff.delays()
        attempts = 0
        while True:
            attempts += 1
            try:
                return self.director.find_deployment(name)
            except DirectorError as exc:
                metrics.inc("director_lookup_failures_total")
                logger.debug("deployment lookup failed name=%s attempt=%s reason=%s", name, attempts, exc)
            if on_failure is not None:
                on_failure()
            if stop.is_set():
                raise MonitorCancelled(f"lookup of deployment {name} cancelled after {attempts} attempts")
            delay = next(delays)
            if deadline is not None:
                remaining = deadline - self.clock()
                if remaining <= 0:
                    raise MonitorCancelled(
                        f"deployment {name} not found within {timeout_sec}s ({attempts} attempts)"
                    )
                delay = min(delay, remaining)
            if delay > 0 and stop.wait(delay):
                raise MonitorCancelled(f"lookup of deployment {name} cancelled after {attempts} attempts")

    def get_vm_progress(
        self,
        start: float,
        deployment_name: str,
        is_errand: bool = False,
        stop_event: threading.Event | None = None,
        timeout_sec: float | None = None,
    ) -> VMProgress:
        if is_errand:
            return VMProgress(state=ProgressState.RUNNING_ERRAND, elapsed=self._elapsed(start))

        deployment = self.find_deployment(deployment_name, stop_event, timeout_sec)

        try:
            instances = deployment.vm_infos()
        except DirectorError as exc:
            logger.debug("instance query failed deployment=%s reason=%s", deployment_name, exc)
            instances = []

        if not instances:
            try:
                releases = self.director.releases()
            except DirectorError as exc:
                logger.warning(
                    "no instance or release data deployment=%s reason=%s", deployment_name, exc
                )
                return VMProgress(
                    state=ProgressState.DEPLOYING,
                    elapsed=self._elapsed(start),
                    orchestrator_reachable=False,
                )
            return VMProgress(
                state=ProgressState.UPLOADING_RELEASES,
                releases=len(releases),
                elapsed=self._elapsed(start),
            )

        return self._deploying(instances, start)

    def vm_progress(
        self, deployment_name: str, stop_event: threading.Event | None = None
    ) -> ProgressStream:
        stream = ProgressStream(deployment_name, StopSignal(threading.Event(), stop_event))
        thread = threading.Thread(
            target=self._produce,
            args=(stream, self.clock()),
            name=f"progress-{deployment_name}",
            daemon=True,
        )
        stream._thread = thread
        thread.start()
        return stream

    def _deploying(self, instances: list[InstanceInfo], start: float) -> VMProgress:
        return VMProgress(
            state=ProgressState.DEPLOYING,
            total=len(instances),
            done=count_done(instances),
            elapsed=self._elapsed(start),
        )

    def _stalled(self, last_observed: float) -> bool:
        return self.stall_timeout_sec > 0 and self.clock() - last_observed >= self.stall_timeout_sec

    def _emit_stall(
        self, stream: ProgressStream, start: float, last_observed: float, total: int, done: int
    ) -> bool:
        metrics.inc("progress_stalls_total")
        logger.warning(
            "director unreachable deployment=%s for=%.1fs",
            stream.deployment_name,
            self.clock() - last_observed,
        )
        return stream._emit(
            VMProgress(
                state=ProgressState.STALLED,
                total=total,
                done=done,
                elapsed=self._elapsed(start),
                orchestrator_reachable=False,
            )
        )

    def _produce(self, stream: ProgressStream, start: float) -> None:
        name = stream.deployment_name
        stop = stream._stop
        metrics.adjust_gauge("progress_streams_active", 1)
        last_observed = self.clock()

        def lookup_failed() -> None:
            nonlocal last_observed
            # A failed emit means the stream was cancelled; the lookup sees the stop next.
            if self._stalled(last_observed) and self._emit_stall(stream, start, last_observed, 0, 0):
                last_observed = self.clock()

        try:
            try:
                deployment = self.find_deployment(name, stop, on_failure=lookup_failed)
            except MonitorCancelled as exc:
                logger.info("progress stream cancelled before lookup: %s", exc)
                return

            total = 0
            done = 0
            last_observed = self.clock()
            while not stop.wait(self.interval_sec):
                metrics.inc("progress_ticks_total")
                try:
                    instances = deployment.vm_infos()
                    last_observed = self.clock()
                except DirectorError as exc:
                    logger.debug("instance query failed deployment=%s reason=%s", name, exc)
                    instances = []

                if instances:
                    snapshot = self._deploying(instances, start)
                    total, done = snapshot.total, snapshot.done
                    if not stream._emit(snapshot):
                        return
                    if done >= total:
                        metrics.inc("progress_streams_converged_total")
                        logger.info(
                            "deployment converged name=%s instances=%s elapsed=%.1fs",
                            name,
                            total,
                            snapshot.elapsed,
                        )
                        return
                    continue

                if total == 0:
                    try:
                        releases = self.director.releases()
                    except DirectorError as exc:
                        logger.debug("release query failed deployment=%s reason=%s", name, exc)
                    else:
                        last_observed = self.clock()
                        snapshot = VMProgress(
                            state=ProgressState.UPLOADING_RELEASES,
                            releases=len(releases),
                            elapsed=self._elapsed(start),
                        )
                        if not stream._emit(snapshot):
                            return
                        continue

                metrics.inc("progress_ticks_skipped_total")
                if self._stalled(last_observed):
                    if not self._emit_stall(stream, start, last_observed, total, done):
                        return
                    last_observed = self.clock()
        except Exception as exc:  # noqa: BLE001
            logger.exception("progress stream failed deployment=%s: %s", name, exc)
        finally:
            metrics.adjust_gauge("progress_streams_active", -1)
            stream._close()
