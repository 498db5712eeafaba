import json
import logging
import ssl
import time
from dataclasses import dataclass
from pathlib import Path

import httpx

from deploy_monitor.clients.http import RequestFailure, RetryPolicy, request_with_retry
from deploy_monitor.config import MonitorSettings
from deploy_monitor.models import InstanceInfo


logger = logging.getLogger(__name__)

_ACTIVE_TASK_STATES = {"queued", "processing", "cancelling"}


class DirectorError(RuntimeError):
    """Raised when the director cannot answer a query."""


class DeploymentNotFound(DirectorError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"deployment {name} not found")


@dataclass
class Deployment:
    name: str
    client: "DirectorClient"

    def vm_infos(self) -> list[InstanceInfo]:
        return self.client.vm_infos(self.name)


def read_director_credentials(state_bosh_dir: str) -> tuple[str, str]:
    state_dir = Path(state_bosh_dir)
    secret = (state_dir / "secret").read_text(encoding="utf-8").strip()
    ca_cert = (state_dir / "ca.crt").read_text(encoding="utf-8").strip()
    return secret, ca_cert


class DirectorClient:
    def __init__(
        self,
        base_url: str,
        client_name: str,
        client_secret: str,
        retry: RetryPolicy,
        *,
        ca_cert: str | None = None,
        task_poll_interval_sec: float = 0.5,
        task_timeout_sec: float = 300.0,
        http_client: httpx.Client | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.retry = retry
        self.task_poll_interval_sec = task_poll_interval_sec
        self.task_timeout_sec = task_timeout_sec
        if http_client is not None:
            self.client = http_client
        else:
            verify: ssl.SSLContext | bool = True
            if ca_cert:
                verify = ssl.create_default_context(cadata=ca_cert)
            self.client = httpx.Client(
                base_url=self.base_url,
                auth=(client_name, client_secret),
                timeout=10.0,
                verify=verify,
            )

    @classmethod
    def from_settings(cls, settings: MonitorSettings) -> "DirectorClient":
        try:
            secret, ca_cert = read_director_credentials(settings.state_bosh_dir)
        except OSError as exc:
            raise DirectorError(
                f"failed to read director credentials from {settings.state_bosh_dir}: {exc}"
            ) from exc
        return cls(
            settings.director_url,
            settings.director_client,
            secret,
            RetryPolicy(settings.retry_attempts, settings.retry_sleep_sec),
            ca_cert=ca_cert,
            task_poll_interval_sec=settings.task_poll_interval_sec,
            task_timeout_sec=settings.task_timeout_sec,
        )

    def close(self) -> None:
        self.client.close()

    def _get(self, path: str, **kwargs) -> httpx.Response:
        try:
            return request_with_retry(self.client, "GET", path, self.retry, **kwargs)
        except RequestFailure as exc:
            raise DirectorError(str(exc)) from exc

    def _json(self, response: httpx.Response):
        try:
            return response.json()
        except ValueError as exc:
            raise DirectorError(
                f"could not parse director response from {response.request.url}: {exc}"
            ) from exc

    def find_deployment(self, name: str) -> Deployment:
        try:
            request_with_retry(self.client, "GET", f"/deployments/{name}", self.retry)
        except RequestFailure as exc:
            if exc.status_code == 404:
                raise DeploymentNotFound(name) from exc
            raise DirectorError(str(exc)) from exc
        return Deployment(name=name, client=self)

    def releases(self) -> list[dict]:
        data = self._json(self._get("/releases"))
        if not isinstance(data, list):
            raise DirectorError("unexpected releases payload: expected a JSON list")
        return data

    def vm_infos(self, deployment_name: str) -> list[InstanceInfo]:
        # The director answers with a redirect to an asynchronous task.
        response = self._get(
            f"/deployments/{deployment_name}/vms",
            params={"format": "full"},
            follow_redirects=True,
        )
        task = self._json(response)
        if not isinstance(task, dict) or "id" not in task:
            raise DirectorError("unexpected vms payload: expected a task")
        logger.debug("waiting for director task id=%s deployment=%s", task["id"], deployment_name)
        task = self._wait_for_task(task)
        return [InstanceInfo.from_payload(row) for row in self._task_result(task["id"])]

    def _wait_for_task(self, task: dict) -> dict:
        deadline = time.monotonic() + self.task_timeout_sec
        while task.get("state") in _ACTIVE_TASK_STATES:
            if time.monotonic() >= deadline:
                raise DirectorError(
                    f"task {task.get('id')} did not finish within {self.task_timeout_sec}s"
                )
            time.sleep(self.task_poll_interval_sec)
            task = self._json(self._get(f"/tasks/{task['id']}"))
        if task.get("state") != "done":
            raise DirectorError(
                f"task {task.get('id')} ended in state {task.get('state')}: {task.get('result')}"
            )
        return task

    def _task_result(self, task_id: int) -> list[dict]:
        response = self._get(f"/tasks/{task_id}/output", params={"type": "result"})
        rows: list[dict] = []
        for line in response.text.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                row = json.loads(line)
            except json.JSONDecodeError as exc:
                raise DirectorError(f"could not parse task {task_id} output: {exc}") from exc
            if isinstance(row, dict):
                rows.append(row)
        return rows
