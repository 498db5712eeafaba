import json
from itertools import count
from threading import Lock

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import PlainTextResponse, RedirectResponse
from pydantic import BaseModel, Field

from fake_director.config import get_settings


app = FastAPI(title="Fake BOSH Director")

_lock = Lock()
_deployments: dict[str, list[dict]] = {}
_releases: list[str] = list(get_settings().seed_releases)
_tasks: dict[int, dict] = {}
_task_ids = count(1)
_outage = {"enabled": False}


class FakeDeployment(BaseModel):
    instances: list[dict] = Field(default_factory=list)


class FakeReleases(BaseModel):
    names: list[str] = Field(default_factory=list)


class FakeOutage(BaseModel):
    enabled: bool


def _check_available() -> None:
    if _outage["enabled"]:
        raise HTTPException(status_code=503, detail="director unavailable")


def reset() -> None:
    with _lock:
        _deployments.clear()
        _releases[:] = list(get_settings().seed_releases)
        _tasks.clear()
        _outage["enabled"] = False


@app.get("/deployments/{name}")
def get_deployment(name: str) -> dict:
    _check_available()
    with _lock:
        if name not in _deployments:
            raise HTTPException(
                status_code=404,
                detail={"code": 70000, "description": f"Deployment '{name}' doesn't exist"},
            )
    return {"manifest": f"name: {name}\n"}


@app.get("/deployments/{name}/vms")
def list_vms(name: str, format: str | None = Query(default=None)) -> RedirectResponse:
    _check_available()
    with _lock:
        if name not in _deployments:
            raise HTTPException(status_code=404, detail=f"Deployment '{name}' doesn't exist")
        if format != "full":
            raise HTTPException(status_code=400, detail="only format=full is supported")
        task_id = next(_task_ids)
        _tasks[task_id] = {
            "id": task_id,
            "state": "processing",
            "description": "retrieve vm-stats",
            "deployment": name,
            "polls_left": get_settings().task_processing_polls,
            "rows": [dict(row) for row in _deployments[name]],
        }
    return RedirectResponse(url=f"/tasks/{task_id}", status_code=302)


def _task_view(task: dict) -> dict:
    return {
        "id": task["id"],
        "state": task["state"],
        "description": task["description"],
        "deployment": task["deployment"],
        "result": task.get("result"),
    }


@app.get("/tasks/{task_id}")
def get_task(task_id: int) -> dict:
    _check_available()
    with _lock:
        task = _tasks.get(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
        if task["state"] == "processing":
            if task["polls_left"] > 0:
                task["polls_left"] -= 1
                return _task_view(task)
            task["state"] = "done"
        return _task_view(task)


@app.get("/tasks/{task_id}/output", response_class=PlainTextResponse)
def get_task_output(task_id: int, type: str = Query(default="result")) -> str:
    _check_available()
    with _lock:
        task = _tasks.get(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
        if type != "result":
            return ""
        if task["state"] == "done":
            # Served results are not kept.
            del _tasks[task_id]
        return "".join(json.dumps(row) + "\n" for row in task["rows"])


@app.get("/releases")
def get_releases() -> list[dict]:
    _check_available()
    with _lock:
        return [
            {"name": name, "release_versions": [{"version": "1", "currently_deployed": False}]}
            for name in _releases
        ]


@app.put("/_fake/deployments/{name}")
def put_deployment(name: str, req: FakeDeployment) -> dict:
    with _lock:
        _deployments[name] = [dict(row) for row in req.instances]
    return {"name": name, "instances": len(req.instances)}


@app.delete("/_fake/deployments/{name}")
def delete_deployment(name: str) -> dict:
    with _lock:
        _deployments.pop(name, None)
    return {"name": name, "deleted": True}


@app.put("/_fake/releases")
def put_releases(req: FakeReleases) -> dict:
    with _lock:
        _releases[:] = list(req.names)
    return {"releases": len(req.names)}


@app.put("/_fake/outage")
def put_outage(req: FakeOutage) -> dict:
    _outage["enabled"] = req.enabled
    return {"enabled": req.enabled}
