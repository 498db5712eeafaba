import os

from fastapi.testclient import TestClient

from vmhost.config import get_host_settings

os.environ["CFDEV_HYPERVISOR_BACKEND"] = "memory"
os.environ["CFDEV_HOME"] = "/tmp/cfdev-vmhost-api"
get_host_settings.cache_clear()

from vmhost.api import get_supervisor  # noqa: E402
from vmhost.main import app  # noqa: E402


def setup_function() -> None:
    get_host_settings.cache_clear()
    get_supervisor.cache_clear()


def test_healthz_reports_backend_and_paths():
    client = TestClient(app)
    body = client.get("/healthz").json()
    assert body["status"] == "ok"
    assert body["hypervisor_backend"] == "memory"
    assert body["boot_image_path"].endswith("cfdev-efi-v2.iso")


def test_vm_lifecycle_over_http():
    client = TestClient(app)

    response = client.put("/v1/vms/cfdev", json={"memory_mb": 2048, "cpu_count": 2})
    assert response.status_code == 200
    assert response.json() == {"name": "cfdev", "state": "off", "running": False}

    response = client.post("/v1/vms/cfdev/start")
    assert response.status_code == 200
    assert response.json()["running"] is True

    response = client.post("/v1/vms/cfdev/start")
    assert response.status_code == 200

    response = client.post("/v1/vms/cfdev/stop")
    assert response.json()["state"] == "off"

    response = client.delete("/v1/vms/cfdev")
    assert response.json()["state"] == "absent"


def test_start_missing_vm_returns_404_with_message():
    client = TestClient(app)
    response = client.post("/v1/vms/ghost/start")
    assert response.status_code == 404
    assert response.json()["detail"]["reason"] == "hyperv vm with name ghost does not exist"


def test_create_collision_returns_502():
    client = TestClient(app)
    assert client.put("/v1/vms/dup", json={"memory_mb": 512, "cpu_count": 1}).status_code == 200
    response = client.put("/v1/vms/dup", json={"memory_mb": 512, "cpu_count": 1})
    assert response.status_code == 502
    assert response.json()["detail"]["op"] == "create"


def test_create_rejects_invalid_resources():
    client = TestClient(app)
    response = client.put("/v1/vms/bad", json={"memory_mb": 0, "cpu_count": 1})
    assert response.status_code == 422
