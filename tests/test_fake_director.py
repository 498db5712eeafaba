from fastapi.testclient import TestClient

from fake_director import app as fake_app_module
from fake_director.app import app


def setup_function() -> None:
    fake_app_module.reset()


def test_unknown_deployment_is_404():
    client = TestClient(app)
    response = client.get("/deployments/cf")
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == 70000


def test_vms_redirects_to_task():
    client = TestClient(app, follow_redirects=False)
    client.put("/_fake/deployments/cf", json={"instances": [{"process_state": "running"}]})
    response = client.get("/deployments/cf/vms", params={"format": "full"})
    assert response.status_code == 302
    assert response.headers["location"].startswith("/tasks/")

    task = client.get(response.headers["location"]).json()
    assert task["state"] == "done"
    output = client.get(f"/tasks/{task['id']}/output", params={"type": "result"})
    assert output.text.strip() == '{"process_state": "running"}'


def test_task_is_forgotten_once_result_is_served():
    client = TestClient(app, follow_redirects=False)
    client.put("/_fake/deployments/cf", json={"instances": [{"process_state": "running"}]})
    location = client.get("/deployments/cf/vms", params={"format": "full"}).headers["location"]
    task = client.get(location).json()
    assert task["state"] == "done"
    client.get(f"/tasks/{task['id']}/output", params={"type": "result"})
    assert client.get(location).status_code == 404
    assert fake_app_module._tasks == {}
