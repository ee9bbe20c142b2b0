from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from appforge.core.container import Container
from appforge.main import app
from appforge.queue.models import QueueName

AUTH = {"x-appforge-task-secret": "test-task-secret"}


@pytest.fixture
def container(build_container, scripted_model) -> Container:
  return build_container(scripted_model([]))


@pytest.fixture
def client(container: Container) -> Iterator[TestClient]:
  app.state.container = container
  try:
    with TestClient(app) as test_client:
      yield test_client
  finally:
    del app.state.container


def _submit(client: TestClient, **overrides: object):
  body = {"projectId": "proj-1", "userId": "user-1", "prompt": "Build a todo app"}
  body.update(overrides)
  return client.post("/v1/projects", json=body)


def test_health(client: TestClient) -> None:
  response = client.get("/health")

  assert response.status_code == 200
  assert response.json()["status"] == "ok"
  assert response.headers["x-request-id"]


def test_submit_returns_generating_run(client: TestClient) -> None:
  response = _submit(client)

  assert response.status_code == 202
  body = response.json()
  assert body["stage"] == "generating"
  assert body["projectId"] == "proj-1"
  assert body["activeJobId"] == body["generationId"]

  fetched = client.get("/v1/projects/proj-1/run")
  assert fetched.status_code == 200
  assert fetched.json()["correlationId"] == body["correlationId"]


def test_second_submission_conflicts(client: TestClient) -> None:
  first = _submit(client).json()

  response = _submit(client, prompt="Something else")

  assert response.status_code == 409
  assert response.json()["correlationId"] == first["correlationId"]


def test_idempotency_key_header_returns_same_run(client: TestClient) -> None:
  first = client.post("/v1/projects", json={"projectId": "proj-1", "userId": "user-1", "prompt": "Build a todo app"}, headers={"idempotency-key": "key-1"})
  second = client.post("/v1/projects", json={"projectId": "proj-1", "userId": "user-1", "prompt": "Build a todo app"}, headers={"idempotency-key": "key-1"})

  assert first.status_code == second.status_code == 202
  assert first.json()["correlationId"] == second.json()["correlationId"]


def test_invalid_submission_is_rejected_without_echoing_input(client: TestClient) -> None:
  response = _submit(client, prompt="   ", unexpected=True)

  assert response.status_code == 422
  errors = response.json()["detail"]
  assert all("input" not in error for error in errors)


def test_unknown_project_run_is_404(client: TestClient) -> None:
  response = client.get("/v1/projects/missing/run")

  assert response.status_code == 404
  assert "missing" in response.json()["detail"]


def test_cancel_fails_active_run(client: TestClient) -> None:
  _submit(client)

  response = client.delete("/v1/projects/proj-1/run")

  assert response.status_code == 200
  assert response.json()["stage"] == "failed"
  assert response.json()["lastError"] == "Cancelled by request"


def test_operator_endpoints_require_task_secret(client: TestClient) -> None:
  assert client.get("/admin/queues").status_code == 403
  assert client.get("/admin/queues", headers={"x-appforge-task-secret": "wrong"}).status_code == 403
  assert client.get("/admin/queues", headers={"authorization": "Bearer test-task-secret"}).status_code == 200


def test_operator_can_inspect_pause_and_remove(client: TestClient, container: Container) -> None:
  run = _submit(client).json()

  queues = client.get("/admin/queues", headers=AUTH).json()
  assert {item["name"] for item in queues} == {queue.value for queue in QueueName}

  jobs = client.get("/admin/queues/generation/jobs", params={"correlationId": run["correlationId"]}, headers=AUTH).json()
  assert [job["jobId"] for job in jobs] == [run["generationId"]]

  paused = client.post("/admin/queues/generation/pause", headers=AUTH).json()
  assert paused["paused"] is True
  assert paused["counts"]["waiting"] == 1
  assert container.queues.get(QueueName.GENERATION).is_paused

  assert client.post("/admin/queues/generation/resume", headers=AUTH).json()["paused"] is False

  assert client.delete(f"/admin/queues/generation/jobs/{run['generationId']}", headers=AUTH).status_code == 204
  assert client.get(f"/admin/queues/generation/jobs/{run['generationId']}", headers=AUTH).status_code == 404


def test_unknown_queue_is_404(client: TestClient) -> None:
  assert client.get("/admin/queues/emails", headers=AUTH).status_code == 404


def test_ai_task_is_queued_and_readable(client: TestClient) -> None:
  response = client.post("/v1/ai-tasks", json={"userId": "user-1", "type": "code-review", "input": "const x = 1", "modelConfig": {"provider": "openrouter"}})

  assert response.status_code == 202
  body = response.json()
  assert body["queue"] == "ai-task"
  assert body["duplicate"] is False

  task = client.get(f"/v1/ai-tasks/{body['jobId']}")
  assert task.status_code == 200
  assert task.json()["status"] == "waiting"
