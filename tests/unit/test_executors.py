from __future__ import annotations

import json
from dataclasses import replace

import httpx
import pytest

from appforge.core.errors import UnrecoverableJobError
from appforge.pipeline.executors import HttpStageExecutor
from appforge.pipeline.handlers import NotificationJobHandler
from appforge.queue.models import BackoffPolicy, JobRecord


@pytest.mark.anyio
async def test_executor_posts_payload_with_bearer_secret(settings) -> None:
  seen: list[httpx.Request] = []

  def handler(request: httpx.Request) -> httpx.Response:
    seen.append(request)
    return httpx.Response(200, json={"success": True, "url": "https://todo-app.preview.example", "logs": ["Deployed"]})

  executor = HttpStageExecutor("https://executor.internal/deploy", settings, stage="deploy", transport=httpx.MockTransport(handler))

  result = await executor.execute({"projectId": "proj-1"})

  assert result.success
  assert result.url == "https://todo-app.preview.example"
  assert seen[0].headers["authorization"] == "Bearer test-task-secret"
  assert json.loads(seen[0].content) == {"projectId": "proj-1"}


@pytest.mark.anyio
async def test_executor_reports_build_failure_without_raising(settings) -> None:
  transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"success": False, "error": "Cannot find module 'zod'"}))

  result = await HttpStageExecutor("https://executor.internal/build", settings, stage="build", transport=transport).execute({})

  assert not result.success
  assert result.as_dict()["error"] == "Cannot find module 'zod'"


@pytest.mark.anyio
async def test_missing_executor_url_is_unrecoverable(settings) -> None:
  with pytest.raises(UnrecoverableJobError, match="No build executor configured"):
    await HttpStageExecutor(None, settings, stage="build").execute({})


@pytest.mark.anyio
async def test_invalid_executor_body_is_unrecoverable(settings) -> None:
  transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"<html>oops</html>"))

  with pytest.raises(UnrecoverableJobError):
    await HttpStageExecutor("https://executor.internal/build", settings, stage="build", transport=transport).execute({})


@pytest.mark.anyio
async def test_executor_server_errors_propagate_for_retry(settings) -> None:
  transport = httpx.MockTransport(lambda request: httpx.Response(503, text="busy"))

  with pytest.raises(httpx.HTTPStatusError):
    await HttpStageExecutor("https://executor.internal/build", settings, stage="build", transport=transport).execute({})


def _notification_job(**payload: object) -> JobRecord:
  body = {"notificationId": "notif_corr-1", "userId": "user-1", "subject": "Your app is ready", "body": "todo-app is live"}
  body.update(payload)
  return JobRecord(job_id="notif_corr-1", queue_name="notification", name="notify", payload=body, priority=5, max_attempts=3, backoff=BackoffPolicy(), created_at=0.0, available_at=0.0)


@pytest.mark.anyio
async def test_webhook_notification_posts_to_channel(settings) -> None:
  seen: list[httpx.Request] = []

  def handler(request: httpx.Request) -> httpx.Response:
    seen.append(request)
    return httpx.Response(204)

  result = await NotificationJobHandler(settings, transport=httpx.MockTransport(handler)).process(_notification_job(type="webhook", channel="https://hooks.example/appforge"))

  assert result == {"delivered": True, "channel": "webhook", "statusCode": 204}
  assert str(seen[0].url) == "https://hooks.example/appforge"
  assert json.loads(seen[0].content)["subject"] == "Your app is ready"


@pytest.mark.anyio
async def test_notification_without_webhook_is_logged(settings) -> None:
  result = await NotificationJobHandler(replace(settings, notification_webhook_url=None)).process(_notification_job())

  assert result == {"delivered": True, "channel": "log"}


@pytest.mark.anyio
async def test_malformed_notification_payload_is_unrecoverable(settings) -> None:
  job = _notification_job()
  del job.payload["subject"]

  with pytest.raises(UnrecoverableJobError):
    await NotificationJobHandler(settings).process(job)
