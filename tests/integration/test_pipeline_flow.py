from __future__ import annotations

import pytest

from appforge.pipeline.executors import ExecutorResult
from appforge.pipeline.models import PipelineStage
from appforge.queue.models import QueueName


def _stages(events) -> list[str]:
  return [event.metadata["stage"] for event in events if "stage" in event.metadata]


@pytest.mark.anyio
async def test_todo_app_reaches_ready(build_container, scripted_model, scripted_executor, spec_json) -> None:
  build = scripted_executor([ExecutorResult(success=True, logs=["npm install", "next build"], artifact={"outputDirectory": ".next"})])
  deploy = scripted_executor([ExecutorResult(success=True, url="https://todo-app.preview.example")])
  container = build_container(scripted_model([spec_json()]), build_executor=build, deploy_executor=deploy, notification_webhook_url=None)
  subscription = container.channel.subscribe("proj-1")

  await container.pipeline.start_run("proj-1", "user-1", "Build a todo app")
  await container.workers.drain()

  run = await container.pipeline.get_run("proj-1")
  assert run.stage is PipelineStage.READY
  assert run.deployment_url == "https://todo-app.preview.example"
  assert run.archived

  events = subscription.pending()
  assert _stages(events) == ["generating", "building", "deploying", "ready"]
  assert events[0].type == "system"
  assert events[-1].type == "success"
  assert "thought" in {event.type for event in events}
  assert [event.message for event in events if event.type == "build"][:3] == ["Build started", "npm install", "next build"]

  assert build.payloads[0]["specification"]["projectName"] == "todo-app"
  assert deploy.payloads[0]["artifact"] == {"outputDirectory": ".next"}
  assert deploy.payloads[0]["environment"] == "preview"

  notification = await container.queues.get(QueueName.NOTIFICATION).require_job(f"notif_{run.correlation_id}")
  assert notification.status == "completed"
  assert notification.result == {"delivered": True, "channel": "log"}


@pytest.mark.anyio
async def test_double_malformed_specification_fails_without_build(build_container, scripted_model) -> None:
  model = scripted_model(["Sure! Here is your app:", '{"projectName": "todo-app"}'])
  container = build_container(model)

  run = await container.pipeline.start_run("proj-1", "user-1", "Build a todo app")
  await container.workers.drain()

  finished = await container.pipeline.get_run("proj-1")
  assert finished.stage is PipelineStage.FAILED
  assert finished.last_error.startswith("SpecificationGenerationFailed: ")
  assert "corrective retry" in finished.last_error
  assert len(model.calls) == 2
  generation = await container.queues.get(QueueName.GENERATION).require_job(run.generation_id)
  assert generation.status == "failed"
  assert generation.attempts_made == 1
  assert await container.queues.get(QueueName.BUILD).list_jobs() == []


@pytest.mark.anyio
async def test_missing_dependency_is_healed_and_rebuilt(build_container, scripted_model, scripted_executor, spec_json) -> None:
  build = scripted_executor([
    ExecutorResult(success=False, error="Type error: Cannot find module 'zod' or its corresponding type declarations."),
    ExecutorResult(success=True),
  ])
  deploy = scripted_executor([ExecutorResult(success=True, url="https://todo-app.preview.example")])
  container = build_container(scripted_model([spec_json()]), build_executor=build, deploy_executor=deploy)
  subscription = container.channel.subscribe("proj-1")

  await container.pipeline.start_run("proj-1", "user-1", "Build a todo app")
  await container.workers.drain()

  run = await container.pipeline.get_run("proj-1")
  assert run.stage is PipelineStage.READY
  assert len(run.healing_attempts) == 1
  attempt = run.healing_attempts[0]
  assert attempt.outcome == "succeeded"
  assert attempt.action == "Add missing dependencies: zod"
  assert attempt.build_job_id == run.build_id
  assert run.healing_episode_attempts == 0

  assert build.payloads[1]["repair"]["dependencies"] == ["zod"]
  assert _stages(subscription.pending()) == ["generating", "building", "healing", "building", "deploying", "ready"]


@pytest.mark.anyio
async def test_healing_gives_up_after_three_attempts(build_container, scripted_model, scripted_executor, spec_json) -> None:
  failure = ExecutorResult(success=False, error="Cannot find module 'zod'")
  build = scripted_executor([failure, failure, failure, failure])
  container = build_container(scripted_model([spec_json()]), build_executor=build)
  subscription = container.channel.subscribe("proj-1")

  await container.pipeline.start_run("proj-1", "user-1", "Build a todo app")
  await container.workers.drain()

  run = await container.pipeline.get_run("proj-1")
  assert run.stage is PipelineStage.FAILED
  assert run.last_error.startswith("Build failed after 3 healing attempts")
  assert [attempt.outcome for attempt in run.healing_attempts] == ["failed", "failed", "failed"]
  assert len(build.payloads) == 4

  events = subscription.pending()
  assert "Build failed after 3 healing attempts" in [event.message for event in events if event.type == "healing"]
  assert events[-1].type == "error"


@pytest.mark.anyio
async def test_deploy_failure_fails_run(build_container, scripted_model, scripted_executor, spec_json) -> None:
  build = scripted_executor([ExecutorResult(success=True)])
  deploy = scripted_executor([ExecutorResult(success=False, error="Domain verification failed")])
  container = build_container(scripted_model([spec_json()]), build_executor=build, deploy_executor=deploy)

  await container.pipeline.start_run("proj-1", "user-1", "Build a todo app", environment="production")
  await container.workers.drain()

  run = await container.pipeline.get_run("proj-1")
  assert run.stage is PipelineStage.FAILED
  assert run.last_error == "Domain verification failed"
  assert deploy.payloads[0]["environment"] == "production"


@pytest.mark.anyio
async def test_project_queue_starts_and_deletes_runs(build_container, scripted_model) -> None:
  container = build_container(scripted_model([]))

  await container.producers.add_project_job("proj-1", "user-1", "create", prompt="Build a todo app", correlation_id="corr-1")
  await container.workers.get(QueueName.PROJECT.value).drain()

  run = await container.pipeline.get_run("proj-1")
  assert run.correlation_id == "corr-1"
  assert run.stage is PipelineStage.GENERATING

  await container.producers.add_project_job("proj-1", "user-1", "delete", correlation_id="corr-1")
  await container.workers.get(QueueName.PROJECT.value).drain()

  run = await container.pipeline.get_run("proj-1")
  assert run.stage is PipelineStage.FAILED
  assert run.last_error == "Project deleted"


@pytest.mark.anyio
async def test_build_hand_off_failure_is_retried_through_the_generation_queue(build_container, scripted_model, scripted_executor, spec_json, flaky_store, manual_clock) -> None:
  model = scripted_model([spec_json(), spec_json()])
  build = scripted_executor([ExecutorResult(success=True)])
  deploy = scripted_executor([ExecutorResult(success=True, url="https://todo-app.preview.example")])
  container = build_container(model, build_executor=build, deploy_executor=deploy, store=flaky_store(QueueName.BUILD.value), clock=manual_clock)

  run = await container.pipeline.start_run("proj-1", "user-1", "Build a todo app")
  await container.workers.drain()

  stuck = await container.pipeline.get_run("proj-1")
  assert stuck.stage is PipelineStage.GENERATING
  generation = await container.queues.get(QueueName.GENERATION).require_job(run.generation_id)
  assert generation.status == "delayed"
  assert generation.error_history == ["Hand-off failed: job store unavailable"]
  assert await container.queues.get(QueueName.BUILD).list_jobs() == []

  manual_clock.advance(60)
  await container.workers.drain()

  finished = await container.pipeline.get_run("proj-1")
  assert finished.stage is PipelineStage.READY
  assert len(model.calls) == 2
  builds = await container.queues.get(QueueName.BUILD).list_jobs()
  assert [job.job_id for job in builds] == [f"build_{run.generation_id}"]
  assert (await container.queues.get(QueueName.GENERATION).require_job(run.generation_id)).status == "completed"


@pytest.mark.anyio
async def test_submitted_run_is_resumed_when_the_project_job_retries(build_container, scripted_model, flaky_store, manual_clock) -> None:
  container = build_container(scripted_model([]), store=flaky_store(QueueName.GENERATION.value), clock=manual_clock)
  enqueued = await container.producers.add_project_job("proj-1", "user-1", "create", prompt="Build a todo app", correlation_id="corr-1")
  project_worker = container.workers.get(QueueName.PROJECT.value)

  first = await project_worker.run_once()

  assert first.status == "delayed"
  stuck = await container.pipeline.get_run("proj-1")
  assert stuck.stage is PipelineStage.SUBMITTED
  assert await container.queues.get(QueueName.GENERATION).list_jobs() == []

  manual_clock.advance(60)
  second = await project_worker.run_once()

  assert second.job_id == enqueued.job_id
  assert second.status == "completed"
  run = await container.pipeline.get_run("proj-1")
  assert run.stage is PipelineStage.GENERATING
  assert run.active_job_id == run.generation_id
  generations = await container.queues.get(QueueName.GENERATION).list_jobs()
  assert [job.job_id for job in generations] == [run.generation_id]
