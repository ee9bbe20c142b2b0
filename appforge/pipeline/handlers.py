"""Queue handlers for the pipeline and ancillary queues."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import httpx
from pydantic import ValidationError

from appforge.ai.errors import is_configuration_error, is_provider_error
from appforge.ai.planner import SpecificationPlanner
from appforge.ai.prompting import render_ai_task_system_prompt
from appforge.ai.providers.base import AIModel
from appforge.config import Settings
from appforge.core.errors import RunConflictError, UnrecoverableJobError
from appforge.events.tracker import ProgressTracker
from appforge.pipeline.executors import StageExecutor
from appforge.pipeline.state_machine import PipelineStateMachine
from appforge.queue.models import JobRecord
from appforge.queue.payloads import AITaskJobPayload, BuildJobPayload, DeployJobPayload, GenerationJobPayload, ModelConfig, NotificationJobPayload, PayloadModel, ProjectJobPayload

logger = logging.getLogger(__name__)

PlannerFactory = Callable[[], SpecificationPlanner]
ModelFactory = Callable[[ModelConfig | None], AIModel]


def _parse_payload(job: JobRecord, model: type[PayloadModel]) -> Any:
  try:
    return model.model_validate(job.payload)
  except ValidationError as exc:
    raise UnrecoverableJobError(f"Invalid {job.queue_name} payload: {exc.error_count()} validation error(s)") from exc


class GenerationJobHandler:
  """Run the planning step for a generation job."""

  def __init__(self, planner_factory: PlannerFactory, tracker: ProgressTracker) -> None:
    self._planner_factory = planner_factory
    self._tracker = tracker

  async def process(self, job: JobRecord) -> dict[str, Any]:
    payload: GenerationJobPayload = _parse_payload(job, GenerationJobPayload)

    def on_thought(message: str) -> None:
      self._tracker.emit(payload.project_id, "thought", message, generationId=payload.generation_id)

    try:
      planner = self._planner_factory()
      result = await planner.plan(payload.prompt, payload.assets, on_thought=on_thought)
    except ValueError as exc:
      raise UnrecoverableJobError(str(exc)) from exc
    except UnrecoverableJobError:
      raise
    except Exception as exc:
      if is_configuration_error(exc):
        raise UnrecoverableJobError(f"AI provider misconfigured: {exc}") from exc
      if is_provider_error(exc):
        logger.warning("Provider error during planning generation_id=%s: %s", payload.generation_id, exc)
      raise

    return {"specification": result.specification.to_json_dict(), "attempts": result.attempts, "usage": result.usage}


class BuildJobHandler:
  """Hand a build to the build executor and report its verdict."""

  def __init__(self, executor: StageExecutor, tracker: ProgressTracker) -> None:
    self._executor = executor
    self._tracker = tracker

  async def process(self, job: JobRecord) -> dict[str, Any]:
    payload: BuildJobPayload = _parse_payload(job, BuildJobPayload)
    if payload.repair is not None:
      self._tracker.emit(payload.project_id, "build", f"Rebuilding after repair attempt {payload.repair.attempt}", buildId=payload.build_id)
    else:
      self._tracker.emit(payload.project_id, "build", "Build started", buildId=payload.build_id)

    result = await self._executor.execute(job.payload)
    for line in result.logs:
      self._tracker.emit(payload.project_id, "build", line, buildId=payload.build_id)
    if result.success:
      self._tracker.emit(payload.project_id, "build", "Build succeeded", buildId=payload.build_id)
    else:
      self._tracker.emit(payload.project_id, "build", f"Build failed: {result.error or 'unknown error'}", buildId=payload.build_id)
    return result.as_dict()


class DeployJobHandler:
  """Hand a deployment to the deploy executor and report its verdict."""

  def __init__(self, executor: StageExecutor, tracker: ProgressTracker) -> None:
    self._executor = executor
    self._tracker = tracker

  async def process(self, job: JobRecord) -> dict[str, Any]:
    payload: DeployJobPayload = _parse_payload(job, DeployJobPayload)
    self._tracker.emit(payload.project_id, "deployment", f"Deploying to {payload.environment}", deploymentId=payload.deployment_id)
    result = await self._executor.execute(job.payload)
    if result.success:
      self._tracker.emit(payload.project_id, "deployment", f"Deployed to {result.url}" if result.url else "Deployment finished", deploymentId=payload.deployment_id, url=result.url)
    else:
      self._tracker.emit(payload.project_id, "deployment", f"Deployment failed: {result.error or 'unknown error'}", deploymentId=payload.deployment_id)
    return result.as_dict()


class AITaskJobHandler:
  """Run a standalone AI task such as a code review."""

  def __init__(self, model_factory: ModelFactory) -> None:
    self._model_factory = model_factory

  async def process(self, job: JobRecord) -> dict[str, Any]:
    payload: AITaskJobPayload = _parse_payload(job, AITaskJobPayload)
    try:
      system = render_ai_task_system_prompt(payload.type, payload.context)
      model = self._model_factory(payload.llm)
      response = await model.generate(payload.input, system=system)
    except ValueError as exc:
      raise UnrecoverableJobError(str(exc)) from exc
    except Exception as exc:
      if is_configuration_error(exc):
        raise UnrecoverableJobError(f"AI provider misconfigured: {exc}") from exc
      raise
    return {"output": response.content, "usage": response.usage}


class NotificationJobHandler:
  """Deliver notifications through the configured webhook, or log them."""

  def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._settings = settings
    self._transport = transport

  async def process(self, job: JobRecord) -> dict[str, Any]:
    payload: NotificationJobPayload = _parse_payload(job, NotificationJobPayload)
    url = payload.channel if payload.type == "webhook" and payload.channel else self._settings.notification_webhook_url
    if not url:
      logger.info("Notification user_id=%s type=%s subject=%s", payload.user_id, payload.type, payload.subject)
      return {"delivered": True, "channel": "log"}

    async with httpx.AsyncClient(transport=self._transport, trust_env=False, timeout=30.0) as client:
      response = await client.post(url, json=payload.to_payload())
      response.raise_for_status()
    logger.info("Notification delivered user_id=%s type=%s status=%s", payload.user_id, payload.type, response.status_code)
    return {"delivered": True, "channel": "webhook", "statusCode": response.status_code}


class ProjectJobHandler:
  """Apply project lifecycle actions to the pipeline."""

  def __init__(self, machine: PipelineStateMachine) -> None:
    self._machine = machine

  async def process(self, job: JobRecord) -> dict[str, Any]:
    payload: ProjectJobPayload = _parse_payload(job, ProjectJobPayload)
    if payload.action == "create":
      if not payload.prompt:
        raise UnrecoverableJobError("Project creation requires a prompt")
      try:
        run = await self._machine.start_run(
          payload.project_id,
          payload.user_id,
          payload.prompt,
          asset_keys=payload.asset_keys,
          environment=payload.environment,
          correlation_id=payload.correlation_id,
          generation_id=payload.generation_id,
        )
      except (RunConflictError, ValueError) as exc:
        raise UnrecoverableJobError(str(exc)) from exc
      return {"correlationId": run.correlation_id, "stage": run.stage.value}

    run = await self._machine.cancel_run(payload.project_id)
    return {"cancelled": run.correlation_id if run is not None else None}
