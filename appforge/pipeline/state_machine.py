"""Pipeline run state machine driven by job completion and failure callbacks."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from appforge.core.errors import InvalidTransitionError, JobActiveError, JobNotFoundError, RunConflictError, RunNotFoundError
from appforge.events.models import EventType
from appforge.events.tracker import ProgressTracker
from appforge.pipeline.healing import SelfHealingController
from appforge.pipeline.models import PipelineRun, PipelineStage
from appforge.pipeline.runs_repo import RunsRepository
from appforge.queue.models import JobRecord, QueueName
from appforge.queue.producers import JobProducers
from appforge.queue.registry import QueueRegistry
from appforge.utils.ids import generate_correlation_id, generate_generation_id, utc_now_iso

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[PipelineStage, frozenset[PipelineStage]] = {
  PipelineStage.SUBMITTED: frozenset({PipelineStage.GENERATING, PipelineStage.FAILED}),
  PipelineStage.GENERATING: frozenset({PipelineStage.BUILDING, PipelineStage.FAILED}),
  PipelineStage.BUILDING: frozenset({PipelineStage.HEALING, PipelineStage.DEPLOYING, PipelineStage.FAILED}),
  PipelineStage.HEALING: frozenset({PipelineStage.BUILDING, PipelineStage.FAILED}),
  PipelineStage.DEPLOYING: frozenset({PipelineStage.READY, PipelineStage.FAILED}),
  PipelineStage.READY: frozenset(),
  PipelineStage.FAILED: frozenset(),
}

_STAGE_QUEUES: dict[PipelineStage, QueueName] = {
  PipelineStage.GENERATING: QueueName.GENERATION,
  PipelineStage.BUILDING: QueueName.BUILD,
  PipelineStage.DEPLOYING: QueueName.DEPLOY,
}

_LISTENED_QUEUES = frozenset(queue.value for queue in _STAGE_QUEUES.values())


class PipelineStateMachine:
  """Owns every pipeline run and applies stage transitions.

  Callbacks are applied only when the run's correlation id, current stage and
  active job id all match the job that reported; anything else is a stale or
  duplicate delivery and is ignored. Terminal runs accept nothing. Mutations
  of one run are serialized behind a per-correlation lock, and saves are
  version-checked so a second process holding the same run loses with
  `StaleRunError`. Follow-up job ids derive from the reporting job, so a
  retried hand-off re-submits the same job instead of a new one.
  """

  def __init__(self, runs: RunsRepository, producers: JobProducers, queues: QueueRegistry, healing: SelfHealingController, tracker: ProgressTracker, *, default_environment: str = "preview", max_prompt_chars: int = 10000) -> None:
    self._runs = runs
    self._producers = producers
    self._queues = queues
    self._healing = healing
    self._tracker = tracker
    self._default_environment = default_environment
    self._max_prompt_chars = max_prompt_chars
    self._locks: dict[str, asyncio.Lock] = {}

  async def start_run(
    self,
    project_id: str,
    user_id: str,
    prompt: str,
    *,
    asset_keys: list[str] | None = None,
    environment: str | None = None,
    idempotency_key: str | None = None,
    correlation_id: str | None = None,
    generation_id: str | None = None,
  ) -> PipelineRun:
    """Create a run and enqueue its generation job."""
    if not prompt or not prompt.strip():
      raise ValueError("Prompt must not be empty.")
    if len(prompt) > self._max_prompt_chars:
      raise ValueError(f"Prompt exceeds {self._max_prompt_chars} characters.")

    if correlation_id is not None:
      existing = await self._runs.get(correlation_id)
      if existing is not None:
        return await self._resume_if_submitted(existing)

    active = await self._runs.get_active_for_project(project_id)
    if active is not None:
      if idempotency_key and active.idempotency_key == idempotency_key:
        return await self._resume_if_submitted(active)
      raise RunConflictError(project_id, active.correlation_id)

    now = utc_now_iso()
    run = PipelineRun(
      correlation_id=correlation_id or generate_correlation_id(),
      project_id=project_id,
      user_id=user_id,
      prompt=prompt,
      stage=PipelineStage.SUBMITTED,
      started_at=now,
      updated_at=now,
      asset_keys=list(asset_keys or []),
      environment=environment or self._default_environment,
      idempotency_key=idempotency_key,
      generation_id=generation_id or generate_generation_id(),
    )
    if not await self._runs.create(run):
      existing = await self._runs.get(run.correlation_id)
      if existing is None:
        raise RunConflictError(project_id, run.correlation_id)
      return await self._resume_if_submitted(existing)

    self._tracker.emit(project_id, "system", "Pipeline run submitted", correlationId=run.correlation_id)
    run = await self._resume_if_submitted(run)
    logger.info("Pipeline run started project_id=%s correlation_id=%s", project_id, run.correlation_id)
    return run

  async def get_run(self, project_id: str) -> PipelineRun:
    run = await self._runs.get_latest_for_project(project_id)
    if run is None:
      raise RunNotFoundError(project_id)
    return run

  async def cancel_run(self, project_id: str, reason: str = "Project deleted") -> PipelineRun | None:
    """Fail the active run of a project and drop its queued job."""
    active = await self._runs.get_active_for_project(project_id)
    if active is None:
      return None
    async with self._lock_for(active.correlation_id):
      run = await self._runs.get(active.correlation_id)
      if run is None or run.is_terminal:
        return run
      queue_name = _STAGE_QUEUES.get(run.stage)
      if queue_name is not None and run.active_job_id:
        try:
          await self._queues.get(queue_name).remove_job(run.active_job_id)
        except (JobActiveError, JobNotFoundError) as exc:
          logger.info("Active job left in place on cancel correlation_id=%s: %s", run.correlation_id, exc)
      await self._fail(run, reason)
    return run

  async def generation_succeeded(self, job: JobRecord) -> None:
    async with self._lock_for(job.correlation_id):
      run = await self._load_matching(job, PipelineStage.GENERATING)
      if run is None:
        return
      specification = (job.result or {}).get("specification")
      if not isinstance(specification, dict):
        await self._fail(run, "Generation job completed without a specification")
        return
      run.specification = specification
      result = await self._producers.add_build_job(run.project_id, run.user_id, run.correlation_id, generation_id=run.generation_id, specification=specification, build_id=f"build_{job.job_id}")
      run.build_id = result.job_id
      self._transition(run, PipelineStage.BUILDING, f"Specification ready for {specification.get('projectName', run.project_id)}; build queued", active_job_id=result.job_id)
      await self._runs.save(run)

  async def generation_failed(self, job: JobRecord, cause: str) -> None:
    async with self._lock_for(job.correlation_id):
      run = await self._load_matching(job, PipelineStage.GENERATING)
      if run is None:
        return
      await self._fail(run, cause)

  async def build_succeeded(self, job: JobRecord, artifact: dict[str, Any] | None = None) -> None:
    async with self._lock_for(job.correlation_id):
      run = await self._load_matching(job, PipelineStage.BUILDING)
      if run is None:
        return
      self._close_pending_attempt(run, "succeeded")
      run.healing_episode_attempts = 0
      environment = run.environment if run.environment in ("preview", "staging", "production") else "preview"
      result = await self._producers.add_deploy_job(run.project_id, run.user_id, job.job_id, run.correlation_id, environment=environment, artifact=artifact, deployment_id=f"deploy_{job.job_id}")  # type: ignore[arg-type]
      self._transition(run, PipelineStage.DEPLOYING, f"Build succeeded; deploying to {environment}", active_job_id=result.job_id)
      await self._runs.save(run)

  async def build_failed(self, job: JobRecord, cause: str) -> None:
    """Enter healing and either re-submit a repaired build or fail the run.

    Nothing is saved until the rebuild is queued, so a failed hand-off leaves the
    run in `building` and the retried callback starts the healing step over.
    """
    async with self._lock_for(job.correlation_id):
      run = await self._load_matching(job, PipelineStage.BUILDING)
      if run is None:
        return
      self._close_pending_attempt(run, "failed")
      run.last_error = cause
      self._transition(run, PipelineStage.HEALING, f"Build failed: {cause}", event_type="build", active_job_id=None)

      decision = await self._healing.heal(run, cause)
      if decision.outcome == "exhausted" or decision.repair is None:
        await self._fail(run, f"Build failed after {self._healing.max_attempts} healing attempts: {cause}")
        return

      rebuild_id = f"build_{run.generation_id}_r{len(run.healing_attempts)}"
      result = await self._producers.add_build_job(run.project_id, run.user_id, run.correlation_id, generation_id=run.generation_id, specification=run.specification, repair=decision.repair, build_id=rebuild_id)
      run.build_id = result.job_id
      if run.healing_attempts:
        run.healing_attempts[-1].build_job_id = result.job_id
      self._transition(run, PipelineStage.BUILDING, f"Rebuilding with repair: {decision.repair.summary}", active_job_id=result.job_id)
      await self._runs.save(run)

  async def deploy_succeeded(self, job: JobRecord, url: str | None) -> None:
    async with self._lock_for(job.correlation_id):
      run = await self._load_matching(job, PipelineStage.DEPLOYING)
      if run is None:
        return
      run.deployment_url = url
      self._transition(run, PipelineStage.READY, f"Deployment ready at {url}" if url else "Deployment ready", event_type="success", active_job_id=None)
      await self._finish(run)

  async def deploy_failed(self, job: JobRecord, cause: str) -> None:
    async with self._lock_for(job.correlation_id):
      run = await self._load_matching(job, PipelineStage.DEPLOYING)
      if run is None:
        return
      await self._fail(run, cause)

  async def _resume_if_submitted(self, run: PipelineRun) -> PipelineRun:
    """Queue the generation job of a run still in `submitted` and move it on."""
    if run.stage is not PipelineStage.SUBMITTED:
      return run
    async with self._lock_for(run.correlation_id):
      current = await self._runs.get(run.correlation_id)
      if current is None or current.stage is not PipelineStage.SUBMITTED:
        return current or run
      job_id = await self._producers.add_full_app_generation_job(current.project_id, current.user_id, current.prompt, current.asset_keys, correlation_id=current.correlation_id, generation_id=current.generation_id)
      self._transition(current, PipelineStage.GENERATING, "Generating technical specification", active_job_id=job_id)
      await self._runs.save(current)
    return current

  def _lock_for(self, correlation_id: str | None) -> asyncio.Lock:
    key = correlation_id or ""
    lock = self._locks.get(key)
    if lock is None:
      lock = asyncio.Lock()
      self._locks[key] = lock
    return lock

  async def _load_matching(self, job: JobRecord, stage: PipelineStage) -> PipelineRun | None:
    if not job.correlation_id:
      logger.warning("Ignoring job without correlation id queue=%s job_id=%s", job.queue_name, job.job_id)
      return None
    run = await self._runs.get(job.correlation_id)
    if run is None:
      logger.warning("Ignoring job for unknown run correlation_id=%s job_id=%s", job.correlation_id, job.job_id)
      return None
    if run.is_terminal or run.stage != stage or run.active_job_id != job.job_id:
      logger.info("Ignoring stale callback correlation_id=%s job_id=%s stage=%s active_job_id=%s", run.correlation_id, job.job_id, run.stage.value, run.active_job_id)
      return None
    return run

  def _transition(self, run: PipelineRun, stage: PipelineStage, message: str, *, event_type: EventType = "progress", active_job_id: str | None) -> None:
    if stage not in _TRANSITIONS[run.stage]:
      raise InvalidTransitionError(f"Run {run.correlation_id} cannot move from {run.stage.value} to {stage.value}")
    previous = run.stage
    run.stage = stage
    run.active_job_id = active_job_id
    run.attempts_at_stage = run.attempts_at_stage + 1 if previous == stage else 0
    run.updated_at = utc_now_iso()
    logger.info("Run transition correlation_id=%s %s -> %s", run.correlation_id, previous.value, stage.value)
    self._tracker.emit(run.project_id, event_type, message, stage=stage.value, previousStage=previous.value, correlationId=run.correlation_id)

  def _close_pending_attempt(self, run: PipelineRun, outcome: str) -> None:
    if run.healing_attempts and run.healing_attempts[-1].outcome == "pending":
      run.healing_attempts[-1].outcome = outcome  # type: ignore[assignment]

  async def _fail(self, run: PipelineRun, cause: str) -> None:
    run.last_error = cause
    self._transition(run, PipelineStage.FAILED, cause, event_type="error", active_job_id=None)
    await self._finish(run)

  async def _finish(self, run: PipelineRun) -> None:
    """Notify the run's owner, then archive the terminal run."""
    run.finished_at = utc_now_iso()
    run.archived = True
    if run.stage == PipelineStage.READY:
      subject = "Your application is live"
      body = f"Project {run.project_id} was deployed successfully."
    else:
      subject = "Your application could not be generated"
      body = f"Project {run.project_id} failed: {run.last_error}"
    await self._producers.add_notification_job(
      run.user_id,
      subject,
      body,
      action_url=run.deployment_url,
      data={"projectId": run.project_id, "stage": run.stage.value},
      correlation_id=run.correlation_id,
      notification_id=f"notif_{run.correlation_id}",
    )
    await self._runs.save(run)
    self._locks.pop(run.correlation_id, None)
    logger.info("Run finished correlation_id=%s stage=%s", run.correlation_id, run.stage.value)


class PipelineJobListener:
  """Hand pipeline job outcomes to the state machine.

  Completions arrive before the queue records them; an error raised here is
  retried through the job's backoff.
  """

  def __init__(self, machine: PipelineStateMachine, tracker: ProgressTracker) -> None:
    self._machine = machine
    self._tracker = tracker

  async def job_completed(self, job: JobRecord) -> None:
    result = job.result or {}
    if job.queue_name == QueueName.GENERATION.value:
      await self._machine.generation_succeeded(job)
    elif job.queue_name == QueueName.BUILD.value:
      if result.get("success", True):
        await self._machine.build_succeeded(job, result.get("artifact"))
      else:
        await self._machine.build_failed(job, str(result.get("error") or "Build failed"))
    elif job.queue_name == QueueName.DEPLOY.value:
      if result.get("success", True):
        await self._machine.deploy_succeeded(job, result.get("url"))
      else:
        await self._machine.deploy_failed(job, str(result.get("error") or "Deployment failed"))

  async def job_failed(self, job: JobRecord, *, final: bool) -> None:
    if job.queue_name not in _LISTENED_QUEUES:
      return
    cause = job.failed_reason or "Job failed"
    if not final:
      project_id = job.payload.get("projectId")
      if project_id:
        self._tracker.emit(project_id, "system", f"Retrying {job.name} after failure ({job.attempts_made}/{job.max_attempts}): {cause}", jobId=job.job_id)
      return
    if job.queue_name == QueueName.GENERATION.value:
      await self._machine.generation_failed(job, cause)
    elif job.queue_name == QueueName.BUILD.value:
      await self._machine.build_failed(job, cause)
    else:
      await self._machine.deploy_failed(job, cause)

