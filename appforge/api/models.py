from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator
from pydantic.alias_generators import to_camel

from appforge.pipeline.models import HealingAttempt, PipelineRun
from appforge.queue.models import JobRecord, JobStatus
from appforge.queue.payloads import AITaskType, DeployEnvironment, ModelConfig


class ApiModel(BaseModel):
  """Request/response base using camelCase on the wire."""

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class CreateProjectRequest(ApiModel):
  """Submit a prompt to generate, build and deploy an application."""

  project_id: StrictStr = Field(min_length=1, max_length=128, description="Caller-owned project identifier.")
  user_id: StrictStr = Field(min_length=1, max_length=128)
  prompt: StrictStr = Field(min_length=1, description="Natural-language description of the application.")
  asset_keys: list[StrictStr] = Field(default_factory=list, max_length=20, description="Storage keys of uploaded reference assets.")
  environment: DeployEnvironment | None = None
  idempotency_key: StrictStr | None = Field(default=None, min_length=1, max_length=128)

  @field_validator("prompt")
  @classmethod
  def _prompt_not_blank(cls, value: str) -> str:
    if not value.strip():
      raise ValueError("prompt must not be blank")
    return value


class HealingAttemptResponse(ApiModel):
  attempt_number: int
  cause: str
  action: str | None
  outcome: str
  build_job_id: str | None = None
  created_at: str | None = None

  @classmethod
  def from_attempt(cls, attempt: HealingAttempt) -> HealingAttemptResponse:
    return cls(attempt_number=attempt.attempt_number, cause=attempt.cause, action=attempt.action, outcome=attempt.outcome, build_job_id=attempt.build_job_id, created_at=attempt.created_at)


class RunResponse(ApiModel):
  """Current state of a project's pipeline run."""

  correlation_id: str
  project_id: str
  stage: str
  environment: str
  started_at: str
  updated_at: str
  finished_at: str | None = None
  generation_id: str | None = None
  build_id: str | None = None
  active_job_id: str | None = None
  project_name: str | None = None
  deployment_url: str | None = None
  last_error: str | None = None
  healing_attempts: list[HealingAttemptResponse] = Field(default_factory=list)

  @classmethod
  def from_run(cls, run: PipelineRun) -> RunResponse:
    return cls(
      correlation_id=run.correlation_id,
      project_id=run.project_id,
      stage=run.stage.value,
      environment=run.environment,
      started_at=run.started_at,
      updated_at=run.updated_at,
      finished_at=run.finished_at,
      generation_id=run.generation_id,
      build_id=run.build_id,
      active_job_id=run.active_job_id,
      project_name=(run.specification or {}).get("projectName"),
      deployment_url=run.deployment_url,
      last_error=run.last_error,
      healing_attempts=[HealingAttemptResponse.from_attempt(attempt) for attempt in run.healing_attempts],
    )


class JobResponse(ApiModel):
  job_id: str
  queue: str
  name: str
  status: JobStatus
  priority: int
  attempts_made: int
  max_attempts: int
  correlation_id: str | None = None
  created_at: float
  finished_at: float | None = None
  failed_reason: str | None = None
  error_history: list[str] = Field(default_factory=list)
  result: dict[str, Any] | None = None

  @classmethod
  def from_record(cls, job: JobRecord) -> JobResponse:
    return cls(
      job_id=job.job_id,
      queue=job.queue_name,
      name=job.name,
      status=job.status,
      priority=job.priority,
      attempts_made=job.attempts_made,
      max_attempts=job.max_attempts,
      correlation_id=job.correlation_id,
      created_at=job.created_at,
      finished_at=job.finished_at,
      failed_reason=job.failed_reason,
      error_history=list(job.error_history),
      result=job.result,
    )


class QueueStatusResponse(ApiModel):
  name: str
  paused: bool
  concurrency: int
  counts: dict[str, int]


class CleanQueueRequest(ApiModel):
  status: Literal["completed", "failed", "waiting", "delayed"] = "completed"
  grace_seconds: float = Field(default=3600.0, ge=0)
  limit: int = Field(default=1000, ge=1, le=10000)


class CleanQueueResponse(ApiModel):
  removed: list[str]


class CreateAITaskRequest(ApiModel):
  """Submit a standalone AI task such as a code review."""

  user_id: StrictStr = Field(min_length=1, max_length=128)
  type: AITaskType
  input: StrictStr = Field(min_length=1)
  project_id: StrictStr | None = None
  context: dict[str, Any] = Field(default_factory=dict)
  llm: ModelConfig | None = Field(default=None, alias="modelConfig")


class EnqueueResponse(ApiModel):
  job_id: str
  queue: str
  duplicate: bool
