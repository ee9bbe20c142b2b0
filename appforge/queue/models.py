"""Domain models for queued pipeline jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

JobStatus = Literal["waiting", "active", "completed", "failed", "delayed"]
JOB_STATUSES: tuple[JobStatus, ...] = ("waiting", "active", "completed", "failed", "delayed")
BackoffType = Literal["fixed", "exponential"]
EnqueueOutcome = Literal["accepted", "duplicate"]
RemoveOutcome = Literal["removed", "active", "missing"]


class QueueName(str, Enum):
  """Named queues served by the pipeline workers."""

  PROJECT = "project"
  GENERATION = "generation"
  BUILD = "build"
  DEPLOY = "deploy"
  AI_TASK = "ai-task"
  NOTIFICATION = "notification"


@dataclass(frozen=True)
class BackoffPolicy:
  """Delay schedule applied between failed attempts of a job."""

  type: BackoffType = "exponential"
  delay_seconds: float = 1.0

  def delay_for(self, attempts_made: int) -> float:
    """Return the delay before the next attempt after `attempts_made` failures."""
    if self.type == "fixed":
      return self.delay_seconds
    return self.delay_seconds * (2 ** max(attempts_made - 1, 0))

  def as_dict(self) -> dict[str, Any]:
    return {"type": self.type, "delay_seconds": self.delay_seconds}

  @classmethod
  def from_dict(cls, raw: dict[str, Any] | None) -> BackoffPolicy:
    if not raw:
      return cls()
    backoff_type = raw.get("type", "exponential")
    if backoff_type not in ("fixed", "exponential"):
      raise ValueError(f"Unsupported backoff type: {backoff_type}")
    return cls(type=backoff_type, delay_seconds=float(raw.get("delay_seconds", 1.0)))


@dataclass(frozen=True)
class RateLimit:
  """Upper bound on jobs started per time window."""

  max_jobs: int
  window_seconds: float


@dataclass(frozen=True)
class QueueConfig:
  """Defaults and limits applied to every job of a named queue."""

  name: str
  attempts: int
  backoff: BackoffPolicy
  timeout_seconds: float | None = None
  concurrency: int = 1
  completed_retention_seconds: float = 3600.0
  failed_retention_seconds: float = 86400.0
  rate_limit: RateLimit | None = None


@dataclass
class JobRecord:
  """Stored representation of a queued job."""

  job_id: str
  queue_name: str
  name: str
  payload: dict[str, Any]
  priority: int
  max_attempts: int
  backoff: BackoffPolicy
  created_at: float
  available_at: float
  status: JobStatus = "waiting"
  attempts_made: int = 0
  correlation_id: str | None = None
  timeout_seconds: float | None = None
  started_at: float | None = None
  finished_at: float | None = None
  failed_reason: str | None = None
  result: dict[str, Any] | None = None
  error_history: list[str] = field(default_factory=list)

  @property
  def is_terminal(self) -> bool:
    return self.status in ("completed", "failed")


@dataclass(frozen=True)
class EnqueueResult:
  """Outcome of a submission; duplicates never create a second job."""

  job_id: str
  queue_name: str
  outcome: EnqueueOutcome

  @property
  def accepted(self) -> bool:
    return self.outcome == "accepted"
