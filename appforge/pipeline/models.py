"""Domain models for pipeline runs."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Literal

HealingOutcome = Literal["pending", "succeeded", "failed", "no_action"]


class PipelineStage(str, Enum):
  """Stages of one generation-to-deployment run."""

  SUBMITTED = "submitted"
  GENERATING = "generating"
  BUILDING = "building"
  HEALING = "healing"
  DEPLOYING = "deploying"
  READY = "ready"
  FAILED = "failed"

  @property
  def is_terminal(self) -> bool:
    return self in TERMINAL_STAGES


TERMINAL_STAGES = frozenset({PipelineStage.READY, PipelineStage.FAILED})


@dataclass
class HealingAttempt:
  """One repair attempt within a build-failure episode."""

  project_id: str
  correlation_id: str
  attempt_number: int
  cause: str
  action: str | None
  outcome: HealingOutcome
  build_job_id: str | None = None
  created_at: str | None = None

  def as_dict(self) -> dict[str, Any]:
    return asdict(self)

  @classmethod
  def from_dict(cls, raw: dict[str, Any]) -> HealingAttempt:
    return cls(**raw)


@dataclass
class PipelineRun:
  """State of one pipeline run; mutated only by the state machine."""

  correlation_id: str
  project_id: str
  user_id: str
  prompt: str
  stage: PipelineStage
  started_at: str
  updated_at: str
  asset_keys: list[str] = field(default_factory=list)
  environment: str = "preview"
  idempotency_key: str | None = None
  generation_id: str | None = None
  build_id: str | None = None
  active_job_id: str | None = None
  attempts_at_stage: int = 0
  healing_episode_attempts: int = 0
  healing_attempts: list[HealingAttempt] = field(default_factory=list)
  specification: dict[str, Any] | None = None
  last_error: str | None = None
  deployment_url: str | None = None
  finished_at: str | None = None
  archived: bool = False
  version: int = 0

  @property
  def is_terminal(self) -> bool:
    return self.stage.is_terminal
