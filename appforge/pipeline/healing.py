"""Bounded self-healing for failed builds."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Literal, Protocol

from pydantic import BaseModel, Field, ValidationError

from appforge.ai.prompting import render_repair_prompt
from appforge.ai.providers.base import AIModel
from appforge.events.tracker import ProgressTracker
from appforge.pipeline.models import HealingAttempt, PipelineRun
from appforge.queue.payloads import RepairInstruction
from appforge.utils.ids import utc_now_iso

logger = logging.getLogger(__name__)


class RepairAction(BaseModel):
  """Corrective action proposed for a build failure."""

  summary: str = Field(min_length=1)
  instructions: list[str] = Field(default_factory=list)
  dependencies: list[str] = Field(default_factory=list)

  @property
  def is_actionable(self) -> bool:
    return bool(self.instructions or self.dependencies)


@dataclass(frozen=True)
class RepairContext:
  """What an advisor knows when proposing a fix."""

  project_id: str
  project_name: str
  cause: str
  attempt_number: int
  max_attempts: int
  previous_errors: tuple[str, ...] = ()
  specification: dict | None = None


class RepairAdvisor(Protocol):
  """Chooses the corrective action for a failed build."""

  async def propose(self, context: RepairContext) -> RepairAction | None:
    """Return a repair action, or None when no fix can be determined."""


_MISSING_MODULE_PATTERNS = (
  re.compile(r"Cannot find module ['\"]([^'\"]+)['\"]"),
  re.compile(r"Module not found: (?:Error: )?Can't resolve ['\"]([^'\"]+)['\"]"),
  re.compile(r"missing dependency[:\s]+['\"]?([@\w./-]+)['\"]?", re.IGNORECASE),
)


def _package_name(specifier: str) -> str | None:
  """Reduce an import specifier to its npm package name; relative imports have none."""
  if specifier.startswith((".", "/", "@/", "~/")):
    return None
  parts = specifier.split("/")
  if specifier.startswith("@") and len(parts) >= 2:
    return "/".join(parts[:2])
  return parts[0]


class DependencyRepairAdvisor:
  """Recognize unresolved package imports and propose installing them."""

  async def propose(self, context: RepairContext) -> RepairAction | None:
    packages: list[str] = []
    for pattern in _MISSING_MODULE_PATTERNS:
      for match in pattern.finditer(context.cause):
        name = _package_name(match.group(1))
        if name and name not in packages:
          packages.append(name)
    if not packages:
      return None
    return RepairAction(
      summary=f"Add missing dependencies: {', '.join(packages)}",
      instructions=[f"Add '{name}' to package.json dependencies and reinstall." for name in packages],
      dependencies=packages,
    )


class ModelRepairAdvisor:
  """Ask the model for a corrective action based on the build error."""

  def __init__(self, model_factory: Callable[[], AIModel]) -> None:
    self._model_factory = model_factory

  async def propose(self, context: RepairContext) -> RepairAction | None:
    prompt = render_repair_prompt(project_name=context.project_name, error=context.cause, attempt=context.attempt_number, max_attempts=context.max_attempts, previous_errors=context.previous_errors)
    response = await self._model_factory().generate(prompt)
    try:
      action = RepairAction.model_validate_json(response.content.strip())
    except ValidationError as exc:
      logger.warning("Repair advisor returned unusable output project_id=%s: %s", context.project_id, exc.error_count())
      return None
    return action if action.is_actionable else None


class ChainedRepairAdvisor:
  """Consult advisors in order and use the first actionable proposal."""

  def __init__(self, advisors: Sequence[RepairAdvisor]) -> None:
    self._advisors = list(advisors)

  async def propose(self, context: RepairContext) -> RepairAction | None:
    for advisor in self._advisors:
      action = await advisor.propose(context)
      if action is not None and action.is_actionable:
        return action
    return None


@dataclass
class HealingDecision:
  """Result of one healing pass over a build failure."""

  outcome: Literal["rebuild", "exhausted"]
  repair: RepairInstruction | None = None
  attempts: list[HealingAttempt] = field(default_factory=list)


class SelfHealingController:
  """Spend at most `max_attempts` repair attempts per build-failure episode.

  Attempts that yield no action are recorded and consume budget; the first
  actionable proposal ends the pass with a rebuild. A re-submitted build that
  fails again starts another pass on the same episode counter.
  """

  def __init__(self, advisor: RepairAdvisor, *, max_attempts: int = 3, tracker: ProgressTracker | None = None) -> None:
    if max_attempts <= 0:
      raise ValueError("max_attempts must be a positive integer")
    self._advisor = advisor
    self._max_attempts = max_attempts
    self._tracker = tracker or ProgressTracker()

  @property
  def max_attempts(self) -> int:
    return self._max_attempts

  async def heal(self, run: PipelineRun, cause: str) -> HealingDecision:
    """Propose repairs for `run`, mutating its healing counters and history."""
    recorded: list[HealingAttempt] = []
    previous_errors = [attempt.cause for attempt in run.healing_attempts[-self._max_attempts :]]
    project_name = str((run.specification or {}).get("projectName") or run.project_id)

    while run.healing_episode_attempts < self._max_attempts:
      run.healing_episode_attempts += 1
      attempt_number = run.healing_episode_attempts
      self._tracker.emit(run.project_id, "healing", f"Healing attempt {attempt_number}/{self._max_attempts}: analyzing build error", attempt=attempt_number, maxAttempts=self._max_attempts)
      context = RepairContext(project_id=run.project_id, project_name=project_name, cause=cause, attempt_number=attempt_number, max_attempts=self._max_attempts, previous_errors=tuple(previous_errors), specification=run.specification)

      try:
        action = await self._advisor.propose(context)
      except Exception as exc:  # noqa: BLE001
        logger.error("Repair advisor failed project_id=%s attempt=%d", run.project_id, attempt_number, exc_info=True)
        action = None
        previous_errors.append(f"Repair advisor error: {exc}")

      if action is None:
        attempt = HealingAttempt(project_id=run.project_id, correlation_id=run.correlation_id, attempt_number=attempt_number, cause=cause, action=None, outcome="no_action", created_at=utc_now_iso())
        run.healing_attempts.append(attempt)
        recorded.append(attempt)
        previous_errors.append("No fix could be determined")
        self._tracker.emit(run.project_id, "healing", f"Healing attempt {attempt_number}/{self._max_attempts}: no fix could be determined", attempt=attempt_number)
        continue

      attempt = HealingAttempt(project_id=run.project_id, correlation_id=run.correlation_id, attempt_number=attempt_number, cause=cause, action=action.summary, outcome="pending", created_at=utc_now_iso())
      run.healing_attempts.append(attempt)
      recorded.append(attempt)
      self._tracker.emit(run.project_id, "healing", f"Healing attempt {attempt_number}/{self._max_attempts}: {action.summary}; rebuilding", attempt=attempt_number)
      repair = RepairInstruction(attempt=attempt_number, cause=cause, summary=action.summary, instructions=action.instructions, dependencies=action.dependencies)
      return HealingDecision(outcome="rebuild", repair=repair, attempts=recorded)

    self._tracker.emit(run.project_id, "healing", f"Build failed after {self._max_attempts} healing attempts")
    return HealingDecision(outcome="exhausted", attempts=recorded)
