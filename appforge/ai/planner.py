"""Planning step: turn a natural-language prompt into a Technical Specification."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from appforge.ai.prompting import render_specification_request, render_specification_retry, render_specification_system_prompt
from appforge.ai.providers.base import AIModel
from appforge.ai.specification import SpecificationParseError, TechnicalSpecification, parse_specification
from appforge.core.errors import SpecificationGenerationFailed
from appforge.queue.payloads import GenerationAsset

logger = logging.getLogger(__name__)

ThoughtSink = Callable[[str], None]


@dataclass
class PlanningResult:
  """Validated specification plus call accounting."""

  specification: TechnicalSpecification
  attempts: int
  usage: list[dict[str, int]] = field(default_factory=list)


class SpecificationPlanner:
  """Produce a schema-conformant specification with one corrective retry.

  The retry budget is fixed and independent of the job queue's attempt counter.
  Provider and transport errors are not caught here; they propagate so the
  queue can retry the job with backoff.
  """

  name = "Planner"

  def __init__(self, model: AIModel, *, max_prompt_chars: int = 10000) -> None:
    self._model = model
    self._max_prompt_chars = max_prompt_chars

  async def plan(self, prompt: str, assets: Sequence[GenerationAsset] = (), *, on_thought: ThoughtSink | None = None) -> PlanningResult:
    """Plan the application; raises SpecificationGenerationFailed after two invalid responses."""
    self._validate_prompt(prompt)
    emit = on_thought or (lambda _message: None)
    system = render_specification_system_prompt()
    request = render_specification_request(prompt, assets)
    usage: list[dict[str, int]] = []

    emit("Analyzing requirements and drafting the technical specification")
    response = await self._model.generate(request, system=system)
    if response.usage:
      usage.append(response.usage)
    try:
      specification = parse_specification(response.content)
      logger.info("Planner returned a valid specification on the first attempt")
      emit(f"Specification ready for {specification.project_name}")
      return PlanningResult(specification=specification, attempts=1, usage=usage)
    except SpecificationParseError as exc:
      first_error = str(exc)
      logger.warning("Planner output invalid, issuing corrective retry: %s", first_error)

    emit("Specification did not match the schema; requesting a corrected version")
    retry_response = await self._model.generate(render_specification_retry(request, first_error), system=system)
    if retry_response.usage:
      usage.append(retry_response.usage)
    try:
      specification = parse_specification(retry_response.content)
    except SpecificationParseError as exc:
      logger.error("Planner corrective retry failed: %s", exc)
      raise SpecificationGenerationFailed(first_error, str(exc)) from exc

    logger.info("Planner returned a valid specification after the corrective retry")
    emit(f"Specification ready for {specification.project_name}")
    return PlanningResult(specification=specification, attempts=2, usage=usage)

  def _validate_prompt(self, prompt: str) -> None:
    if not prompt or not prompt.strip():
      raise ValueError("Prompt must not be empty.")
    if len(prompt) > self._max_prompt_chars:
      raise ValueError(f"Prompt exceeds {self._max_prompt_chars} characters.")
