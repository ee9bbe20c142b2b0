from __future__ import annotations

import pytest

from appforge.events.channel import EventChannel
from appforge.events.tracker import ProgressTracker
from appforge.pipeline.healing import ChainedRepairAdvisor, DependencyRepairAdvisor, ModelRepairAdvisor, RepairAction, RepairContext, SelfHealingController
from appforge.pipeline.models import PipelineRun, PipelineStage


def _run() -> PipelineRun:
  return PipelineRun(correlation_id="corr-1", project_id="proj-1", user_id="user-1", prompt="Build a todo app", stage=PipelineStage.HEALING, started_at="2026-01-01T00:00:00Z", updated_at="2026-01-01T00:00:00Z", specification={"projectName": "todo-app"})


def _context(cause: str) -> RepairContext:
  return RepairContext(project_id="proj-1", project_name="todo-app", cause=cause, attempt_number=1, max_attempts=3)


class StaticAdvisor:
  def __init__(self, action: RepairAction | None | Exception) -> None:
    self._action = action
    self.contexts: list[RepairContext] = []

  async def propose(self, context: RepairContext) -> RepairAction | None:
    self.contexts.append(context)
    if isinstance(self._action, Exception):
      raise self._action
    return self._action


@pytest.mark.anyio
async def test_dependency_advisor_extracts_package_names() -> None:
  cause = "Error: Cannot find module 'zod'\nModule not found: Can't resolve '@tanstack/react-query/devtools'\nCannot find module './utils'"

  action = await DependencyRepairAdvisor().propose(_context(cause))

  assert action is not None
  assert action.dependencies == ["zod", "@tanstack/react-query"]
  assert action.summary == "Add missing dependencies: zod, @tanstack/react-query"


@pytest.mark.anyio
async def test_dependency_advisor_ignores_unrelated_errors() -> None:
  assert await DependencyRepairAdvisor().propose(_context("Type error: Property 'id' does not exist")) is None
  assert await DependencyRepairAdvisor().propose(_context("Cannot find module '@/components/TodoList'")) is None


@pytest.mark.anyio
async def test_model_advisor_parses_json_action(scripted_model) -> None:
  model = scripted_model(['{"summary": "Mark page as client component", "instructions": ["Add \'use client\' to app/page.tsx"]}'])

  action = await ModelRepairAdvisor(lambda: model).propose(_context("useState only works in Client Components"))

  assert action is not None
  assert action.instructions == ["Add 'use client' to app/page.tsx"]
  assert "useState only works" in model.calls[0][0]


@pytest.mark.anyio
async def test_model_advisor_rejects_prose_and_empty_actions(scripted_model) -> None:
  model = scripted_model(["I think you should add a dependency.", '{"summary": "Nothing to do"}'])
  advisor = ModelRepairAdvisor(lambda: model)

  assert await advisor.propose(_context("boom")) is None
  assert await advisor.propose(_context("boom")) is None


@pytest.mark.anyio
async def test_chain_uses_first_actionable_proposal() -> None:
  first = StaticAdvisor(None)
  second = StaticAdvisor(RepairAction(summary="Add zod", dependencies=["zod"]))
  third = StaticAdvisor(RepairAction(summary="never asked", dependencies=["x"]))

  action = await ChainedRepairAdvisor([first, second, third]).propose(_context("boom"))

  assert action.summary == "Add zod"
  assert third.contexts == []


@pytest.mark.anyio
async def test_first_actionable_attempt_requests_rebuild() -> None:
  run = _run()
  controller = SelfHealingController(StaticAdvisor(RepairAction(summary="Add zod", dependencies=["zod"])), max_attempts=3)

  decision = await controller.heal(run, "Cannot find module 'zod'")

  assert decision.outcome == "rebuild"
  assert decision.repair.attempt == 1
  assert decision.repair.dependencies == ["zod"]
  assert run.healing_episode_attempts == 1
  assert [attempt.outcome for attempt in run.healing_attempts] == ["pending"]


@pytest.mark.anyio
async def test_stops_after_max_attempts_when_no_fix_is_found() -> None:
  run = _run()
  channel = EventChannel()
  subscription = channel.subscribe("proj-1")
  advisor = StaticAdvisor(None)
  controller = SelfHealingController(advisor, max_attempts=3, tracker=ProgressTracker(channel))

  decision = await controller.heal(run, "Type error")

  assert decision.outcome == "exhausted"
  assert len(advisor.contexts) == 3
  assert [attempt.attempt_number for attempt in run.healing_attempts] == [1, 2, 3]
  assert all(attempt.outcome == "no_action" for attempt in run.healing_attempts)
  events = subscription.pending()
  messages = [event.message for event in events]
  assert messages[-1] == "Build failed after 3 healing attempts"
  assert {event.type for event in events} == {"healing"}


@pytest.mark.anyio
async def test_advisor_errors_consume_budget_without_escaping() -> None:
  run = _run()
  advisor = StaticAdvisor(RuntimeError("model unavailable"))
  controller = SelfHealingController(advisor, max_attempts=2)

  decision = await controller.heal(run, "Type error")

  assert decision.outcome == "exhausted"
  assert len(advisor.contexts) == 2
  assert "Repair advisor error: model unavailable" in advisor.contexts[1].previous_errors


@pytest.mark.anyio
async def test_budget_is_shared_across_an_episode() -> None:
  run = _run()
  run.healing_episode_attempts = 3
  advisor = StaticAdvisor(RepairAction(summary="Add zod", dependencies=["zod"]))

  decision = await SelfHealingController(advisor, max_attempts=3).heal(run, "Cannot find module 'zod'")

  assert decision.outcome == "exhausted"
  assert advisor.contexts == []


def test_max_attempts_must_be_positive() -> None:
  with pytest.raises(ValueError):
    SelfHealingController(StaticAdvisor(None), max_attempts=0)
