"""Shared fixtures: environment defaults, scripted models and executors."""

from __future__ import annotations

import json
import os
import tempfile
import time
from collections.abc import Callable, Sequence
from dataclasses import replace
from typing import Any

# Ensure required settings are available before importing the application.
os.environ.setdefault("APPFORGE_ALLOWED_ORIGINS", "http://localhost")
os.environ.setdefault("APPFORGE_WORKERS_ENABLED", "0")
os.environ.setdefault("APPFORGE_TASK_SECRET", "test-task-secret")
os.environ.setdefault("APPFORGE_LOG_DIR", tempfile.mkdtemp(prefix="appforge-logs-"))

import pytest  # noqa: E402

from appforge.ai.providers.base import AIModel, ModelResponse, SimpleModelResponse  # noqa: E402
from appforge.config import Settings, get_settings  # noqa: E402
from appforge.core.container import Container  # noqa: E402
from appforge.pipeline.executors import ExecutorResult  # noqa: E402
from appforge.queue.memory_store import InMemoryJobStore  # noqa: E402
from appforge.queue.models import JobRecord  # noqa: E402
from appforge.queue.store import JobStore  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


class ScriptedModel(AIModel):
  """Model double that replays canned responses in order."""

  name = "scripted"

  def __init__(self, responses: Sequence[str | Exception]) -> None:
    self._responses = list(responses)
    self.calls: list[tuple[str, str | None]] = []

  async def generate(self, prompt: str, *, system: str | None = None) -> ModelResponse:
    self.calls.append((prompt, system))
    if not self._responses:
      raise AssertionError("Unexpected model call")
    item = self._responses.pop(0)
    if isinstance(item, Exception):
      raise item
    return SimpleModelResponse(content=item, usage={"prompt_tokens": 100, "completion_tokens": 50, "total_tokens": 150})


class ScriptedExecutor:
  """Executor double that replays canned results and records payloads."""

  def __init__(self, results: Sequence[ExecutorResult | Exception]) -> None:
    self._results = list(results)
    self.payloads: list[dict[str, Any]] = []

  async def execute(self, payload: dict[str, Any]) -> ExecutorResult:
    self.payloads.append(payload)
    if not self._results:
      raise AssertionError("Unexpected executor call")
    item = self._results.pop(0)
    if isinstance(item, Exception):
      raise item
    return item


class FlakyJobStore(InMemoryJobStore):
  """In-memory store whose first inserts on one queue raise a connection error."""

  def __init__(self, queue_name: str, failures: int = 1) -> None:
    super().__init__()
    self._queue_name = queue_name
    self.failures = failures

  async def add(self, record: JobRecord) -> bool:
    if record.queue_name == self._queue_name and self.failures > 0:
      self.failures -= 1
      raise ConnectionError("job store unavailable")
    return await super().add(record)


class ManualClock:
  """Clock that only moves when a test advances it."""

  def __init__(self, start: float = 1_000_000.0) -> None:
    self.now = start

  def __call__(self) -> float:
    return self.now

  def advance(self, seconds: float) -> None:
    self.now += seconds


def todo_specification(**overrides: Any) -> dict[str, Any]:
  """A minimal valid specification for a todo application."""
  spec: dict[str, Any] = {
    "projectName": "todo-app",
    "description": "A simple todo list with add, complete and delete.",
    "technicalSummary": "Next.js app router with a server action backed task list.",
    "projectStructure": {
      "root": {
        "name": "todo-app",
        "type": "directory",
        "children": [
          {"name": "package.json", "type": "file"},
          {"name": "app", "type": "directory", "children": [{"name": "page.tsx", "type": "file", "description": "Task list page"}]},
        ],
      }
    },
    "components": [{"name": "TodoList", "path": "components/TodoList.tsx", "description": "Renders tasks", "type": "client", "eventHandlers": [{"name": "onToggle", "eventType": "change", "async": True}]}],
    "pages": [{"route": "/", "filePath": "app/page.tsx", "description": "Home", "components": ["TodoList"]}],
    "apiRoutes": [{"path": "/api/todos", "method": "GET", "description": "List todos", "responses": [{"statusCode": 200, "description": "OK", "schema": {"type": "array"}}]}],
    "dependencies": [{"name": "next", "version": "14.2.0"}],
    "dataModels": [{"name": "Todo", "fields": [{"name": "id", "type": "string"}, {"name": "done", "type": "boolean"}]}],
    "envVariables": [],
    "implementationNotes": ["Persist todos in memory for the preview deployment."],
  }
  spec.update(overrides)
  return spec


def todo_specification_json(**overrides: Any) -> str:
  return json.dumps(todo_specification(**overrides))


@pytest.fixture
def settings() -> Settings:
  return replace(get_settings(), healing_max_attempts=3, workers_enabled=False)


@pytest.fixture
def build_container(settings: Settings) -> Callable[..., Container]:
  """Build a container wired to in-memory stores and the given doubles."""

  def _build(model: AIModel, *, build_executor: ScriptedExecutor | None = None, deploy_executor: ScriptedExecutor | None = None, store: JobStore | None = None, clock: Callable[[], float] = time.time, **overrides: Any) -> Container:
    container_settings = replace(settings, **overrides) if overrides else settings
    return Container(
      container_settings,
      store=store,
      clock=clock,
      model_factory=lambda: model,
      build_executor=build_executor or ScriptedExecutor([]),
      deploy_executor=deploy_executor or ScriptedExecutor([]),
    )

  return _build


@pytest.fixture
def scripted_model() -> type[ScriptedModel]:
  return ScriptedModel


@pytest.fixture
def scripted_executor() -> type[ScriptedExecutor]:
  return ScriptedExecutor


@pytest.fixture
def spec_json() -> Callable[..., str]:
  return todo_specification_json


@pytest.fixture
def spec_dict() -> Callable[..., dict[str, Any]]:
  return todo_specification


@pytest.fixture
def flaky_store() -> type[FlakyJobStore]:
  return FlakyJobStore


@pytest.fixture
def manual_clock() -> ManualClock:
  return ManualClock()
