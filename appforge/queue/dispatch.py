"""Dependency-injected job handler contracts."""

from __future__ import annotations

from typing import Any, Protocol

from appforge.queue.models import JobRecord


class JobHandler(Protocol):
  """Processor contract for the jobs of one queue."""

  async def process(self, job: JobRecord) -> dict[str, Any] | None:
    """Execute one claimed job and return its result payload."""


class JobLifecycleListener(Protocol):
  """Observer of job attempt outcomes."""

  async def job_completed(self, job: JobRecord) -> None:
    """Called with the handler result before completion is recorded; raising retries the attempt."""

  async def job_failed(self, job: JobRecord, *, final: bool) -> None:
    """Called after a failed attempt; `final` is True when no retry remains."""


class JobHandlerRegistry:
  """Registry mapping queue names to handlers."""

  def __init__(self, handlers: dict[str, JobHandler]) -> None:
    self._handlers = handlers

  def resolve(self, queue_name: str) -> JobHandler:
    """Resolve the handler for a queue."""
    handler = self._handlers.get(queue_name)
    if handler is None:
      raise ValueError(f"Unsupported queue handler: {queue_name}")
    return handler

  def queue_names(self) -> list[str]:
    return list(self._handlers)
