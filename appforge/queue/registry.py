"""Explicit registry of named queues owned by the composition root."""

from __future__ import annotations

import time
from collections.abc import Iterator, Mapping

from appforge.queue.models import QueueConfig, QueueName
from appforge.queue.queue import Clock, JobQueue
from appforge.queue.store import JobStore


class QueueRegistry:
  """Map queue names to `JobQueue` instances sharing one store."""

  def __init__(self, store: JobStore, configs: Mapping[str, QueueConfig], *, clock: Clock = time.time) -> None:
    self._store = store
    self._queues = {name: JobQueue(config, store, clock=clock) for name, config in configs.items()}

  @property
  def store(self) -> JobStore:
    return self._store

  def get(self, name: str | QueueName) -> JobQueue:
    """Resolve a queue by name."""
    key = name.value if isinstance(name, QueueName) else name
    queue = self._queues.get(key)
    if queue is None:
      raise ValueError(f"Unsupported queue: {key}")
    return queue

  def names(self) -> list[str]:
    return list(self._queues)

  def __iter__(self) -> Iterator[JobQueue]:
    return iter(self._queues.values())

  async def counts(self) -> dict[str, dict[str, int]]:
    """Return per-status counts for every queue."""
    return {name: await queue.counts() for name, queue in self._queues.items()}
