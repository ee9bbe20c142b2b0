"""In-process job store for local development and tests."""

from __future__ import annotations

import asyncio
from dataclasses import replace

from appforge.queue.models import JOB_STATUSES, JobRecord, JobStatus, RemoveOutcome
from appforge.queue.store import JobStore


class InMemoryJobStore(JobStore):
  """Keep jobs in dictionaries guarded by a single asyncio lock."""

  def __init__(self) -> None:
    self._jobs: dict[tuple[str, str], JobRecord] = {}
    self._lock = asyncio.Lock()

  async def add(self, record: JobRecord) -> bool:
    key = (record.queue_name, record.job_id)
    async with self._lock:
      if key in self._jobs:
        return False
      self._jobs[key] = replace(record)
      return True

  async def get(self, queue_name: str, job_id: str) -> JobRecord | None:
    async with self._lock:
      record = self._jobs.get((queue_name, job_id))
      return replace(record) if record is not None else None

  async def claim_next(self, queue_name: str, *, now: float) -> JobRecord | None:
    async with self._lock:
      runnable = [record for (name, _), record in self._jobs.items() if name == queue_name and record.status in ("waiting", "delayed") and record.available_at <= now]
      if not runnable:
        return None
      record = min(runnable, key=lambda item: (item.priority, item.created_at))
      record.status = "active"
      record.started_at = now
      return replace(record)

  async def save(self, record: JobRecord) -> None:
    key = (record.queue_name, record.job_id)
    async with self._lock:
      if key not in self._jobs:
        return
      self._jobs[key] = replace(record)

  async def remove(self, queue_name: str, job_id: str) -> RemoveOutcome:
    key = (queue_name, job_id)
    async with self._lock:
      record = self._jobs.get(key)
      if record is None:
        return "missing"
      if record.status == "active":
        return "active"
      del self._jobs[key]
      return "removed"

  async def counts(self, queue_name: str) -> dict[str, int]:
    counts = {status: 0 for status in JOB_STATUSES}
    async with self._lock:
      for (name, _), record in self._jobs.items():
        if name == queue_name:
          counts[record.status] += 1
    return counts

  async def list_jobs(self, queue_name: str, *, status: JobStatus | None = None, correlation_id: str | None = None, limit: int = 100) -> list[JobRecord]:
    async with self._lock:
      matches = [record for (name, _), record in self._jobs.items() if name == queue_name]
    if status is not None:
      matches = [record for record in matches if record.status == status]
    if correlation_id is not None:
      matches = [record for record in matches if record.correlation_id == correlation_id]
    matches.sort(key=lambda item: item.created_at)
    return [replace(record) for record in matches[:limit]]

  async def purge(self, queue_name: str, *, status: JobStatus, finished_before: float, limit: int | None = None) -> list[str]:
    removed: list[str] = []
    async with self._lock:
      candidates = sorted(
        (record for (name, _), record in self._jobs.items() if name == queue_name and record.status == status and (record.finished_at or record.created_at) < finished_before),
        key=lambda item: item.finished_at or item.created_at,
      )
      for record in candidates:
        if limit is not None and len(removed) >= limit:
          break
        del self._jobs[(queue_name, record.job_id)]
        removed.append(record.job_id)
    return removed

  async def requeue_stalled(self, queue_name: str, *, started_before: float) -> list[str]:
    requeued: list[str] = []
    async with self._lock:
      for (name, _), record in self._jobs.items():
        if name != queue_name or record.status != "active":
          continue
        if record.started_at is not None and record.started_at < started_before:
          record.status = "waiting"
          record.started_at = None
          requeued.append(record.job_id)
    return requeued
