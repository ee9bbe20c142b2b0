"""Storage contract for queued jobs."""

from __future__ import annotations

from typing import Protocol

from appforge.queue.models import JobRecord, JobStatus, RemoveOutcome


class JobStore(Protocol):
  """Persistence interface shared by every named queue.

  Implementations must make `add` and `claim_next` atomic: a job id is stored at
  most once per queue and a claimed job is handed to exactly one worker.
  """

  async def add(self, record: JobRecord) -> bool:
    """Store a new job; return False when the id already exists on the queue."""
    ...

  async def get(self, queue_name: str, job_id: str) -> JobRecord | None:
    """Return a job by id."""
    ...

  async def claim_next(self, queue_name: str, *, now: float) -> JobRecord | None:
    """Move the next runnable job to `active` and return it.

    Runnable jobs are `waiting` or due `delayed` jobs, ordered by priority
    (lower first) and then by creation time.
    """
    ...

  async def save(self, record: JobRecord) -> None:
    """Persist the mutable fields of an existing job."""
    ...

  async def remove(self, queue_name: str, job_id: str) -> RemoveOutcome:
    """Delete a job unless it is currently active."""
    ...

  async def counts(self, queue_name: str) -> dict[str, int]:
    """Return job counts keyed by status."""
    ...

  async def list_jobs(self, queue_name: str, *, status: JobStatus | None = None, correlation_id: str | None = None, limit: int = 100) -> list[JobRecord]:
    """List jobs ordered by creation time."""
    ...

  async def purge(self, queue_name: str, *, status: JobStatus, finished_before: float, limit: int | None = None) -> list[str]:
    """Delete finished jobs older than the cutoff and return their ids."""
    ...

  async def requeue_stalled(self, queue_name: str, *, started_before: float) -> list[str]:
    """Return active jobs that started before the cutoff to `waiting`."""
    ...
