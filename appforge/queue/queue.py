"""Named job queue: submission, admin operations and attempt bookkeeping."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from appforge.core.errors import JobActiveError, JobNotFoundError
from appforge.queue.models import BackoffPolicy, EnqueueResult, JobRecord, JobStatus, QueueConfig
from appforge.queue.store import JobStore

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class JobQueue:
  """A single named queue backed by a shared job store."""

  def __init__(self, config: QueueConfig, store: JobStore, *, clock: Clock = time.time) -> None:
    self._config = config
    self._store = store
    self._clock = clock
    self._paused = False

  @property
  def name(self) -> str:
    return self._config.name

  @property
  def config(self) -> QueueConfig:
    return self._config

  @property
  def is_paused(self) -> bool:
    return self._paused

  async def enqueue(
    self,
    job_id: str,
    payload: dict[str, Any],
    *,
    name: str | None = None,
    priority: int = 0,
    max_attempts: int | None = None,
    backoff: BackoffPolicy | None = None,
    correlation_id: str | None = None,
    timeout_seconds: float | None = None,
    delay_seconds: float = 0.0,
  ) -> EnqueueResult:
    """Submit a job; re-submitting an existing id is a no-op that reports a duplicate."""
    if not job_id:
      raise ValueError("job_id is required")
    attempts = max_attempts if max_attempts is not None else self._config.attempts
    if attempts <= 0:
      raise ValueError("max_attempts must be a positive integer")

    now = self._clock()
    record = JobRecord(
      job_id=job_id,
      queue_name=self.name,
      name=name or self.name,
      payload=payload,
      priority=priority,
      max_attempts=attempts,
      backoff=backoff or self._config.backoff,
      created_at=now,
      available_at=now + max(delay_seconds, 0.0),
      status="delayed" if delay_seconds > 0 else "waiting",
      correlation_id=correlation_id,
      timeout_seconds=timeout_seconds if timeout_seconds is not None else self._config.timeout_seconds,
    )
    if not await self._store.add(record):
      logger.info("Duplicate submission ignored queue=%s job_id=%s", self.name, job_id)
      return EnqueueResult(job_id=job_id, queue_name=self.name, outcome="duplicate")

    logger.info("Job enqueued queue=%s job_id=%s priority=%s correlation_id=%s", self.name, job_id, priority, correlation_id)
    return EnqueueResult(job_id=job_id, queue_name=self.name, outcome="accepted")

  async def get_job(self, job_id: str) -> JobRecord | None:
    return await self._store.get(self.name, job_id)

  async def require_job(self, job_id: str) -> JobRecord:
    record = await self.get_job(job_id)
    if record is None:
      raise JobNotFoundError(self.name, job_id)
    return record

  async def remove_job(self, job_id: str) -> None:
    """Delete a queued or finished job; active jobs are not preemptible."""
    outcome = await self._store.remove(self.name, job_id)
    if outcome == "missing":
      raise JobNotFoundError(self.name, job_id)
    if outcome == "active":
      raise JobActiveError(self.name, job_id)
    logger.info("Job removed queue=%s job_id=%s", self.name, job_id)

  async def list_jobs(self, *, status: JobStatus | None = None, correlation_id: str | None = None, limit: int = 100) -> list[JobRecord]:
    return await self._store.list_jobs(self.name, status=status, correlation_id=correlation_id, limit=limit)

  def pause(self) -> None:
    """Stop handing out new jobs; in-flight jobs run to completion."""
    self._paused = True
    logger.info("Queue paused: %s", self.name)

  def resume(self) -> None:
    self._paused = False
    logger.info("Queue resumed: %s", self.name)

  async def counts(self) -> dict[str, int]:
    return await self._store.counts(self.name)

  async def clean(self, status: JobStatus = "completed", *, grace_seconds: float = 3600.0, limit: int = 1000) -> list[str]:
    """Delete jobs in `status` older than the grace period."""
    if status == "active":
      raise ValueError("Active jobs cannot be cleaned")
    removed = await self._store.purge(self.name, status=status, finished_before=self._clock() - grace_seconds, limit=limit)
    logger.info("Queue cleaned queue=%s status=%s removed=%d", self.name, status, len(removed))
    return removed

  async def claim(self) -> JobRecord | None:
    """Claim the next runnable job, or None when paused or idle."""
    if self._paused:
      return None
    return await self._store.claim_next(self.name, now=self._clock())

  async def complete(self, job: JobRecord, result: dict[str, Any] | None) -> JobRecord:
    now = self._clock()
    updated = replace(job, status="completed", attempts_made=job.attempts_made + 1, finished_at=now, result=result, failed_reason=None)
    await self._store.save(updated)
    return updated

  async def fail(self, job: JobRecord, error: str, *, unrecoverable: bool = False) -> JobRecord:
    """Record a failed attempt and either schedule a retry or fail the job."""
    now = self._clock()
    attempts_made = job.attempts_made + 1
    history = [*job.error_history, error]
    if unrecoverable or attempts_made >= job.max_attempts:
      updated = replace(job, status="failed", attempts_made=attempts_made, finished_at=now, failed_reason=error, error_history=history)
      logger.warning("Job failed queue=%s job_id=%s attempts=%d/%d reason=%s", self.name, job.job_id, attempts_made, job.max_attempts, error)
    else:
      delay = job.backoff.delay_for(attempts_made)
      updated = replace(job, status="delayed", attempts_made=attempts_made, available_at=now + delay, started_at=None, failed_reason=error, error_history=history)
      logger.info("Job retry scheduled queue=%s job_id=%s attempt=%d/%d delay=%.1fs", self.name, job.job_id, attempts_made, job.max_attempts, delay)
    await self._store.save(updated)
    return updated

  async def purge_expired(self) -> int:
    """Apply the completed and failed retention windows."""
    now = self._clock()
    removed = await self._store.purge(self.name, status="completed", finished_before=now - self._config.completed_retention_seconds)
    removed += await self._store.purge(self.name, status="failed", finished_before=now - self._config.failed_retention_seconds)
    if removed:
      logger.debug("Retention purge queue=%s removed=%d", self.name, len(removed))
    return len(removed)

  async def requeue_stalled(self, stall_seconds: float) -> list[str]:
    """Return jobs whose worker disappeared mid-execution to the queue."""
    requeued = await self._store.requeue_stalled(self.name, started_before=self._clock() - stall_seconds)
    if requeued:
      logger.warning("Requeued stalled jobs queue=%s job_ids=%s", self.name, requeued)
    return requeued
