"""Background workers that drain named queues."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Sequence
from dataclasses import replace

from appforge.core.errors import UnrecoverableJobError
from appforge.queue.dispatch import JobHandler, JobHandlerRegistry, JobLifecycleListener
from appforge.queue.models import JobRecord
from appforge.queue.queue import JobQueue
from appforge.queue.registry import QueueRegistry

logger = logging.getLogger(__name__)

DEFAULT_STALL_SECONDS = 1800.0


def _failure_cause(exc: UnrecoverableJobError) -> str:
  """Prefix the error type for specific unrecoverable failures."""
  if type(exc) is UnrecoverableJobError:
    return str(exc)
  return f"{type(exc).__name__}: {exc}"


class QueueWorker:
  """Claim jobs from one queue and run them with bounded concurrency.

  Each claimed job runs as its own task; the semaphore caps how many run at once.
  A handler exception, timeout or unrecoverable error is recorded on the queue,
  which decides between a delayed retry and a terminal failure.

  Listeners see a successful result before it is recorded, so a listener that
  cannot hand the job off turns the attempt into a retryable failure. Failed
  attempts are reported after they are recorded.
  """

  def __init__(self, queue: JobQueue, handler: JobHandler, *, listeners: Sequence[JobLifecycleListener] = (), poll_interval: float = 0.5, sweep_interval: float = 60.0) -> None:
    self._queue = queue
    self._handler = handler
    self._listeners = list(listeners)
    self._poll_interval = poll_interval
    self._sweep_interval = sweep_interval
    self._semaphore = asyncio.Semaphore(max(queue.config.concurrency, 1))
    self._inflight: set[asyncio.Task[None]] = set()
    self._started: deque[float] = deque()
    self._loop_task: asyncio.Task[None] | None = None
    self._stopping = asyncio.Event()
    self._last_sweep = 0.0

  @property
  def queue(self) -> JobQueue:
    return self._queue

  @property
  def running(self) -> bool:
    return self._loop_task is not None and not self._loop_task.done()

  def start(self) -> None:
    if self.running:
      return
    self._stopping.clear()
    self._loop_task = asyncio.create_task(self._run(), name=f"queue-worker:{self._queue.name}")
    logger.info("Worker started queue=%s concurrency=%d", self._queue.name, self._queue.config.concurrency)

  async def stop(self) -> None:
    """Stop claiming and wait for in-flight jobs to finish."""
    self._stopping.set()
    if self._loop_task is not None:
      await self._loop_task
      self._loop_task = None
    if self._inflight:
      await asyncio.gather(*self._inflight, return_exceptions=True)
    logger.info("Worker stopped queue=%s", self._queue.name)

  async def run_once(self) -> JobRecord | None:
    """Claim and process a single job inline; return the recorded outcome."""
    job = await self._queue.claim()
    if job is None:
      return None
    return await self.process(job)

  async def drain(self, *, max_jobs: int = 1000) -> int:
    """Process runnable jobs inline until none remain."""
    processed = 0
    while processed < max_jobs:
      if await self.run_once() is None:
        break
      processed += 1
    return processed

  async def process(self, job: JobRecord) -> JobRecord:
    """Run the handler for a claimed job and record the outcome."""
    logger.info("Processing job queue=%s job_id=%s attempt=%d/%d", job.queue_name, job.job_id, job.attempts_made + 1, job.max_attempts)
    try:
      if job.timeout_seconds:
        result = await asyncio.wait_for(self._handler.process(job), timeout=job.timeout_seconds)
      else:
        result = await self._handler.process(job)
    except UnrecoverableJobError as exc:
      logger.error("Unrecoverable failure queue=%s job_id=%s: %s", job.queue_name, job.job_id, exc)
      recorded = await self._queue.fail(job, _failure_cause(exc), unrecoverable=True)
    except TimeoutError:
      logger.error("Job timed out queue=%s job_id=%s after %ss", job.queue_name, job.job_id, job.timeout_seconds)
      recorded = await self._queue.fail(job, f"Job timed out after {job.timeout_seconds}s")
    except Exception as exc:  # noqa: BLE001
      logger.error("Job handler failed queue=%s job_id=%s", job.queue_name, job.job_id, exc_info=True)
      recorded = await self._queue.fail(job, str(exc) or type(exc).__name__)
    else:
      try:
        await self._hand_off(replace(job, result=result))
      except Exception as exc:  # noqa: BLE001
        logger.error("Job hand-off failed queue=%s job_id=%s", job.queue_name, job.job_id, exc_info=True)
        recorded = await self._queue.fail(job, f"Hand-off failed: {str(exc) or type(exc).__name__}")
      else:
        recorded = await self._queue.complete(job, result)
        logger.info("Job completed queue=%s job_id=%s", job.queue_name, job.job_id)
        return recorded

    await self._notify_failed(recorded)
    return recorded

  async def sweep(self) -> None:
    """Apply retention windows and recover jobs abandoned by a dead worker."""
    await self._queue.purge_expired()
    stall_seconds = max(self._queue.config.timeout_seconds or 0.0, DEFAULT_STALL_SECONDS)
    await self._queue.requeue_stalled(stall_seconds)

  async def _hand_off(self, job: JobRecord) -> None:
    for listener in self._listeners:
      await listener.job_completed(job)

  async def _notify_failed(self, job: JobRecord) -> None:
    for listener in self._listeners:
      try:
        await listener.job_failed(job, final=job.status == "failed")
      except Exception:  # noqa: BLE001
        logger.error("Job listener failed queue=%s job_id=%s", job.queue_name, job.job_id, exc_info=True)

  async def _run(self) -> None:
    while not self._stopping.is_set():
      acquired = False
      try:
        await self._maybe_sweep()
        await self._semaphore.acquire()
        acquired = True
        if self._stopping.is_set():
          self._semaphore.release()
          break
        await self._respect_rate_limit()
        job = await self._queue.claim()
      except Exception:  # noqa: BLE001
        logger.error("Worker loop error queue=%s", self._queue.name, exc_info=True)
        if acquired:
          self._semaphore.release()
        await self._idle()
        continue

      if job is None:
        self._semaphore.release()
        await self._idle()
        continue

      self._started.append(time.monotonic())
      task = asyncio.create_task(self._run_job(job), name=f"job:{job.queue_name}:{job.job_id}")
      self._inflight.add(task)
      task.add_done_callback(self._inflight.discard)

  async def _run_job(self, job: JobRecord) -> None:
    try:
      await self.process(job)
    except Exception:  # noqa: BLE001
      logger.error("Failed to record job outcome queue=%s job_id=%s", job.queue_name, job.job_id, exc_info=True)
    finally:
      self._semaphore.release()

  async def _maybe_sweep(self) -> None:
    now = time.monotonic()
    if now - self._last_sweep < self._sweep_interval:
      return
    self._last_sweep = now
    await self.sweep()

  async def _respect_rate_limit(self) -> None:
    rate_limit = self._queue.config.rate_limit
    if rate_limit is None:
      return
    while True:
      now = time.monotonic()
      while self._started and now - self._started[0] >= rate_limit.window_seconds:
        self._started.popleft()
      if len(self._started) < rate_limit.max_jobs:
        return
      await asyncio.sleep(rate_limit.window_seconds - (now - self._started[0]))

  async def _idle(self) -> None:
    try:
      await asyncio.wait_for(self._stopping.wait(), timeout=self._poll_interval)
    except TimeoutError:
      pass


class WorkerPool:
  """Start and stop one worker per registered queue handler."""

  def __init__(self, registry: QueueRegistry, handlers: JobHandlerRegistry, *, listeners: Sequence[JobLifecycleListener] = (), poll_interval: float = 0.5, sweep_interval: float = 60.0) -> None:
    self._workers = {
      name: QueueWorker(registry.get(name), handlers.resolve(name), listeners=listeners, poll_interval=poll_interval, sweep_interval=sweep_interval) for name in handlers.queue_names()
    }

  def get(self, queue_name: str) -> QueueWorker:
    worker = self._workers.get(queue_name)
    if worker is None:
      raise ValueError(f"No worker registered for queue: {queue_name}")
    return worker

  def __iter__(self):
    return iter(self._workers.values())

  def start(self) -> None:
    for worker in self._workers.values():
      worker.start()

  async def stop(self) -> None:
    await asyncio.gather(*(worker.stop() for worker in self._workers.values()))

  async def drain(self, *, max_rounds: int = 100) -> int:
    """Process every runnable job across all queues inline, including follow-up jobs."""
    total = 0
    for _ in range(max_rounds):
      processed = 0
      for worker in self._workers.values():
        processed += await worker.drain()
      total += processed
      if processed == 0:
        break
    return total
