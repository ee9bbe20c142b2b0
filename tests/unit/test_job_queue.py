from __future__ import annotations

import pytest

from appforge.core.errors import JobActiveError, JobNotFoundError
from appforge.queue.config import build_queue_configs
from appforge.queue.memory_store import InMemoryJobStore
from appforge.queue.models import BackoffPolicy, QueueConfig
from appforge.queue.queue import JobQueue
from appforge.queue.registry import QueueRegistry


class FakeClock:
  def __init__(self, now: float = 1_000.0) -> None:
    self.now = now

  def __call__(self) -> float:
    return self.now

  def advance(self, seconds: float) -> None:
    self.now += seconds


def _queue(clock: FakeClock) -> JobQueue:
  config = QueueConfig(name="build", attempts=3, backoff=BackoffPolicy("exponential", 10.0))
  return JobQueue(config, InMemoryJobStore(), clock=clock)


@pytest.mark.anyio
async def test_enqueue_same_id_twice_keeps_one_job() -> None:
  queue = _queue(FakeClock())

  first = await queue.enqueue("build-1", {"n": 1})
  second = await queue.enqueue("build-1", {"n": 2})

  assert first.accepted
  assert second.outcome == "duplicate"
  jobs = await queue.list_jobs()
  assert len(jobs) == 1
  assert jobs[0].payload == {"n": 1}


@pytest.mark.anyio
async def test_claim_serves_lowest_priority_value_then_fifo() -> None:
  clock = FakeClock()
  queue = _queue(clock)
  await queue.enqueue("low-early", {}, priority=5)
  clock.advance(1)
  await queue.enqueue("urgent", {}, priority=0)
  clock.advance(1)
  await queue.enqueue("low-late", {}, priority=5)

  order = [(await queue.claim()).job_id for _ in range(3)]

  assert order == ["urgent", "low-early", "low-late"]
  assert await queue.claim() is None


@pytest.mark.anyio
async def test_failed_attempt_is_delayed_by_exponential_backoff() -> None:
  clock = FakeClock()
  queue = _queue(clock)
  await queue.enqueue("build-1", {})

  job = await queue.claim()
  failed = await queue.fail(job, "npm exited with code 1")
  assert failed.status == "delayed"
  assert failed.attempts_made == 1
  assert failed.available_at == clock.now + 10.0

  clock.advance(9.9)
  assert await queue.claim() is None
  clock.advance(0.2)
  job = await queue.claim()
  failed = await queue.fail(job, "npm exited with code 1")
  assert failed.available_at == pytest.approx(clock.now + 20.0)


@pytest.mark.anyio
async def test_job_fails_permanently_after_max_attempts() -> None:
  clock = FakeClock()
  queue = _queue(clock)
  await queue.enqueue("build-1", {}, max_attempts=2)

  job = await queue.claim()
  await queue.fail(job, "first")
  clock.advance(60)
  job = await queue.claim()
  final = await queue.fail(job, "second")

  assert final.status == "failed"
  assert final.attempts_made == 2
  assert final.error_history == ["first", "second"]
  clock.advance(3600)
  assert await queue.claim() is None


@pytest.mark.anyio
async def test_unrecoverable_failure_skips_remaining_attempts() -> None:
  queue = _queue(FakeClock())
  await queue.enqueue("build-1", {})

  job = await queue.claim()
  final = await queue.fail(job, "bad payload", unrecoverable=True)

  assert final.status == "failed"
  assert final.attempts_made == 1


def test_fixed_backoff_uses_constant_delay() -> None:
  policy = BackoffPolicy("fixed", 3.0)
  assert [policy.delay_for(n) for n in (1, 2, 5)] == [3.0, 3.0, 3.0]
  assert BackoffPolicy("exponential", 2.0).delay_for(3) == 8.0


@pytest.mark.anyio
async def test_remove_refuses_active_job() -> None:
  queue = _queue(FakeClock())
  await queue.enqueue("build-1", {})
  await queue.enqueue("build-2", {})
  await queue.claim()

  with pytest.raises(JobActiveError):
    await queue.remove_job("build-1")
  await queue.remove_job("build-2")
  with pytest.raises(JobNotFoundError):
    await queue.remove_job("build-2")


@pytest.mark.anyio
async def test_paused_queue_hands_out_nothing_until_resumed() -> None:
  queue = _queue(FakeClock())
  await queue.enqueue("build-1", {})

  queue.pause()
  assert await queue.claim() is None
  assert (await queue.counts())["waiting"] == 1

  queue.resume()
  assert (await queue.claim()).job_id == "build-1"


@pytest.mark.anyio
async def test_retention_purges_completed_after_an_hour_and_failed_after_a_day() -> None:
  clock = FakeClock()
  queue = _queue(clock)
  await queue.enqueue("ok", {})
  await queue.enqueue("bad", {}, max_attempts=1)
  await queue.complete(await queue.claim(), {"success": True})
  await queue.fail(await queue.claim(), "boom")

  clock.advance(3601)
  assert await queue.purge_expired() == 1
  assert await queue.get_job("ok") is None
  assert (await queue.get_job("bad")).status == "failed"

  clock.advance(86400)
  assert await queue.purge_expired() == 1
  assert await queue.get_job("bad") is None


@pytest.mark.anyio
async def test_clean_removes_only_old_jobs_in_status() -> None:
  clock = FakeClock()
  queue = _queue(clock)
  await queue.enqueue("old", {})
  await queue.complete(await queue.claim(), None)
  clock.advance(100)
  await queue.enqueue("new", {})
  await queue.complete(await queue.claim(), None)

  removed = await queue.clean("completed", grace_seconds=50)

  assert removed == ["old"]
  with pytest.raises(ValueError):
    await queue.clean("active")


@pytest.mark.anyio
async def test_stalled_active_job_returns_to_waiting() -> None:
  clock = FakeClock()
  queue = _queue(clock)
  await queue.enqueue("build-1", {})
  await queue.claim()

  clock.advance(1801)
  assert await queue.requeue_stalled(1800) == ["build-1"]
  job = await queue.claim()
  assert job.job_id == "build-1"
  assert job.attempts_made == 0


def test_registry_rejects_unknown_queue_and_unknown_overrides() -> None:
  registry = QueueRegistry(InMemoryJobStore(), build_queue_configs({"build": 3}))

  assert registry.get("build").config.concurrency == 3
  with pytest.raises(ValueError, match="Unsupported queue"):
    registry.get("emails")
  with pytest.raises(ValueError):
    build_queue_configs({"emails": 2})
