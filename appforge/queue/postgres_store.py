"""Postgres-backed job store using SQLAlchemy."""

from __future__ import annotations

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from appforge.core.database import get_session_factory
from appforge.queue.models import JOB_STATUSES, BackoffPolicy, JobRecord, JobStatus, RemoveOutcome
from appforge.queue.store import JobStore
from appforge.schema.jobs import QueueJob


class PostgresJobStore(JobStore):
  """Persist queued jobs to Postgres; claims use row locks with SKIP LOCKED."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory or get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def add(self, record: JobRecord) -> bool:
    async with self._session_factory() as session:
      stmt = (
        insert(QueueJob)
        .values(
          queue_name=record.queue_name,
          job_id=record.job_id,
          name=record.name,
          payload_json=record.payload,
          priority=record.priority,
          status=record.status,
          attempts_made=record.attempts_made,
          max_attempts=record.max_attempts,
          backoff_json=record.backoff.as_dict(),
          correlation_id=record.correlation_id,
          timeout_seconds=record.timeout_seconds,
          created_at=record.created_at,
          available_at=record.available_at,
          error_history_json=list(record.error_history),
        )
        .on_conflict_do_nothing(constraint="ux_queue_jobs_queue_job")
        .returning(QueueJob.id)
      )
      inserted = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      return inserted is not None

  async def get(self, queue_name: str, job_id: str) -> JobRecord | None:
    async with self._session_factory() as session:
      row = await self._get_row(session, queue_name, job_id)
      return self._model_to_record(row) if row is not None else None

  async def claim_next(self, queue_name: str, *, now: float) -> JobRecord | None:
    async with self._session_factory() as session:
      stmt = (
        select(QueueJob)
        .where(QueueJob.queue_name == queue_name, QueueJob.status.in_(("waiting", "delayed")), QueueJob.available_at <= now)
        .order_by(QueueJob.priority.asc(), QueueJob.created_at.asc())
        .limit(1)
        .with_for_update(skip_locked=True)
      )
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        await session.rollback()
        return None
      row.status = "active"
      row.started_at = now
      await session.commit()
      return self._model_to_record(row)

  async def save(self, record: JobRecord) -> None:
    async with self._session_factory() as session:
      row = await self._get_row(session, record.queue_name, record.job_id)
      if row is None:
        return
      row.status = record.status
      row.priority = record.priority
      row.attempts_made = record.attempts_made
      row.available_at = record.available_at
      row.started_at = record.started_at
      row.finished_at = record.finished_at
      row.failed_reason = record.failed_reason
      row.result_json = record.result
      row.error_history_json = list(record.error_history)
      await session.commit()

  async def remove(self, queue_name: str, job_id: str) -> RemoveOutcome:
    async with self._session_factory() as session:
      stmt = select(QueueJob).where(QueueJob.queue_name == queue_name, QueueJob.job_id == job_id).with_for_update()
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        await session.rollback()
        return "missing"
      if row.status == "active":
        await session.rollback()
        return "active"
      await session.delete(row)
      await session.commit()
      return "removed"

  async def counts(self, queue_name: str) -> dict[str, int]:
    async with self._session_factory() as session:
      stmt = select(QueueJob.status, func.count()).where(QueueJob.queue_name == queue_name).group_by(QueueJob.status)
      rows = (await session.execute(stmt)).all()
    counts = {status: 0 for status in JOB_STATUSES}
    for status, count in rows:
      counts[status] = int(count)
    return counts

  async def list_jobs(self, queue_name: str, *, status: JobStatus | None = None, correlation_id: str | None = None, limit: int = 100) -> list[JobRecord]:
    async with self._session_factory() as session:
      stmt = select(QueueJob).where(QueueJob.queue_name == queue_name)
      if status is not None:
        stmt = stmt.where(QueueJob.status == status)
      if correlation_id is not None:
        stmt = stmt.where(QueueJob.correlation_id == correlation_id)
      stmt = stmt.order_by(QueueJob.created_at.asc()).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def purge(self, queue_name: str, *, status: JobStatus, finished_before: float, limit: int | None = None) -> list[str]:
    async with self._session_factory() as session:
      finished = func.coalesce(QueueJob.finished_at, QueueJob.created_at)
      candidates = select(QueueJob.id).where(QueueJob.queue_name == queue_name, QueueJob.status == status, finished < finished_before).order_by(finished.asc())
      if limit is not None:
        candidates = candidates.limit(limit)
      stmt = delete(QueueJob).where(QueueJob.id.in_(candidates.scalar_subquery())).returning(QueueJob.job_id)
      removed = list((await session.execute(stmt)).scalars().all())
      await session.commit()
      return removed

  async def requeue_stalled(self, queue_name: str, *, started_before: float) -> list[str]:
    async with self._session_factory() as session:
      stmt = select(QueueJob).where(QueueJob.queue_name == queue_name, QueueJob.status == "active", QueueJob.started_at < started_before).with_for_update(skip_locked=True)
      rows = (await session.execute(stmt)).scalars().all()
      for row in rows:
        row.status = "waiting"
        row.started_at = None
      await session.commit()
      return [row.job_id for row in rows]

  async def _get_row(self, session: AsyncSession, queue_name: str, job_id: str) -> QueueJob | None:
    stmt = select(QueueJob).where(QueueJob.queue_name == queue_name, QueueJob.job_id == job_id)
    return (await session.execute(stmt)).scalar_one_or_none()

  def _model_to_record(self, row: QueueJob) -> JobRecord:
    return JobRecord(
      job_id=row.job_id,
      queue_name=row.queue_name,
      name=row.name,
      payload=dict(row.payload_json or {}),
      priority=row.priority,
      max_attempts=row.max_attempts,
      backoff=BackoffPolicy.from_dict(row.backoff_json),
      created_at=row.created_at,
      available_at=row.available_at,
      status=row.status,  # type: ignore[arg-type]
      attempts_made=row.attempts_made,
      correlation_id=row.correlation_id,
      timeout_seconds=row.timeout_seconds,
      started_at=row.started_at,
      finished_at=row.finished_at,
      failed_reason=row.failed_reason,
      result=row.result_json,
      error_history=list(row.error_history_json or []),
    )
