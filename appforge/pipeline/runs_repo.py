"""Repository contract and implementations for pipeline runs."""

from __future__ import annotations

import asyncio
import copy
from typing import Any, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from appforge.core.database import get_session_factory
from appforge.core.errors import StaleRunError
from appforge.pipeline.models import HealingAttempt, PipelineRun, PipelineStage
from appforge.schema.runs import PipelineRunRow


class RunsRepository(Protocol):
  """Repository interface for pipeline runs."""

  async def create(self, run: PipelineRun) -> bool:
    """Store a new run; return False if the correlation id already exists."""
    ...

  async def get(self, correlation_id: str) -> PipelineRun | None:
    """Return a run by correlation id."""
    ...

  async def get_active_for_project(self, project_id: str) -> PipelineRun | None:
    """Return the non-archived run of a project, if any."""
    ...

  async def get_latest_for_project(self, project_id: str) -> PipelineRun | None:
    """Return the most recently started run of a project, archived or not."""
    ...

  async def save(self, run: PipelineRun) -> None:
    """Persist the full state of an existing run.

    Raises `StaleRunError` when the stored run has moved past `run.version`.
    """
    ...


class InMemoryRunsRepository(RunsRepository):
  """Keep runs in a dictionary; used by tests and the memory job store."""

  def __init__(self) -> None:
    self._runs: dict[str, PipelineRun] = {}
    self._order: list[str] = []
    self._lock = asyncio.Lock()

  async def create(self, run: PipelineRun) -> bool:
    async with self._lock:
      if run.correlation_id in self._runs:
        return False
      self._runs[run.correlation_id] = copy.deepcopy(run)
      self._order.append(run.correlation_id)
      return True

  async def get(self, correlation_id: str) -> PipelineRun | None:
    run = self._runs.get(correlation_id)
    return copy.deepcopy(run) if run is not None else None

  async def get_active_for_project(self, project_id: str) -> PipelineRun | None:
    for correlation_id in reversed(self._order):
      run = self._runs[correlation_id]
      if run.project_id == project_id and not run.archived:
        return copy.deepcopy(run)
    return None

  async def get_latest_for_project(self, project_id: str) -> PipelineRun | None:
    for correlation_id in reversed(self._order):
      run = self._runs[correlation_id]
      if run.project_id == project_id:
        return copy.deepcopy(run)
    return None

  async def save(self, run: PipelineRun) -> None:
    async with self._lock:
      stored = self._runs.get(run.correlation_id)
      if stored is None:
        raise KeyError(f"Unknown pipeline run: {run.correlation_id}")
      if stored.version != run.version:
        raise StaleRunError(run.correlation_id, run.version)
      run.version += 1
      self._runs[run.correlation_id] = copy.deepcopy(run)


class PostgresRunsRepository(RunsRepository):
  """Persist pipeline runs to Postgres using SQLAlchemy.

  Saves are compare-and-set on the `version` column, so two writers that loaded
  the same run cannot both apply a transition.
  """

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory or get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def create(self, run: PipelineRun) -> bool:
    async with self._session_factory() as session:
      session.add(PipelineRunRow(correlation_id=run.correlation_id, version=run.version, **_row_values(run)))
      try:
        await session.commit()
      except IntegrityError:
        await session.rollback()
        return False
      return True

  async def get(self, correlation_id: str) -> PipelineRun | None:
    async with self._session_factory() as session:
      row = await session.get(PipelineRunRow, correlation_id)
      return self._model_to_record(row) if row is not None else None

  async def get_active_for_project(self, project_id: str) -> PipelineRun | None:
    async with self._session_factory() as session:
      stmt = select(PipelineRunRow).where(PipelineRunRow.project_id == project_id, PipelineRunRow.archived.is_(False)).order_by(PipelineRunRow.started_at.desc()).limit(1)
      row = (await session.execute(stmt)).scalar_one_or_none()
      return self._model_to_record(row) if row is not None else None

  async def get_latest_for_project(self, project_id: str) -> PipelineRun | None:
    async with self._session_factory() as session:
      stmt = select(PipelineRunRow).where(PipelineRunRow.project_id == project_id).order_by(PipelineRunRow.started_at.desc()).limit(1)
      row = (await session.execute(stmt)).scalar_one_or_none()
      return self._model_to_record(row) if row is not None else None

  async def save(self, run: PipelineRun) -> None:
    async with self._session_factory() as session:
      stmt = (
        update(PipelineRunRow)
        .where(PipelineRunRow.correlation_id == run.correlation_id, PipelineRunRow.version == run.version)
        .values(version=run.version + 1, **_row_values(run))
        .returning(PipelineRunRow.version)
      )
      saved = (await session.execute(stmt)).scalar_one_or_none()
      if saved is None:
        await session.rollback()
        if await session.get(PipelineRunRow, run.correlation_id) is None:
          raise KeyError(f"Unknown pipeline run: {run.correlation_id}")
        raise StaleRunError(run.correlation_id, run.version)
      await session.commit()
      run.version = saved

  def _model_to_record(self, row: PipelineRunRow) -> PipelineRun:
    return PipelineRun(
      correlation_id=row.correlation_id,
      project_id=row.project_id,
      user_id=row.user_id,
      prompt=row.prompt,
      stage=PipelineStage(row.stage),
      started_at=row.started_at,
      updated_at=row.updated_at,
      asset_keys=list(row.asset_keys_json or []),
      environment=row.environment,
      idempotency_key=row.idempotency_key,
      generation_id=row.generation_id,
      build_id=row.build_id,
      active_job_id=row.active_job_id,
      attempts_at_stage=row.attempts_at_stage,
      healing_episode_attempts=row.healing_episode_attempts,
      healing_attempts=[HealingAttempt.from_dict(item) for item in row.healing_attempts_json or []],
      specification=row.specification_json,
      last_error=row.last_error,
      deployment_url=row.deployment_url,
      finished_at=row.finished_at,
      archived=row.archived,
      version=row.version,
    )


def _row_values(run: PipelineRun) -> dict[str, Any]:
  return {
    "project_id": run.project_id,
    "user_id": run.user_id,
    "prompt": run.prompt,
    "stage": run.stage.value,
    "asset_keys_json": list(run.asset_keys),
    "environment": run.environment,
    "idempotency_key": run.idempotency_key,
    "generation_id": run.generation_id,
    "build_id": run.build_id,
    "active_job_id": run.active_job_id,
    "attempts_at_stage": run.attempts_at_stage,
    "healing_episode_attempts": run.healing_episode_attempts,
    "healing_attempts_json": [attempt.as_dict() for attempt in run.healing_attempts],
    "specification_json": run.specification,
    "last_error": run.last_error,
    "deployment_url": run.deployment_url,
    "started_at": run.started_at,
    "updated_at": run.updated_at,
    "finished_at": run.finished_at,
    "archived": run.archived,
  }
