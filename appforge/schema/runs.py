from __future__ import annotations

from sqlalchemy import Boolean, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from appforge.core.database import Base


class PipelineRunRow(Base):
  __tablename__ = "pipeline_runs"
  __table_args__ = (
    Index("ix_pipeline_runs_project_started", "project_id", "started_at"),
    Index("ux_pipeline_runs_active_project", "project_id", unique=True, postgresql_where=text("archived = false")),
  )

  correlation_id: Mapped[str] = mapped_column(String, primary_key=True)
  project_id: Mapped[str] = mapped_column(String, nullable=False)
  user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  prompt: Mapped[str] = mapped_column(Text, nullable=False)
  stage: Mapped[str] = mapped_column(String, nullable=False, index=True)
  asset_keys_json: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
  environment: Mapped[str] = mapped_column(String, nullable=False, default="preview")
  idempotency_key: Mapped[str | None] = mapped_column(String, nullable=True)
  generation_id: Mapped[str | None] = mapped_column(String, nullable=True)
  build_id: Mapped[str | None] = mapped_column(String, nullable=True)
  active_job_id: Mapped[str | None] = mapped_column(String, nullable=True)
  attempts_at_stage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  healing_episode_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  healing_attempts_json: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
  specification_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
  deployment_url: Mapped[str | None] = mapped_column(String, nullable=True)
  started_at: Mapped[str] = mapped_column(String, nullable=False)
  updated_at: Mapped[str] = mapped_column(String, nullable=False)
  finished_at: Mapped[str | None] = mapped_column(String, nullable=True)
  archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
