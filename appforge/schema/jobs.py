from __future__ import annotations

from sqlalchemy import Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from appforge.core.database import Base


class QueueJob(Base):
  __tablename__ = "queue_jobs"
  __table_args__ = (
    UniqueConstraint("queue_name", "job_id", name="ux_queue_jobs_queue_job"),
    Index("ix_queue_jobs_claim", "queue_name", "status", "priority", "available_at"),
  )

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  queue_name: Mapped[str] = mapped_column(String, nullable=False)
  job_id: Mapped[str] = mapped_column(String, nullable=False)
  name: Mapped[str] = mapped_column(String, nullable=False)
  payload_json: Mapped[dict] = mapped_column(JSONB, nullable=False)
  priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  status: Mapped[str] = mapped_column(String, nullable=False)
  attempts_made: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
  backoff_json: Mapped[dict] = mapped_column(JSONB, nullable=False)
  correlation_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  timeout_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
  created_at: Mapped[float] = mapped_column(Float, nullable=False)
  available_at: Mapped[float] = mapped_column(Float, nullable=False)
  started_at: Mapped[float | None] = mapped_column(Float, nullable=True)
  finished_at: Mapped[float | None] = mapped_column(Float, nullable=True)
  failed_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
  result_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  error_history_json: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
