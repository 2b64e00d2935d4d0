from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, Sequence, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from coursegen.core.database import Base

_UTC_NOW_ISO = text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')""")
QUEUE_SEQUENCE = Sequence("generation_queue_jobs_seq")


class CourseGenerationStateRow(Base):
  __tablename__ = "course_generation_states"

  course_id: Mapped[str] = mapped_column(String, primary_key=True)
  organization_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  current_stage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  status: Mapped[str] = mapped_column(String, nullable=False, index=True)
  progress_json: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  stage_outputs_json: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
  analysis_result_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  course_structure_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  budget_allocation_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  request_json: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
  started_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW_ISO)
  updated_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW_ISO)


class CourseFileRow(Base):
  __tablename__ = "course_files"

  file_id: Mapped[str] = mapped_column(String, primary_key=True)
  course_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  storage_path: Mapped[str] = mapped_column(Text, nullable=False)
  mime_type: Mapped[str] = mapped_column(String, nullable=False)
  priority: Mapped[str | None] = mapped_column(String, nullable=True)
  token_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
  processed_content: Mapped[str | None] = mapped_column(Text, nullable=True)
  summary: Mapped[str | None] = mapped_column(Text, nullable=True)
  quality_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class BudgetAllocationRow(Base):
  __tablename__ = "budget_allocations"

  course_id: Mapped[str] = mapped_column(ForeignKey("course_generation_states.course_id", ondelete="CASCADE"), primary_key=True)
  total_high_priority_tokens: Mapped[int] = mapped_column(Integer, nullable=False)
  total_low_priority_tokens: Mapped[int] = mapped_column(Integer, nullable=False)
  selected_model: Mapped[str] = mapped_column(String, nullable=False)
  high_budget: Mapped[int] = mapped_column(Integer, nullable=False)
  low_budget: Mapped[int] = mapped_column(Integer, nullable=False)
  allocated_at: Mapped[str] = mapped_column(String, nullable=False)


class GenerationQueueJobRow(Base):
  __tablename__ = "generation_queue_jobs"
  __table_args__ = (
    Index("ux_generation_queue_jobs_inflight_dedup", "dedup_key", unique=True, postgresql_where=text("status IN ('queued', 'leased')")),
    Index("ix_generation_queue_jobs_ready", "status", "priority", "seq"),
  )

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  seq: Mapped[int] = mapped_column(BigInteger, QUEUE_SEQUENCE, nullable=False, server_default=QUEUE_SEQUENCE.next_value())
  dedup_key: Mapped[str] = mapped_column(String, nullable=False)
  course_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  job_type: Mapped[str] = mapped_column(String, nullable=False)
  organization_id: Mapped[str] = mapped_column(String, nullable=False)
  user_id: Mapped[str] = mapped_column(String, nullable=False)
  file_id: Mapped[str | None] = mapped_column(String, nullable=True)
  payload_json: Mapped[dict] = mapped_column(JSONB, nullable=False)
  priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  idempotency_key: Mapped[str] = mapped_column(String, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, default="queued")
  lease_token: Mapped[str | None] = mapped_column(String, nullable=True)
  lease_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  dead_letter_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[str] = mapped_column(String, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
