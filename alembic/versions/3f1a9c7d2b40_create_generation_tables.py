"""Create course generation tables.

Revision ID: 3f1a9c7d2b40
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "3f1a9c7d2b40"
down_revision = None
branch_labels = None
depends_on = None

_UTC_NOW_ISO = sa.text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')""")


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "course_generation_states",
    sa.Column("course_id", sa.String(), nullable=False),
    sa.Column("organization_id", sa.String(), nullable=False),
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("current_stage", sa.Integer(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("progress_json", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("error_message", sa.Text(), nullable=True),
    sa.Column("stage_outputs_json", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("analysis_result_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("course_structure_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("budget_allocation_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("request_json", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("started_at", sa.String(), server_default=_UTC_NOW_ISO, nullable=False),
    sa.Column("updated_at", sa.String(), server_default=_UTC_NOW_ISO, nullable=False),
    sa.PrimaryKeyConstraint("course_id"),
  )
  op.create_index(op.f("ix_course_generation_states_organization_id"), "course_generation_states", ["organization_id"], unique=False)
  op.create_index(op.f("ix_course_generation_states_user_id"), "course_generation_states", ["user_id"], unique=False)
  op.create_index(op.f("ix_course_generation_states_status"), "course_generation_states", ["status"], unique=False)

  op.create_table(
    "course_files",
    sa.Column("file_id", sa.String(), nullable=False),
    sa.Column("course_id", sa.String(), nullable=False),
    sa.Column("storage_path", sa.Text(), nullable=False),
    sa.Column("mime_type", sa.String(), nullable=False),
    sa.Column("priority", sa.String(), nullable=True),
    sa.Column("token_count", sa.Integer(), nullable=True),
    sa.Column("processed_content", sa.Text(), nullable=True),
    sa.Column("summary", sa.Text(), nullable=True),
    sa.Column("quality_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("error_message", sa.Text(), nullable=True),
    sa.Column("processed", sa.Boolean(), server_default=sa.text("false"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("file_id"),
  )
  op.create_index(op.f("ix_course_files_course_id"), "course_files", ["course_id"], unique=False)

  op.create_table(
    "budget_allocations",
    sa.Column("course_id", sa.String(), nullable=False),
    sa.Column("total_high_priority_tokens", sa.Integer(), nullable=False),
    sa.Column("total_low_priority_tokens", sa.Integer(), nullable=False),
    sa.Column("selected_model", sa.String(), nullable=False),
    sa.Column("high_budget", sa.Integer(), nullable=False),
    sa.Column("low_budget", sa.Integer(), nullable=False),
    sa.Column("allocated_at", sa.String(), nullable=False),
    sa.ForeignKeyConstraint(["course_id"], ["course_generation_states.course_id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("course_id"),
  )

  op.execute(sa.schema.CreateSequence(sa.Sequence("generation_queue_jobs_seq")))
  op.create_table(
    "generation_queue_jobs",
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("seq", sa.BigInteger(), server_default=sa.text("nextval('generation_queue_jobs_seq')"), nullable=False),
    sa.Column("dedup_key", sa.String(), nullable=False),
    sa.Column("course_id", sa.String(), nullable=False),
    sa.Column("job_type", sa.String(), nullable=False),
    sa.Column("organization_id", sa.String(), nullable=False),
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("file_id", sa.String(), nullable=True),
    sa.Column("payload_json", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("priority", sa.Integer(), nullable=False),
    sa.Column("idempotency_key", sa.String(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("lease_token", sa.String(), nullable=True),
    sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("dead_letter_reason", sa.Text(), nullable=True),
    sa.Column("created_at", sa.String(), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("job_id"),
  )
  op.create_index(op.f("ix_generation_queue_jobs_course_id"), "generation_queue_jobs", ["course_id"], unique=False)
  op.create_index("ix_generation_queue_jobs_ready", "generation_queue_jobs", ["status", "priority", "seq"], unique=False)
  op.create_index("ux_generation_queue_jobs_inflight_dedup", "generation_queue_jobs", ["dedup_key"], unique=True, postgresql_where=sa.text("status IN ('queued', 'leased')"))


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index("ux_generation_queue_jobs_inflight_dedup", table_name="generation_queue_jobs")
  op.drop_index("ix_generation_queue_jobs_ready", table_name="generation_queue_jobs")
  op.drop_index(op.f("ix_generation_queue_jobs_course_id"), table_name="generation_queue_jobs")
  op.drop_table("generation_queue_jobs")
  op.execute(sa.schema.DropSequence(sa.Sequence("generation_queue_jobs_seq")))
  op.drop_table("budget_allocations")
  op.drop_index(op.f("ix_course_files_course_id"), table_name="course_files")
  op.drop_table("course_files")
  op.drop_index(op.f("ix_course_generation_states_status"), table_name="course_generation_states")
  op.drop_index(op.f("ix_course_generation_states_user_id"), table_name="course_generation_states")
  op.drop_index(op.f("ix_course_generation_states_organization_id"), table_name="course_generation_states")
  op.drop_table("course_generation_states")
