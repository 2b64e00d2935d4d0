"""Postgres-backed work queue using SKIP LOCKED leasing."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError

from coursegen.core.database import require_session_factory
from coursegen.errors import DuplicateJobError
from coursegen.jobs.models import GenerationJob, JobType
from coursegen.queue.interface import LeasedJob, WorkQueue
from coursegen.schema.generation import GenerationQueueJobRow
from coursegen.utils.db_retry import execute_with_retry

logger = logging.getLogger(__name__)

_IN_FLIGHT = ("queued", "leased")


class PostgresWorkQueue(WorkQueue):
  """Queue rows live in generation_queue_jobs; the partial unique index enforces dedup."""

  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def enqueue(self, job: GenerationJob) -> None:
    async def _insert() -> None:
      async with self._session_factory() as session:
        session.add(
          GenerationQueueJobRow(
            job_id=job.job_id,
            dedup_key=job.dedup_key,
            course_id=job.course_id,
            job_type=job.job_type.value,
            organization_id=job.organization_id,
            user_id=job.user_id,
            file_id=job.file_id,
            payload_json=job.payload,
            priority=job.priority,
            idempotency_key=job.idempotency_key,
            status="queued",
            created_at=job.created_at,
          )
        )
        await session.commit()

    try:
      await execute_with_retry(operation_name="queue.enqueue", func=_insert)
    except IntegrityError as exc:
      raise DuplicateJobError(f"A {job.job_type.value} job is already in flight for course {job.course_id}.", context={"dedup_key": job.dedup_key}) from exc

  async def dequeue(self, lease_seconds: int) -> LeasedJob | None:
    async def _lease() -> LeasedJob | None:
      now = datetime.now(UTC)
      async with self._session_factory() as session:
        # Expired leases are eligible again, so a crashed worker never orphans a job.
        stmt = (
          select(GenerationQueueJobRow)
          .where(or_(GenerationQueueJobRow.status == "queued", (GenerationQueueJobRow.status == "leased") & (GenerationQueueJobRow.lease_expires_at <= now)))
          .order_by(GenerationQueueJobRow.priority, GenerationQueueJobRow.seq)
          .limit(1)
          .with_for_update(skip_locked=True)
        )
        result = await session.execute(stmt)
        row = result.scalars().first()
        if row is None:
          await session.rollback()
          return None

        lease_token = str(uuid.uuid4())
        expires_at = now + timedelta(seconds=lease_seconds)
        row.status = "leased"
        row.lease_token = lease_token
        row.lease_expires_at = expires_at
        job = self._model_to_job(row)
        await session.commit()
        return LeasedJob(job=job, lease_token=lease_token, lease_expires_at=expires_at.timestamp())

    return await execute_with_retry(operation_name="queue.dequeue", func=_lease)

  async def extend(self, lease: LeasedJob, lease_seconds: int) -> bool:
    async def _renew() -> int:
      async with self._session_factory() as session:
        stmt = (
          update(GenerationQueueJobRow)
          .where(GenerationQueueJobRow.job_id == lease.job.job_id, GenerationQueueJobRow.lease_token == lease.lease_token, GenerationQueueJobRow.status == "leased")
          .values(lease_expires_at=datetime.now(UTC) + timedelta(seconds=lease_seconds))
        )
        result = await session.execute(stmt)
        await session.commit()
        return int(result.rowcount or 0)

    return await execute_with_retry(operation_name="queue.extend", func=_renew) > 0

  async def ack(self, lease: LeasedJob) -> None:
    async def _delete() -> int:
      async with self._session_factory() as session:
        stmt = delete(GenerationQueueJobRow).where(GenerationQueueJobRow.job_id == lease.job.job_id, GenerationQueueJobRow.lease_token == lease.lease_token)
        result = await session.execute(stmt)
        await session.commit()
        return int(result.rowcount or 0)

    if await execute_with_retry(operation_name="queue.ack", func=_delete) == 0:
      logger.warning("Ignoring stale lease job_id=%s", lease.job.job_id)

  async def dead_letter(self, lease: LeasedJob, reason: str) -> None:
    async def _park() -> int:
      async with self._session_factory() as session:
        stmt = (
          update(GenerationQueueJobRow)
          .where(GenerationQueueJobRow.job_id == lease.job.job_id, GenerationQueueJobRow.lease_token == lease.lease_token)
          .values(status="dead_letter", dead_letter_reason=reason, lease_token=None, lease_expires_at=None)
        )
        result = await session.execute(stmt)
        await session.commit()
        return int(result.rowcount or 0)

    if await execute_with_retry(operation_name="queue.dead_letter", func=_park) == 0:
      logger.warning("Ignoring stale lease job_id=%s", lease.job.job_id)
      return
    logger.warning("Dead-lettered job job_id=%s type=%s reason=%s", lease.job.job_id, lease.job.job_type.value, reason)

  async def in_flight(self, dedup_key: str) -> bool:
    async def _check() -> bool:
      async with self._session_factory() as session:
        stmt = select(GenerationQueueJobRow.job_id).where(GenerationQueueJobRow.dedup_key == dedup_key, GenerationQueueJobRow.status.in_(_IN_FLIGHT)).limit(1)
        result = await session.execute(stmt)
        return result.first() is not None

    return await execute_with_retry(operation_name="queue.in_flight", func=_check)

  async def cancel_course(self, course_id: str) -> int:
    async def _cancel() -> int:
      async with self._session_factory() as session:
        stmt = delete(GenerationQueueJobRow).where(GenerationQueueJobRow.course_id == course_id, GenerationQueueJobRow.status == "queued")
        result = await session.execute(stmt)
        await session.commit()
        return int(result.rowcount or 0)

    return await execute_with_retry(operation_name="queue.cancel_course", func=_cancel)

  def _model_to_job(self, row: GenerationQueueJobRow) -> GenerationJob:
    return GenerationJob(
      job_id=row.job_id,
      job_type=JobType(row.job_type),
      organization_id=row.organization_id,
      course_id=row.course_id,
      user_id=row.user_id,
      file_id=row.file_id,
      payload=dict(row.payload_json or {}),
      created_at=row.created_at,
      priority=row.priority,
      idempotency_key=row.idempotency_key,
    )
