"""Queue consumer that executes stage jobs."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Literal

from coursegen.errors import GenerationCanceledError, describe_failure
from coursegen.jobs.handlers import StageHandlerRegistry
from coursegen.jobs.orchestrator import StageOrchestrator
from coursegen.queue.interface import LeasedJob, WorkQueue
from coursegen.storage.courses_repo import CourseStateRepository

logger = logging.getLogger(__name__)

WorkerOutcome = Literal["idle", "skipped", "completed", "cancelled", "failed"]


class JobWorker:
  """Dequeues one job at a time, re-checks the course row and runs its handler."""

  def __init__(
    self,
    *,
    queue: WorkQueue,
    courses_repo: CourseStateRepository,
    orchestrator: StageOrchestrator,
    registry: StageHandlerRegistry,
    lease_seconds: int = 600,
    heartbeat_seconds: float | None = None,
  ) -> None:
    self._queue = queue
    self._courses_repo = courses_repo
    self._orchestrator = orchestrator
    self._registry = registry
    self._lease_seconds = lease_seconds
    self._heartbeat_seconds = heartbeat_seconds if heartbeat_seconds is not None else lease_seconds / 3

  async def run_once(self) -> WorkerOutcome:
    """Process at most one job."""
    lease = await self._queue.dequeue(self._lease_seconds)
    if lease is None:
      return "idle"

    job = lease.job
    state = await self._courses_repo.get_state(job.course_id)
    # A cancel or a competing transition may have landed after the job was queued.
    if state is None or state.is_terminal or state.status.running_stage != job.stage:
      logger.info("Skipping stale job job_id=%s course_id=%s stage=%s status=%s", job.job_id, job.course_id, job.stage, state.status.value if state else None)
      await self._queue.ack(lease)
      return "skipped"

    await self._orchestrator.progress.report_stage_started(job.course_id, job.stage, state.status)
    logger.info("Running job job_id=%s course_id=%s type=%s file_id=%s", job.job_id, job.course_id, job.job_type.value, job.file_id)

    outcome: WorkerOutcome = "completed"
    failure: Exception | None = None
    # Stages can outlive one lease; renewal keeps the job invisible to other workers.
    heartbeat = asyncio.create_task(self._keep_lease(lease))
    try:
      handler = self._registry.resolve(job.job_type)
      result = await handler.process(job)
      await self._orchestrator.handle_stage_result(job.course_id, job.stage, result)
    except GenerationCanceledError:
      logger.info("Job stopped after cancellation job_id=%s course_id=%s", job.job_id, job.course_id)
      outcome = "cancelled"
    except Exception as exc:  # noqa: BLE001
      logger.error("Job failed job_id=%s course_id=%s stage=%s", job.job_id, job.course_id, job.stage, exc_info=True)
      outcome, failure = "failed", exc
    finally:
      heartbeat.cancel()
      with contextlib.suppress(asyncio.CancelledError):
        await heartbeat

    if failure is not None:
      await self._record_failure(lease, failure)
    else:
      await self._queue.ack(lease)
    return outcome

  async def _keep_lease(self, lease: LeasedJob) -> None:
    """Renew the lease every heartbeat until cancelled or the lease is lost."""
    while True:
      await asyncio.sleep(self._heartbeat_seconds)
      try:
        renewed = await self._queue.extend(lease, self._lease_seconds)
      except Exception:  # noqa: BLE001
        logger.error("Lease renewal failed job_id=%s", lease.job.job_id, exc_info=True)
        continue
      if not renewed:
        logger.warning("Lease lost while running job_id=%s course_id=%s", lease.job.job_id, lease.job.course_id)
        return
      logger.debug("Lease renewed job_id=%s lease_seconds=%d", lease.job.job_id, self._lease_seconds)

  async def _record_failure(self, lease: LeasedJob, exc: Exception) -> None:
    reason = describe_failure(exc)
    await self._orchestrator.fail_stage(lease.job.course_id, lease.job.stage, exc)
    # Failed jobs are parked for audit and never replayed automatically.
    await self._queue.dead_letter(lease, reason)

  async def run_forever(self, stop_event: asyncio.Event, poll_interval: float = 2.0) -> None:
    """Loop until `stop_event` is set, sleeping while the queue is idle."""
    logger.info("Worker started poll_interval=%.1fs lease_seconds=%d", poll_interval, self._lease_seconds)
    while not stop_event.is_set():
      try:
        outcome = await self.run_once()
      except Exception:  # noqa: BLE001
        # Queue or storage outage; back off and keep the worker alive.
        logger.error("Worker iteration failed", exc_info=True)
        outcome = "idle"
      if outcome == "idle":
        try:
          await asyncio.wait_for(stop_event.wait(), timeout=poll_interval)
        except TimeoutError:
          pass
    logger.info("Worker stopped")
