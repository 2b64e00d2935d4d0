"""In-process work queue used for local runs and tests."""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from coursegen.errors import DuplicateJobError
from coursegen.jobs.models import GenerationJob
from coursegen.queue.interface import LeasedJob, WorkQueue

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
  job: GenerationJob
  sequence: int
  lease_token: str | None = None
  lease_expires_at: float | None = None


@dataclass
class DeadLetter:
  job: GenerationJob
  reason: str
  recorded_at: float = field(default_factory=time.time)


class InMemoryWorkQueue(WorkQueue):
  """Heap ordered by (priority, sequence) with expiring leases."""

  def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
    self._clock = clock
    self._lock = asyncio.Lock()
    self._sequence = itertools.count()
    self._ready: list[tuple[int, int, str]] = []
    self._entries: dict[str, _Entry] = {}
    self._dedup: dict[str, str] = {}
    self.dead_letters: list[DeadLetter] = []

  async def enqueue(self, job: GenerationJob) -> None:
    async with self._lock:
      self._reclaim_expired()
      holder = self._dedup.get(job.dedup_key)
      if holder is not None:
        raise DuplicateJobError(f"A {job.job_type.value} job is already in flight for course {job.course_id}.", context={"dedup_key": job.dedup_key, "job_id": holder})

      entry = _Entry(job=job, sequence=next(self._sequence))
      self._entries[job.job_id] = entry
      self._dedup[job.dedup_key] = job.job_id
      heapq.heappush(self._ready, (job.priority, entry.sequence, job.job_id))
      logger.debug("Enqueued job job_id=%s type=%s dedup_key=%s", job.job_id, job.job_type.value, job.dedup_key)

  async def dequeue(self, lease_seconds: int) -> LeasedJob | None:
    async with self._lock:
      self._reclaim_expired()
      while self._ready:
        _priority, _sequence, job_id = heapq.heappop(self._ready)
        entry = self._entries.get(job_id)
        # Skip heap slots left behind by acked, cancelled or re-queued entries.
        if entry is None or entry.lease_token is not None:
          continue
        entry.lease_token = str(uuid.uuid4())
        entry.lease_expires_at = self._clock() + lease_seconds
        return LeasedJob(job=entry.job, lease_token=entry.lease_token, lease_expires_at=entry.lease_expires_at)
      return None

  async def extend(self, lease: LeasedJob, lease_seconds: int) -> bool:
    async with self._lock:
      # An already-expired lease is reclaimed first and cannot be revived.
      self._reclaim_expired()
      entry = self._entries.get(lease.job.job_id)
      if entry is None or entry.lease_token != lease.lease_token:
        return False
      entry.lease_expires_at = self._clock() + lease_seconds
      return True

  async def ack(self, lease: LeasedJob) -> None:
    async with self._lock:
      self._release(lease)

  async def dead_letter(self, lease: LeasedJob, reason: str) -> None:
    async with self._lock:
      if self._release(lease):
        self.dead_letters.append(DeadLetter(job=lease.job, reason=reason))
        logger.warning("Dead-lettered job job_id=%s type=%s reason=%s", lease.job.job_id, lease.job.job_type.value, reason)

  async def in_flight(self, dedup_key: str) -> bool:
    async with self._lock:
      self._reclaim_expired()
      return dedup_key in self._dedup

  async def cancel_course(self, course_id: str) -> int:
    async with self._lock:
      removed = 0
      for job_id, entry in list(self._entries.items()):
        if entry.job.course_id == course_id and entry.lease_token is None:
          self._drop(job_id)
          removed += 1
      return removed

  def _release(self, lease: LeasedJob) -> bool:
    entry = self._entries.get(lease.job.job_id)
    if entry is None or entry.lease_token != lease.lease_token:
      logger.warning("Ignoring stale lease job_id=%s", lease.job.job_id)
      return False
    self._drop(lease.job.job_id)
    return True

  def _drop(self, job_id: str) -> None:
    entry = self._entries.pop(job_id, None)
    if entry is not None and self._dedup.get(entry.job.dedup_key) == job_id:
      del self._dedup[entry.job.dedup_key]

  def _reclaim_expired(self) -> None:
    now = self._clock()
    for job_id, entry in self._entries.items():
      if entry.lease_expires_at is not None and entry.lease_expires_at <= now:
        logger.info("Lease expired; job visible again job_id=%s", job_id)
        entry.lease_token = None
        entry.lease_expires_at = None
        heapq.heappush(self._ready, (entry.job.priority, entry.sequence, job_id))
