from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from coursegen.jobs.models import GenerationJob


@dataclass(frozen=True)
class LeasedJob:
  """A dequeued job plus the token proving the caller holds its lease."""

  job: GenerationJob
  lease_token: str
  lease_expires_at: float


class WorkQueue(Protocol):
  """Durable work queue with dedup, leases and dead-lettering."""

  async def enqueue(self, job: GenerationJob) -> None:
    """Add a job; raises DuplicateJobError while its dedup key is in flight."""
    ...

  async def dequeue(self, lease_seconds: int) -> LeasedJob | None:
    """Lease the next ready job, or return None when the queue is idle."""
    ...

  async def extend(self, lease: LeasedJob, lease_seconds: int) -> bool:
    """Push the lease deadline out; False once the lease is no longer held."""
    ...

  async def ack(self, lease: LeasedJob) -> None:
    """Delete a finished job."""
    ...

  async def dead_letter(self, lease: LeasedJob, reason: str) -> None:
    """Park a failed job for audit and release its dedup key."""
    ...

  async def in_flight(self, dedup_key: str) -> bool:
    """Whether a queued or leased job holds this dedup key."""
    ...

  async def cancel_course(self, course_id: str) -> int:
    """Drop queued, not-leased jobs of a cancelled course."""
    ...
