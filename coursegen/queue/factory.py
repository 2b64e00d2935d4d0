from __future__ import annotations

from coursegen.config import Settings
from coursegen.queue.interface import WorkQueue
from coursegen.queue.memory import InMemoryWorkQueue
from coursegen.queue.postgres import PostgresWorkQueue


def build_work_queue(settings: Settings) -> WorkQueue:
  """Factory to get the configured work queue."""
  if settings.queue_backend == "postgres":
    return PostgresWorkQueue()
  return InMemoryWorkQueue()
