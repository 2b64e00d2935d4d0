from __future__ import annotations

import asyncio
import logging
import signal

from coursegen.config import get_settings
from coursegen.core.database import dispose_engine
from coursegen.core.logging import _initialize_logging
from coursegen.services.container import build_container

logger = logging.getLogger("coursegen.worker")


async def main() -> None:
  """Run the queue worker until SIGINT or SIGTERM."""
  settings = get_settings()
  _initialize_logging(settings, prefix="coursegen-worker")

  # A separate process cannot see another process's in-memory queue.
  if settings.queue_backend != "postgres":
    logger.warning("Standalone worker running with queue backend=%s; jobs submitted by the API will not be visible", settings.queue_backend)

  container = build_container(settings)
  stop_event = asyncio.Event()
  loop = asyncio.get_running_loop()
  for sig in (signal.SIGINT, signal.SIGTERM):
    loop.add_signal_handler(sig, stop_event.set)

  try:
    await container.worker.run_forever(stop_event, settings.worker_poll_seconds)
  finally:
    await dispose_engine()


if __name__ == "__main__":
  asyncio.run(main())
