import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from coursegen.config import get_settings
from coursegen.core.database import dispose_engine
from coursegen.core.logging import _initialize_logging
from coursegen.services.container import build_container


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Initialize logging, build the service graph and run the in-process worker when needed."""
  settings = get_settings()
  logger = logging.getLogger("coursegen.core.lifespan")
  _initialize_logging(settings)

  # Tests may install a prepared container before startup.
  if getattr(app.state, "container", None) is None:
    app.state.container = build_container(settings)
  container = app.state.container
  logger.info("Startup complete env=%s database=%s queue=%s", settings.environment, _redact_dsn(settings.pg_dsn), settings.queue_backend)

  stop_event = asyncio.Event()
  worker_task: asyncio.Task[None] | None = None
  # An in-memory queue is only visible to this process, so it must drain here.
  if settings.queue_backend == "memory":
    worker_task = asyncio.create_task(container.worker.run_forever(stop_event, settings.worker_poll_seconds))
    logger.info("Embedded worker started for the in-memory queue")

  try:
    yield
  finally:
    stop_event.set()
    if worker_task is not None:
      with contextlib.suppress(asyncio.CancelledError):
        await worker_task
    await dispose_engine()
    logger.info("Shutdown complete")


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
