"""Shared FastAPI dependencies resolving the service container."""

from __future__ import annotations

import logging
import secrets

from fastapi import Depends, Header, HTTPException, Request, status

from coursegen.config import Settings, get_settings
from coursegen.jobs.orchestrator import StageOrchestrator
from coursegen.services.container import ServiceContainer

logger = logging.getLogger(__name__)


def get_container(request: Request) -> ServiceContainer:
  """Return the container built during application startup."""
  container = getattr(request.app.state, "container", None)
  if container is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is still starting.")
  return container


def get_orchestrator(container: ServiceContainer = Depends(get_container)) -> StageOrchestrator:  # noqa: B008
  return container.orchestrator


def require_task_secret(
  settings: Settings = Depends(get_settings),  # noqa: B008
  authorization: str | None = Header(default=None),
  x_coursegen_task_secret: str | None = Header(default=None),
) -> None:
  """Deny internal task calls unless they carry the shared task secret."""
  if not settings.task_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Task authentication is not configured.")
  header_valid = secrets.compare_digest(x_coursegen_task_secret or "", settings.task_secret)
  bearer_valid = secrets.compare_digest(authorization or "", f"Bearer {settings.task_secret}")
  if not header_valid and not bearer_valid:
    logger.warning("Unauthorized access attempt to internal task endpoint")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid task secret.")
