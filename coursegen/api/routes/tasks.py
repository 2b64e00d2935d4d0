from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, status

from coursegen.api.deps import get_container, require_task_secret
from coursegen.api.models import ProcessTasksResponse
from coursegen.services.container import ServiceContainer

router = APIRouter(prefix="/tasks", tags=["tasks"], dependencies=[Depends(require_task_secret)])
logger = logging.getLogger(__name__)


@router.post("/process-next", response_model=ProcessTasksResponse, status_code=status.HTTP_200_OK)
async def process_next(
  limit: int = Query(default=1, ge=1, le=20),
  container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> ProcessTasksResponse:
  """Run up to `limit` queued jobs in-process; used by schedulers and local development."""
  outcomes: list[str] = []
  for _ in range(limit):
    outcome = await container.worker.run_once()
    if outcome == "idle":
      break
    outcomes.append(outcome)

  logger.info("Processed %d queued job(s) outcomes=%s", len(outcomes), outcomes)
  return ProcessTasksResponse(processed=len(outcomes), outcomes=outcomes)
