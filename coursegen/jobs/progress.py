"""Course progress tracking persisted on the state row."""

from __future__ import annotations

import copy
import logging

from coursegen.errors import GenerationCanceledError, NotFoundError
from coursegen.jobs.models import TOTAL_STAGES, CourseGenerationState, GenerationStatus, ProgressRecord, progress_percentage
from coursegen.storage.courses_repo import CourseStateRepository
from coursegen.utils.ids import utc_timestamp

logger = logging.getLogger(__name__)


def started_key(stage: int) -> str:
  return f"stage_{stage}_started_at"


def completed_key(stage: int) -> str:
  return f"stage_{stage}_completed_at"


def mark_stage_started(progress: ProgressRecord, stage: int, message: str | None = None) -> ProgressRecord:
  """Return a copy of `progress` with the stage start stamped."""
  updated = copy.deepcopy(progress)
  # Per-file stage-2 jobs keep the first start stamp.
  updated.stage_timestamps.setdefault(started_key(stage), utc_timestamp())
  updated.failed_stage = None
  if message:
    updated.message = message
    updated.add_log(message)
  return updated


def mark_stage_completed(progress: ProgressRecord, stage: int, message: str | None = None) -> ProgressRecord:
  """Return a copy of `progress` with the stage counted as finished."""
  updated = copy.deepcopy(progress)
  updated.step = max(updated.step, stage)
  updated.percentage = progress_percentage(updated.step)
  updated.stage_timestamps[completed_key(stage)] = utc_timestamp()
  if message:
    updated.message = message
    updated.add_log(message)
  return updated


def mark_stage_failed(progress: ProgressRecord, stage: int, message: str) -> ProgressRecord:
  updated = copy.deepcopy(progress)
  updated.failed_stage = stage
  updated.message = message
  updated.add_log(f"Stage {stage} failed: {message}")
  return updated


def mark_stage_restarted(progress: ProgressRecord, stage: int) -> ProgressRecord:
  """Roll the step counter back so the restarted stage is counted again."""
  updated = copy.deepcopy(progress)
  updated.step = min(updated.step, stage - 1)
  updated.percentage = progress_percentage(updated.step)
  updated.failed_stage = None
  updated.message = f"Restarting stage {stage}"
  updated.add_log(updated.message)
  for later in range(stage, TOTAL_STAGES + 1):
    updated.stage_timestamps.pop(started_key(later), None)
    updated.stage_timestamps.pop(completed_key(later), None)
  return updated


class ProgressReporter:
  """Writes progress updates for a course without changing its status."""

  def __init__(self, courses_repo: CourseStateRepository) -> None:
    self._courses_repo = courses_repo

  async def _load(self, course_id: str) -> CourseGenerationState:
    state = await self._courses_repo.get_state(course_id)
    if state is None:
      raise NotFoundError(f"Course generation {course_id} was not found.", context={"course_id": course_id})
    return state

  async def report_stage_started(self, course_id: str, stage: int, status: GenerationStatus) -> CourseGenerationState | None:
    """Stamp the stage start while the course is still in `status`."""
    state = await self._load(course_id)
    progress = mark_stage_started(state.progress, stage, f"Stage {stage} started ({status.value})")
    # Guarded by the status so a concurrent cancel is never overwritten.
    updated = await self._courses_repo.update_state(course_id, expected_status=status, current_stage=stage, progress=progress)
    if updated is None:
      logger.info("Skipped stage start report course_id=%s stage=%s expected_status=%s", course_id, stage, status.value)
    return updated

  async def report_message(self, course_id: str, message: str) -> CourseGenerationState | None:
    """Append an intra-stage log line."""
    state = await self._load(course_id)
    if state.is_terminal:
      return None
    progress = copy.deepcopy(state.progress)
    progress.message = message
    progress.add_log(message)
    return await self._courses_repo.update_state(course_id, expected_status=state.status, progress=progress)

  async def ensure_not_cancelled(self, course_id: str) -> None:
    """Raise when the course was cancelled after the current job started."""
    state = await self._courses_repo.get_state(course_id)
    if state is not None and state.status == GenerationStatus.CANCELLED:
      raise GenerationCanceledError(f"Course generation {course_id} was cancelled.", context={"course_id": course_id})
