from __future__ import annotations

import pytest

from coursegen.errors import GenerationCanceledError, NotFoundError
from coursegen.jobs.models import MAX_TRACKED_LOGS, CourseGenerationState, GenerationStatus, ProgressRecord, progress_percentage
from coursegen.jobs.progress import ProgressReporter, completed_key, mark_stage_completed, mark_stage_restarted, mark_stage_started, started_key
from coursegen.storage.memory import InMemoryCourseStateRepository


def _state(course_id: str, status: GenerationStatus = GenerationStatus.ANALYZING_TASK) -> CourseGenerationState:
  return CourseGenerationState(
    course_id=course_id,
    organization_id="org-1",
    user_id="user-1",
    current_stage=3,
    status=status,
    started_at="2026-01-01T00:00:00Z",
    updated_at="2026-01-01T00:00:00Z",
  )


def test_percentage_is_bounded() -> None:
  assert progress_percentage(0) == 0.0
  assert progress_percentage(3) == 50.0
  assert progress_percentage(6) == 100.0
  assert progress_percentage(9) == 100.0
  assert progress_percentage(-1) == 0.0


def test_log_window_keeps_most_recent_entries() -> None:
  progress = ProgressRecord()
  for index in range(MAX_TRACKED_LOGS + 5):
    progress.add_log(f"line {index}")
  assert len(progress.logs) == MAX_TRACKED_LOGS
  assert progress.logs[0] == "line 5"


def test_marking_returns_copies() -> None:
  original = ProgressRecord(step=2)
  started = mark_stage_started(original, 3, "Stage 3 started")
  completed = mark_stage_completed(started, 3)

  assert original.stage_timestamps == {}
  assert started_key(3) in started.stage_timestamps
  assert completed.step == 3
  assert completed.percentage == 50.0
  assert completed_key(3) in completed.stage_timestamps


def test_repeated_start_keeps_first_timestamp() -> None:
  progress = ProgressRecord(stage_timestamps={started_key(2): "2026-01-01T00:00:00Z"})
  assert mark_stage_started(progress, 2).stage_timestamps[started_key(2)] == "2026-01-01T00:00:00Z"


def test_completion_never_moves_step_backwards() -> None:
  assert mark_stage_completed(ProgressRecord(step=4), 2).step == 4


def test_restart_clears_later_timestamps() -> None:
  progress = ProgressRecord(step=4, failed_stage=5)
  for stage in range(1, 5):
    progress.stage_timestamps[started_key(stage)] = "t"
    progress.stage_timestamps[completed_key(stage)] = "t"

  restarted = mark_stage_restarted(progress, 3)
  assert restarted.step == 2
  assert restarted.failed_stage is None
  assert set(restarted.stage_timestamps) == {started_key(1), completed_key(1), started_key(2), completed_key(2)}


def test_progress_record_round_trips_persisted_form() -> None:
  assert ProgressRecord.from_dict(None) == ProgressRecord()
  record = ProgressRecord.from_dict({"step": "2", "percentage": 33.33, "logs": ["a"], "failed_stage": 3})
  assert record.step == 2
  assert record.failed_stage == 3


@pytest.mark.anyio
async def test_stage_start_is_guarded_by_status(course_id: str) -> None:
  repo = InMemoryCourseStateRepository()
  await repo.save_state(_state(course_id))
  reporter = ProgressReporter(repo)

  assert await reporter.report_stage_started(course_id, 3, GenerationStatus.GENERATING_CONTENT) is None
  updated = await reporter.report_stage_started(course_id, 3, GenerationStatus.ANALYZING_TASK)
  assert updated is not None
  assert updated.progress.message == "Stage 3 started (analyzing_task)"


@pytest.mark.anyio
async def test_messages_are_not_written_to_terminal_courses(course_id: str) -> None:
  repo = InMemoryCourseStateRepository()
  await repo.save_state(_state(course_id, GenerationStatus.CANCELLED))
  reporter = ProgressReporter(repo)

  assert await reporter.report_message(course_id, "Lesson 1.1 generated") is None
  state = await repo.get_state(course_id)
  assert state is not None and state.progress.logs == []


@pytest.mark.anyio
async def test_progress_reports_leave_status_and_error_alone(course_id: str) -> None:
  repo = InMemoryCourseStateRepository()
  await repo.save_state(_state(course_id))
  reporter = ProgressReporter(repo)

  await reporter.report_stage_started(course_id, 3, GenerationStatus.ANALYZING_TASK)
  await reporter.report_message(course_id, "Summarized document 1 of 2")
  state = await repo.get_state(course_id)
  assert state is not None
  assert state.status == GenerationStatus.ANALYZING_TASK
  assert state.error_message is None
  assert state.progress.failed_stage is None


@pytest.mark.anyio
async def test_cancellation_check(course_id: str) -> None:
  repo = InMemoryCourseStateRepository()
  reporter = ProgressReporter(repo)
  await repo.save_state(_state(course_id))
  await reporter.ensure_not_cancelled(course_id)

  await repo.update_state(course_id, status=GenerationStatus.CANCELLED)
  with pytest.raises(GenerationCanceledError):
    await reporter.ensure_not_cancelled(course_id)

  with pytest.raises(NotFoundError):
    await reporter.report_message("missing", "hello")
