"""Storage interface for course generation state rows."""

from __future__ import annotations

from typing import Any, Protocol

from coursegen.jobs.models import CourseGenerationState, GenerationStatus, ProgressRecord


class CourseStateRepository(Protocol):
  """Repository contract for the per-course orchestration row."""

  async def save_state(self, state: CourseGenerationState) -> None:
    """Insert or fully replace the state row for a course."""

  async def get_state(self, course_id: str) -> CourseGenerationState | None:
    """Fetch the state row for a course."""

  async def update_state(
    self,
    course_id: str,
    *,
    expected_status: GenerationStatus | None = None,
    status: GenerationStatus | None = None,
    current_stage: int | None = None,
    progress: ProgressRecord | None = None,
    error_message: str | None = None,
    clear_error: bool = False,
    stage_outputs: dict[str, Any] | None = None,
    analysis_result: dict[str, Any] | None = None,
    course_structure: dict[str, Any] | None = None,
    budget_allocation: dict[str, Any] | None = None,
  ) -> CourseGenerationState | None:
    """Apply partial updates; with `expected_status`, only when the row still has that status.

    Returns the updated row, or None when the row is missing or the status check lost.
    """
