"""In-process repositories for local runs without Postgres and for tests."""

from __future__ import annotations

import asyncio
import copy
from dataclasses import replace
from typing import Any

from coursegen.budget.models import BudgetAllocation, DocumentPriorityInfo, Priority
from coursegen.jobs.models import CourseFile, CourseGenerationState, GenerationStatus, ProgressRecord
from coursegen.utils.ids import utc_timestamp


class InMemoryCourseStateRepository:
  """Course state rows kept in a dict; updates are atomic under one lock."""

  def __init__(self) -> None:
    self._states: dict[str, CourseGenerationState] = {}
    self._lock = asyncio.Lock()

  async def save_state(self, state: CourseGenerationState) -> None:
    async with self._lock:
      self._states[state.course_id] = copy.deepcopy(state)

  async def get_state(self, course_id: str) -> CourseGenerationState | None:
    state = self._states.get(course_id)
    # Hand out copies so callers cannot mutate the stored row in place.
    return copy.deepcopy(state) if state is not None else None

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
    async with self._lock:
      record = self._states.get(course_id)
      if record is None:
        return None
      if expected_status is not None and record.status != expected_status:
        return None

      changes = {
        "status": status,
        "current_stage": current_stage,
        "progress": progress,
        "error_message": error_message,
        "stage_outputs": stage_outputs,
        "analysis_result": analysis_result,
        "course_structure": course_structure,
        "budget_allocation": budget_allocation,
      }
      updated = replace(record, updated_at=utc_timestamp(), **{key: copy.deepcopy(value) for key, value in changes.items() if value is not None})
      if clear_error:
        updated.error_message = None
      self._states[course_id] = updated
      return copy.deepcopy(updated)


class InMemoryDocumentRepository:
  """Course file catalog kept in a dict keyed by file id."""

  def __init__(self, files: list[CourseFile] | None = None) -> None:
    self._files: dict[str, CourseFile] = {file.file_id: file for file in files or []}

  async def add_files(self, files: list[CourseFile]) -> None:
    for file in files:
      self._files[file.file_id] = copy.deepcopy(file)

  async def list_course_files(self, course_id: str) -> list[CourseFile]:
    return [copy.deepcopy(file) for file in self._files.values() if file.course_id == course_id]

  async def get_file(self, file_id: str) -> CourseFile | None:
    file = self._files.get(file_id)
    return copy.deepcopy(file) if file is not None else None

  async def update_file(self, file_id: str, **kwargs: Any) -> CourseFile | None:
    record = self._files.get(file_id)
    if record is None:
      return None
    updated = replace(record, **{key: value for key, value in kwargs.items() if value is not None})
    self._files[file_id] = updated
    return copy.deepcopy(updated)

  async def list_priorities(self, course_id: str) -> list[DocumentPriorityInfo]:
    return [
      DocumentPriorityInfo(file_id=file.file_id, priority=Priority(file.priority), token_count=file.token_count or 0)
      for file in self._files.values()
      if file.course_id == course_id and file.priority is not None
    ]

  async def reset_file_errors(self, course_id: str) -> int:
    reset = 0
    for file_id, file in list(self._files.items()):
      if file.course_id == course_id and file.error_message is not None:
        self._files[file_id] = replace(file, error_message=None, processed=False)
        reset += 1
    return reset


class InMemoryBudgetAllocationRepository:
  """Latest allocation per course."""

  def __init__(self) -> None:
    self._allocations: dict[str, BudgetAllocation] = {}

  async def save_allocation(self, allocation: BudgetAllocation) -> None:
    self._allocations[allocation.course_id] = allocation
