"""Postgres-backed course state repository using SQLAlchemy."""

from __future__ import annotations

from typing import Any

from sqlalchemy import update

from coursegen.core.database import require_session_factory
from coursegen.jobs.models import CourseGenerationState, GenerationStatus, ProgressRecord
from coursegen.schema.generation import CourseGenerationStateRow
from coursegen.storage.courses_repo import CourseStateRepository
from coursegen.utils.db_retry import execute_with_retry
from coursegen.utils.ids import utc_timestamp


class PostgresCourseStateRepository(CourseStateRepository):
  """Persist course generation state rows to Postgres."""

  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def save_state(self, state: CourseGenerationState) -> None:
    async def _save() -> None:
      async with self._session_factory() as session:
        await session.merge(self._record_to_model(state))
        await session.commit()

    await execute_with_retry(operation_name="course_state.save", func=_save)

  async def get_state(self, course_id: str) -> CourseGenerationState | None:
    async def _get() -> CourseGenerationState | None:
      async with self._session_factory() as session:
        row = await session.get(CourseGenerationStateRow, course_id)
        if row is None:
          return None
        return self._model_to_record(row)

    return await execute_with_retry(operation_name="course_state.get", func=_get)

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
    values: dict[str, Any] = {"updated_at": utc_timestamp()}
    if status is not None:
      values["status"] = status.value
    if current_stage is not None:
      values["current_stage"] = current_stage
    if progress is not None:
      values["progress_json"] = progress.to_dict()
    if error_message is not None:
      values["error_message"] = error_message
    if clear_error:
      values["error_message"] = None
    if stage_outputs is not None:
      values["stage_outputs_json"] = stage_outputs
    if analysis_result is not None:
      values["analysis_result_json"] = analysis_result
    if course_structure is not None:
      values["course_structure_json"] = course_structure
    if budget_allocation is not None:
      values["budget_allocation_json"] = budget_allocation

    # The conditional WHERE makes status changes a compare-and-set.
    stmt = update(CourseGenerationStateRow).where(CourseGenerationStateRow.course_id == course_id)
    if expected_status is not None:
      stmt = stmt.where(CourseGenerationStateRow.status == expected_status.value)
    stmt = stmt.values(**values).returning(CourseGenerationStateRow).execution_options(synchronize_session=False)

    async def _update() -> CourseGenerationState | None:
      async with self._session_factory() as session:
        result = await session.execute(stmt)
        row = result.scalars().first()
        record = self._model_to_record(row) if row is not None else None
        await session.commit()
        return record

    return await execute_with_retry(operation_name="course_state.update", func=_update)

  def _record_to_model(self, state: CourseGenerationState) -> CourseGenerationStateRow:
    return CourseGenerationStateRow(
      course_id=state.course_id,
      organization_id=state.organization_id,
      user_id=state.user_id,
      current_stage=state.current_stage,
      status=state.status.value,
      progress_json=state.progress.to_dict(),
      error_message=state.error_message,
      stage_outputs_json=state.stage_outputs,
      analysis_result_json=state.analysis_result,
      course_structure_json=state.course_structure,
      budget_allocation_json=state.budget_allocation,
      request_json=state.request,
      started_at=state.started_at,
      updated_at=state.updated_at,
    )

  def _model_to_record(self, row: CourseGenerationStateRow) -> CourseGenerationState:
    return CourseGenerationState(
      course_id=row.course_id,
      organization_id=row.organization_id,
      user_id=row.user_id,
      current_stage=row.current_stage,
      status=GenerationStatus(row.status),
      progress=ProgressRecord.from_dict(row.progress_json),
      error_message=row.error_message,
      stage_outputs=dict(row.stage_outputs_json or {}),
      analysis_result=row.analysis_result_json,
      course_structure=row.course_structure_json,
      budget_allocation=row.budget_allocation_json,
      request=dict(row.request_json or {}),
      started_at=row.started_at,
      updated_at=row.updated_at,
    )
