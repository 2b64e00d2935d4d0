"""Postgres-backed course file catalog using SQLAlchemy."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select, update

from coursegen.budget.models import DocumentPriorityInfo, Priority
from coursegen.core.database import require_session_factory
from coursegen.jobs.models import CourseFile
from coursegen.schema.generation import CourseFileRow
from coursegen.storage.documents_repo import DocumentRepository
from coursegen.utils.db_retry import execute_with_retry


class PostgresDocumentRepository(DocumentRepository):
  """Persist course files to Postgres."""

  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def add_files(self, files: list[CourseFile]) -> None:
    async def _add() -> None:
      async with self._session_factory() as session:
        for file in files:
          await session.merge(self._record_to_model(file))
        await session.commit()

    await execute_with_retry(operation_name="course_files.add", func=_add)

  async def list_course_files(self, course_id: str) -> list[CourseFile]:
    async def _list() -> list[CourseFile]:
      async with self._session_factory() as session:
        stmt = select(CourseFileRow).where(CourseFileRow.course_id == course_id).order_by(CourseFileRow.file_id)
        result = await session.execute(stmt)
        return [self._model_to_record(row) for row in result.scalars().all()]

    return await execute_with_retry(operation_name="course_files.list", func=_list)

  async def get_file(self, file_id: str) -> CourseFile | None:
    async def _get() -> CourseFile | None:
      async with self._session_factory() as session:
        row = await session.get(CourseFileRow, file_id)
        return self._model_to_record(row) if row is not None else None

    return await execute_with_retry(operation_name="course_files.get", func=_get)

  async def update_file(
    self,
    file_id: str,
    *,
    priority: str | None = None,
    token_count: int | None = None,
    processed_content: str | None = None,
    summary: str | None = None,
    quality: dict[str, Any] | None = None,
    error_message: str | None = None,
    processed: bool | None = None,
  ) -> CourseFile | None:
    changes = {
      "priority": priority,
      "token_count": token_count,
      "processed_content": processed_content,
      "summary": summary,
      "quality_json": quality,
      "error_message": error_message,
      "processed": processed,
    }
    values = {key: value for key, value in changes.items() if value is not None}

    async def _update() -> CourseFile | None:
      async with self._session_factory() as session:
        row = await session.get(CourseFileRow, file_id)
        if row is None:
          return None
        for key, value in values.items():
          setattr(row, key, value)
        await session.commit()
        await session.refresh(row)
        return self._model_to_record(row)

    return await execute_with_retry(operation_name="course_files.update", func=_update)

  async def list_priorities(self, course_id: str) -> list[DocumentPriorityInfo]:
    async def _list() -> list[DocumentPriorityInfo]:
      async with self._session_factory() as session:
        stmt = select(CourseFileRow.file_id, CourseFileRow.priority, CourseFileRow.token_count).where(CourseFileRow.course_id == course_id, CourseFileRow.priority.is_not(None))
        result = await session.execute(stmt)
        return [DocumentPriorityInfo(file_id=file_id, priority=Priority(priority), token_count=token_count or 0) for file_id, priority, token_count in result.all()]

    return await execute_with_retry(operation_name="course_files.list_priorities", func=_list)

  async def reset_file_errors(self, course_id: str) -> int:
    async def _reset() -> int:
      async with self._session_factory() as session:
        stmt = update(CourseFileRow).where(CourseFileRow.course_id == course_id, CourseFileRow.error_message.is_not(None)).values(error_message=None, processed=False)
        result = await session.execute(stmt)
        await session.commit()
        return int(result.rowcount or 0)

    return await execute_with_retry(operation_name="course_files.reset_errors", func=_reset)

  def _record_to_model(self, file: CourseFile) -> CourseFileRow:
    return CourseFileRow(
      file_id=file.file_id,
      course_id=file.course_id,
      storage_path=file.storage_path,
      mime_type=file.mime_type,
      priority=file.priority,
      token_count=file.token_count,
      processed_content=file.processed_content,
      summary=file.summary,
      quality_json=file.quality,
      error_message=file.error_message,
      processed=file.processed,
    )

  def _model_to_record(self, row: CourseFileRow) -> CourseFile:
    return CourseFile(
      file_id=row.file_id,
      course_id=row.course_id,
      storage_path=row.storage_path,
      mime_type=row.mime_type,
      priority=row.priority,
      token_count=row.token_count,
      processed_content=row.processed_content,
      summary=row.summary,
      quality=row.quality_json,
      error_message=row.error_message,
      processed=bool(row.processed),
    )
