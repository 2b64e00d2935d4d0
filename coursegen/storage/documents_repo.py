"""Storage interface for course source documents."""

from __future__ import annotations

from typing import Any, Protocol

from coursegen.budget.models import DocumentPriorityInfo
from coursegen.jobs.models import CourseFile


class DocumentRepository(Protocol):
  """Repository contract for the course file catalog."""

  async def add_files(self, files: list[CourseFile]) -> None:
    """Register uploaded files for a course."""

  async def list_course_files(self, course_id: str) -> list[CourseFile]:
    """Return every file attached to a course."""

  async def get_file(self, file_id: str) -> CourseFile | None:
    """Fetch one file record."""

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
    """Apply partial updates to a file record."""

  async def list_priorities(self, course_id: str) -> list[DocumentPriorityInfo]:
    """Return priority and token count for every classified file."""

  async def reset_file_errors(self, course_id: str) -> int:
    """Clear error flags so a restarted stage reprocesses failed files."""
