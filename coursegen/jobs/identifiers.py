"""Nominal identifier types.

Storage keys are UUIDs that address rows. A lesson label is a positional
``"<section>.<lesson>"`` string shown to humans. Both are ``str`` subclasses so
they serialize transparently, but each constructor rejects the other kind.
"""

from __future__ import annotations

import re
import uuid
from typing import Any

from coursegen.errors import InvalidIdentifierError

_LESSON_LABEL_PATTERN = re.compile(r"^([1-9]\d*)\.([1-9]\d*)$")


class StorageKey(str):
  """UUID-valued key; subclasses are not interchangeable."""

  kind = "storage key"

  def __new__(cls, value: Any) -> StorageKey:
    if isinstance(value, LessonLabel):
      raise InvalidIdentifierError(f"Lesson label '{value}' cannot be used as a {cls.kind}.", context={"value": str(value)})
    if isinstance(value, StorageKey) and not isinstance(value, cls):
      raise InvalidIdentifierError(f"{value.kind} '{value}' cannot be used as a {cls.kind}.", context={"value": str(value)})
    if isinstance(value, uuid.UUID):
      return super().__new__(cls, str(value))
    if not isinstance(value, str):
      raise InvalidIdentifierError(f"{cls.kind} must be a string, got {type(value).__name__}.")
    try:
      parsed = uuid.UUID(value.strip())
    except ValueError as exc:
      raise InvalidIdentifierError(f"Invalid {cls.kind}: '{value}'.", context={"value": value}) from exc
    return super().__new__(cls, str(parsed))

  def __repr__(self) -> str:
    return f"{type(self).__name__}({str(self)!r})"


class CourseId(StorageKey):
  kind = "course id"


class FileId(StorageKey):
  kind = "file id"


class JobId(StorageKey):
  kind = "job id"


class OrganizationId(StorageKey):
  kind = "organization id"


class UserId(StorageKey):
  kind = "user id"


class LessonLabel(str):
  """Human-readable lesson position such as ``"2.3"``."""

  def __new__(cls, value: Any) -> LessonLabel:
    if isinstance(value, StorageKey):
      raise InvalidIdentifierError(f"{value.kind} '{value}' cannot be used as a lesson label.", context={"value": str(value)})
    if not isinstance(value, str) or not _LESSON_LABEL_PATTERN.match(value.strip()):
      raise InvalidIdentifierError(f"Invalid lesson label: '{value}'. Expected '<section>.<lesson>'.", context={"value": str(value)})
    return super().__new__(cls, value.strip())

  @classmethod
  def of(cls, section: int, lesson: int) -> LessonLabel:
    return cls(f"{section}.{lesson}")

  @property
  def section(self) -> int:
    return int(self.split(".", 1)[0])

  @property
  def lesson(self) -> int:
    return int(self.split(".", 1)[1])

  def __repr__(self) -> str:
    return f"LessonLabel({str(self)!r})"
