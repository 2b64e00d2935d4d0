from __future__ import annotations

import uuid

import pytest

from coursegen.errors import InvalidIdentifierError
from coursegen.jobs.identifiers import CourseId, FileId, LessonLabel


def test_storage_keys_normalize_uuids() -> None:
  raw = uuid.uuid4()
  assert CourseId(raw) == str(raw)
  assert CourseId(f"  {str(raw).upper()} ") == str(raw)


@pytest.mark.parametrize("value", ["", "abc", "1.2", 42])
def test_invalid_storage_keys_are_rejected(value: object) -> None:
  with pytest.raises(InvalidIdentifierError):
    CourseId(value)


def test_kinds_are_not_interchangeable() -> None:
  file_id = FileId(str(uuid.uuid4()))
  with pytest.raises(InvalidIdentifierError):
    CourseId(file_id)
  with pytest.raises(InvalidIdentifierError):
    LessonLabel(file_id)
  with pytest.raises(InvalidIdentifierError):
    CourseId(LessonLabel("1.2"))


def test_lesson_labels() -> None:
  label = LessonLabel.of(2, 3)
  assert label == "2.3"
  assert (label.section, label.lesson) == (2, 3)
  for invalid in ("0.1", "1", "1.2.3", "a.b", str(uuid.uuid4())):
    with pytest.raises(InvalidIdentifierError):
      LessonLabel(invalid)
