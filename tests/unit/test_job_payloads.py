from __future__ import annotations

import pytest

from coursegen.errors import JobPayloadValidationError
from coursegen.jobs.models import JobType
from coursegen.jobs.payloads import DocumentProcessingPayload, FinalizationPayload, dump_job_payload, payload_field_names, validate_job_payload
from tests.conftest import new_id


def _base(job_type: JobType) -> dict[str, str]:
  return {"jobType": job_type.value, "organizationId": new_id(), "courseId": new_id(), "userId": new_id(), "createdAt": "2026-01-01T00:00:00Z"}


def test_document_payload_applies_chunk_defaults() -> None:
  payload = validate_job_payload(JobType.DOCUMENT_PROCESSING, {**_base(JobType.DOCUMENT_PROCESSING), "fileId": new_id(), "filePath": "a.pdf", "mimeType": "application/pdf"})
  assert isinstance(payload, DocumentProcessingPayload)
  assert payload.chunk_size == 512
  assert payload.chunk_overlap == 50
  assert payload.locale == "ru"


@pytest.mark.parametrize(("chunk_size", "chunk_overlap"), [(128, 50), (4096, 50), (512, 0), (512, 512), (300, 300)])
def test_document_payload_rejects_bad_chunking(chunk_size: int, chunk_overlap: int) -> None:
  raw = {**_base(JobType.DOCUMENT_PROCESSING), "fileId": new_id(), "filePath": "a.pdf", "mimeType": "application/pdf", "chunkSize": chunk_size, "chunkOverlap": chunk_overlap}
  with pytest.raises(JobPayloadValidationError):
    validate_job_payload(JobType.DOCUMENT_PROCESSING, raw)


def test_mismatched_job_type_is_rejected() -> None:
  with pytest.raises(JobPayloadValidationError) as excinfo:
    validate_job_payload(JobType.FINALIZATION, _base(JobType.INITIALIZE))
  assert excinfo.value.errors[0]["loc"] == ["jobType"]


def test_errors_do_not_echo_input() -> None:
  raw = {**_base(JobType.STRUCTURE_ANALYSIS), "webhookUrl": "not a url"}
  with pytest.raises(JobPayloadValidationError) as excinfo:
    validate_job_payload(JobType.STRUCTURE_ANALYSIS, raw)
  assert all("input" not in error for error in excinfo.value.errors)


def test_unknown_fields_are_rejected() -> None:
  with pytest.raises(JobPayloadValidationError):
    validate_job_payload(JobType.INITIALIZE, {**_base(JobType.INITIALIZE), "title": "not accepted here"})


def test_preferences_are_bounded() -> None:
  raw = {**_base(JobType.STRUCTURE_GENERATION), "preferences": {"sectionsCount": 21}}
  with pytest.raises(JobPayloadValidationError):
    validate_job_payload(JobType.STRUCTURE_GENERATION, raw)


def test_finalization_defaults_and_wire_form() -> None:
  payload = validate_job_payload(JobType.FINALIZATION, {**_base(JobType.FINALIZATION), "webhookUrl": "https://hooks.example.com/done"})
  assert isinstance(payload, FinalizationPayload)
  dumped = dump_job_payload(payload)
  assert dumped["outputFormat"] == "json"
  assert dumped["notifyUser"] is True
  assert dumped["webhookUrl"] == "https://hooks.example.com/done"
  assert dumped["jobType"] == "finalization"


def test_field_names_use_wire_aliases() -> None:
  names = payload_field_names(JobType.LESSON_CONTENT)
  assert {"jobType", "courseId", "language", "modelOverride", "locale"} <= names
  assert "model_override" not in names
