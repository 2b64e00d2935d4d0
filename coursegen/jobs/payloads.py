"""Per-stage job payload schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, StrictStr, ValidationError, model_validator

from coursegen.errors import JobPayloadValidationError
from coursegen.jobs.models import JobType


def _to_camel(string: str) -> str:
  """Convert snake_case to camelCase so payloads keep the queue's wire names."""
  parts = string.split("_")
  if not parts:
    return string
  return parts[0] + "".join(part[:1].upper() + part[1:] for part in parts[1:])


class BaseJobPayload(BaseModel):
  """Fields shared by every stage job."""

  model_config = ConfigDict(populate_by_name=True, extra="forbid", alias_generator=_to_camel)

  job_type: JobType
  organization_id: UUID
  course_id: UUID
  user_id: UUID
  created_at: datetime
  locale: Literal["ru", "en"] = "ru"


class InitializePayload(BaseJobPayload):
  metadata: dict[str, Any] | None = None


class DocumentProcessingPayload(BaseJobPayload):
  file_id: UUID
  file_path: StrictStr = Field(min_length=1)
  mime_type: StrictStr = Field(min_length=1)
  chunk_size: int = Field(default=512, ge=256, le=2048)
  chunk_overlap: int = Field(default=50, gt=0, le=512)

  @model_validator(mode="after")
  def _overlap_smaller_than_chunk(self) -> DocumentProcessingPayload:
    if self.chunk_overlap >= self.chunk_size:
      raise ValueError("chunkOverlap must be smaller than chunkSize.")
    return self


class StructureAnalysisPayload(BaseJobPayload):
  title: StrictStr | None = Field(default=None, min_length=1, max_length=500)
  settings: dict[str, Any] | None = None
  webhook_url: AnyHttpUrl | None = None


class GenerationPreferences(BaseModel):
  model_config = ConfigDict(populate_by_name=True, extra="forbid", alias_generator=_to_camel)

  sections_count: int | None = Field(default=None, ge=1, le=20)
  lessons_per_section: int | None = Field(default=None, ge=1, le=10)


class StructureGenerationPayload(BaseJobPayload):
  analysis_id: StrictStr | None = None
  preferences: GenerationPreferences | None = None


class LessonContentPayload(BaseJobPayload):
  language: StrictStr = Field(default="en", min_length=2, max_length=8)
  model_override: StrictStr | None = None


class FinalizationPayload(BaseJobPayload):
  output_format: Literal["json", "html", "scorm"] = "json"
  notify_user: bool = True
  webhook_url: AnyHttpUrl | None = None


PAYLOAD_MODELS: dict[JobType, type[BaseJobPayload]] = {
  JobType.INITIALIZE: InitializePayload,
  JobType.DOCUMENT_PROCESSING: DocumentProcessingPayload,
  JobType.STRUCTURE_ANALYSIS: StructureAnalysisPayload,
  JobType.STRUCTURE_GENERATION: StructureGenerationPayload,
  JobType.LESSON_CONTENT: LessonContentPayload,
  JobType.FINALIZATION: FinalizationPayload,
}


def validate_job_payload(job_type: JobType, payload: dict[str, Any]) -> BaseJobPayload:
  """Validate a raw payload against its stage schema."""
  model = PAYLOAD_MODELS[job_type]
  try:
    validated = model.model_validate(payload)
  except ValidationError as exc:
    errors = [{key: value for key, value in error.items() if key not in {"input", "url"}} for error in exc.errors()]
    raise JobPayloadValidationError(f"Invalid payload for {job_type.value} job.", errors=errors, context={"job_type": job_type.value}) from exc

  if validated.job_type != job_type:
    raise JobPayloadValidationError(f"Payload jobType '{validated.job_type.value}' does not match {job_type.value}.", errors=[{"loc": ["jobType"], "msg": "job type mismatch", "type": "value_error"}], context={"job_type": job_type.value})
  return validated


def payload_field_names(job_type: JobType) -> frozenset[str]:
  """Wire names accepted by a stage schema."""
  model = PAYLOAD_MODELS[job_type]
  return frozenset(info.alias or name for name, info in model.model_fields.items())


def dump_job_payload(payload: BaseJobPayload) -> dict[str, Any]:
  """Serialize a validated payload back to its camelCase wire form."""
  return payload.model_dump(mode="json", by_alias=True, exclude_none=True)
