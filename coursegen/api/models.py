from __future__ import annotations

from typing import Any, Literal
from uuid import UUID

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, StrictStr

from coursegen.jobs.models import CourseFile, CourseGenerationState, GenerationStatus, JobType
from coursegen.jobs.payloads import GenerationPreferences, _to_camel

_MODEL_CONFIG = ConfigDict(populate_by_name=True, extra="forbid", alias_generator=_to_camel)

# Identity and file fields are carried on the state row, not in the stage request.
_REQUEST_EXCLUDE = {"organization_id", "user_id", "files"}


class CourseFileInput(BaseModel):
  """Uploaded document registered when generation starts."""

  model_config = _MODEL_CONFIG

  file_id: UUID
  storage_path: StrictStr = Field(min_length=1)
  mime_type: StrictStr = Field(min_length=1)
  priority: Literal["HIGH", "LOW"] | None = Field(default=None, description="Optional uploader-assigned priority class.")

  def to_course_file(self, course_id: str) -> CourseFile:
    return CourseFile(file_id=str(self.file_id), course_id=course_id, storage_path=self.storage_path, mime_type=self.mime_type, priority=self.priority)


class StartGenerationRequest(BaseModel):
  """Start a course generation run."""

  model_config = _MODEL_CONFIG

  organization_id: UUID
  user_id: UUID
  title: StrictStr | None = Field(default=None, min_length=1, max_length=500)
  settings: dict[str, Any] | None = Field(default=None, description="Opaque course settings forwarded to the analysis stage.")
  webhook_url: AnyHttpUrl | None = None
  preferences: GenerationPreferences | None = None
  language: StrictStr | None = Field(default=None, min_length=2, max_length=8)
  model_override: StrictStr | None = None
  output_format: Literal["json", "html", "scorm"] | None = None
  notify_user: bool | None = None
  metadata: dict[str, Any] | None = None
  locale: Literal["ru", "en"] | None = None
  files: list[CourseFileInput] = Field(default_factory=list, max_length=100)

  def to_stage_request(self) -> dict[str, Any]:
    """Wire-form request fields that later stage payloads are derived from."""
    return self.model_dump(mode="json", by_alias=True, exclude_none=True, exclude=_REQUEST_EXCLUDE)


class SubmitJobRequest(BaseModel):
  model_config = _MODEL_CONFIG

  job_type: JobType
  payload: dict[str, Any]
  priority: int = Field(default=0, ge=0, le=100)


class SubmitJobResponse(BaseModel):
  model_config = ConfigDict(populate_by_name=True, alias_generator=_to_camel)

  job_id: str


class StageActionRequest(BaseModel):
  """Stage ordinal targeted by approve and restart."""

  model_config = _MODEL_CONFIG

  stage_number: int = Field(ge=1, le=6)


class ProgressResponse(BaseModel):
  model_config = ConfigDict(populate_by_name=True, alias_generator=_to_camel)

  step: int
  percentage: float
  message: str | None = None
  stage_timestamps: dict[str, str]
  failed_stage: int | None = None
  logs: list[str]


class GenerationStateResponse(BaseModel):
  """Public view of a course generation state row."""

  model_config = ConfigDict(populate_by_name=True, alias_generator=_to_camel)

  course_id: str
  organization_id: str
  user_id: str
  current_stage: int
  status: GenerationStatus
  started_at: str
  updated_at: str
  progress: ProgressResponse
  error_message: str | None = None
  stage_outputs: dict[str, Any]
  analysis_result: dict[str, Any] | None = None
  course_structure: dict[str, Any] | None = None
  budget_allocation: dict[str, Any] | None = None

  @classmethod
  def from_state(cls, state: CourseGenerationState) -> GenerationStateResponse:
    return cls(
      course_id=state.course_id,
      organization_id=state.organization_id,
      user_id=state.user_id,
      current_stage=state.current_stage,
      status=state.status,
      started_at=state.started_at,
      updated_at=state.updated_at,
      progress=ProgressResponse(**state.progress.to_dict()),
      error_message=state.error_message,
      stage_outputs=state.stage_outputs,
      analysis_result=state.analysis_result,
      course_structure=state.course_structure,
      budget_allocation=state.budget_allocation,
    )


class ProcessTasksResponse(BaseModel):
  model_config = ConfigDict(populate_by_name=True, alias_generator=_to_camel)

  processed: int
  outcomes: list[str]
