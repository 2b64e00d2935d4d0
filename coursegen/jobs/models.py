"""Domain models for staged course generation."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

TOTAL_STAGES = 6
MAX_TRACKED_LOGS = 100


class JobType(str, Enum):
  """Kinds of stage jobs, one per pipeline stage."""

  INITIALIZE = "initialize"
  DOCUMENT_PROCESSING = "document_processing"
  STRUCTURE_ANALYSIS = "structure_analysis"
  STRUCTURE_GENERATION = "structure_generation"
  LESSON_CONTENT = "lesson_content"
  FINALIZATION = "finalization"

  @property
  def stage(self) -> int:
    return _STAGE_BY_JOB_TYPE[self]

  @classmethod
  def for_stage(cls, stage: int) -> JobType:
    """Return the job type that executes a stage ordinal."""
    try:
      return _JOB_TYPE_BY_STAGE[stage]
    except KeyError as exc:
      raise ValueError(f"Stage {stage} has no job type.") from exc


class GenerationStatus(str, Enum):
  """Closed set of course generation statuses exposed to callers."""

  INITIALIZING = "initializing"
  PROCESSING_DOCUMENTS = "processing_documents"
  ANALYZING_TASK = "analyzing_task"
  GENERATING_STRUCTURE = "generating_structure"
  GENERATING_CONTENT = "generating_content"
  FINALIZING = "finalizing"
  STAGE_2_AWAITING_APPROVAL = "stage_2_awaiting_approval"
  STAGE_3_AWAITING_APPROVAL = "stage_3_awaiting_approval"
  STAGE_4_AWAITING_APPROVAL = "stage_4_awaiting_approval"
  STAGE_5_AWAITING_APPROVAL = "stage_5_awaiting_approval"
  COMPLETED = "completed"
  FAILED = "failed"
  CANCELLED = "cancelled"

  @property
  def is_terminal(self) -> bool:
    return self in _TERMINAL_STATUSES

  @property
  def running_stage(self) -> int | None:
    """Stage ordinal whose handler runs under this status, if any."""
    return _STAGE_BY_RUNNING_STATUS.get(self)

  @property
  def awaiting_stage(self) -> int | None:
    """Stage ordinal this approval gate follows, if this is a gate."""
    return _STAGE_BY_GATE.get(self)

  @classmethod
  def running(cls, stage: int) -> GenerationStatus:
    try:
      return _RUNNING_STATUS_BY_STAGE[stage]
    except KeyError as exc:
      raise ValueError(f"Stage {stage} has no running status.") from exc

  @classmethod
  def awaiting(cls, stage: int) -> GenerationStatus:
    try:
      return _GATE_BY_STAGE[stage]
    except KeyError as exc:
      raise ValueError(f"Stage {stage} has no approval gate.") from exc


_JOB_TYPE_BY_STAGE: dict[int, JobType] = {
  1: JobType.INITIALIZE,
  2: JobType.DOCUMENT_PROCESSING,
  3: JobType.STRUCTURE_ANALYSIS,
  4: JobType.STRUCTURE_GENERATION,
  5: JobType.LESSON_CONTENT,
  6: JobType.FINALIZATION,
}
_STAGE_BY_JOB_TYPE: dict[JobType, int] = {job_type: stage for stage, job_type in _JOB_TYPE_BY_STAGE.items()}

_RUNNING_STATUS_BY_STAGE: dict[int, GenerationStatus] = {
  1: GenerationStatus.INITIALIZING,
  2: GenerationStatus.PROCESSING_DOCUMENTS,
  3: GenerationStatus.ANALYZING_TASK,
  4: GenerationStatus.GENERATING_STRUCTURE,
  5: GenerationStatus.GENERATING_CONTENT,
  6: GenerationStatus.FINALIZING,
}
_STAGE_BY_RUNNING_STATUS: dict[GenerationStatus, int] = {status: stage for stage, status in _RUNNING_STATUS_BY_STAGE.items()}

_GATE_BY_STAGE: dict[int, GenerationStatus] = {
  2: GenerationStatus.STAGE_2_AWAITING_APPROVAL,
  3: GenerationStatus.STAGE_3_AWAITING_APPROVAL,
  4: GenerationStatus.STAGE_4_AWAITING_APPROVAL,
  5: GenerationStatus.STAGE_5_AWAITING_APPROVAL,
}
_STAGE_BY_GATE: dict[GenerationStatus, int] = {status: stage for stage, status in _GATE_BY_STAGE.items()}

_TERMINAL_STATUSES = frozenset({GenerationStatus.COMPLETED, GenerationStatus.FAILED, GenerationStatus.CANCELLED})


def progress_percentage(completed_stages: int) -> float:
  """Percentage of the pipeline finished after `completed_stages` stages."""
  completed = min(max(completed_stages, 0), TOTAL_STAGES)
  return round(completed / TOTAL_STAGES * 100, 2)


@dataclass
class ProgressRecord:
  """Persisted progress snapshot rendered by realtime consumers."""

  step: int = 0
  percentage: float = 0.0
  message: str | None = None
  stage_timestamps: dict[str, str] = field(default_factory=dict)
  failed_stage: int | None = None
  logs: list[str] = field(default_factory=list)

  def add_log(self, message: str) -> None:
    """Append a log line while preserving the rolling window."""
    self.logs.append(message)
    if len(self.logs) > MAX_TRACKED_LOGS:
      self.logs = self.logs[-MAX_TRACKED_LOGS:]

  def to_dict(self) -> dict[str, Any]:
    return asdict(self)

  @classmethod
  def from_dict(cls, data: dict[str, Any] | None) -> ProgressRecord:
    if not data:
      return cls()
    return cls(
      step=int(data.get("step") or 0),
      percentage=float(data.get("percentage") or 0.0),
      message=data.get("message"),
      stage_timestamps=dict(data.get("stage_timestamps") or {}),
      failed_stage=data.get("failed_stage"),
      logs=list(data.get("logs") or [])[-MAX_TRACKED_LOGS:],
    )


@dataclass(frozen=True)
class GenerationJob:
  """One queued stage execution; never mutated after enqueue."""

  job_id: str
  job_type: JobType
  organization_id: str
  course_id: str
  user_id: str
  payload: dict[str, Any]
  created_at: str
  idempotency_key: str
  priority: int = 0
  file_id: str | None = None

  @property
  def stage(self) -> int:
    return self.job_type.stage

  @property
  def dedup_key(self) -> str:
    return dedup_key_for(self.course_id, self.stage, self.file_id)


def dedup_key_for(course_id: str, stage: int, file_id: str | None = None) -> str:
  """Key under which at most one job may be in flight."""
  if file_id:
    return f"{course_id}:{stage}:{file_id}"
  return f"{course_id}:{stage}"


@dataclass
class CourseGenerationState:
  """Single row per course; the source of truth for orchestration."""

  course_id: str
  organization_id: str
  user_id: str
  current_stage: int
  status: GenerationStatus
  started_at: str
  updated_at: str
  progress: ProgressRecord = field(default_factory=ProgressRecord)
  error_message: str | None = None
  stage_outputs: dict[str, Any] = field(default_factory=dict)
  analysis_result: dict[str, Any] | None = None
  course_structure: dict[str, Any] | None = None
  budget_allocation: dict[str, Any] | None = None
  request: dict[str, Any] = field(default_factory=dict)

  @property
  def is_terminal(self) -> bool:
    return self.status.is_terminal


@dataclass
class CourseFile:
  """Catalog entry for an uploaded source document."""

  file_id: str
  course_id: str
  storage_path: str
  mime_type: str
  priority: str | None = None
  token_count: int | None = None
  processed_content: str | None = None
  summary: str | None = None
  quality: dict[str, Any] | None = None
  error_message: str | None = None
  processed: bool = False


@dataclass
class StageResult:
  """Output of one stage handler run, handed to the orchestrator."""

  output: dict[str, Any] = field(default_factory=dict)
  file_id: str | None = None
  analysis_result: dict[str, Any] | None = None
  course_structure: dict[str, Any] | None = None
  budget_allocation: dict[str, Any] | None = None
