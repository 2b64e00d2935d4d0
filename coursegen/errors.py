"""Error taxonomy shared by the orchestrator, allocator, validator and API layer."""

from __future__ import annotations

from typing import Any


class CourseGenerationError(RuntimeError):
  """Base class for every failure raised by the generation engine."""

  category = "internal_error"
  code = "COURSE_GENERATION_ERROR"

  def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
    super().__init__(message)
    self.context = dict(context or {})


class ValidationError(CourseGenerationError):
  """Rejected input at a call boundary; never retried automatically."""

  category = "validation_error"
  code = "VALIDATION_ERROR"


class JobPayloadValidationError(ValidationError):
  """Raised when a job payload does not match its stage schema."""

  code = "INVALID_JOB_PAYLOAD"

  def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None, context: dict[str, Any] | None = None) -> None:
    super().__init__(message, context=context)
    self.errors = list(errors or [])


class EmptyInputError(ValidationError):
  """Raised when a text input is empty after trimming whitespace."""

  code = "EMPTY_INPUT"


class DimensionMismatchError(ValidationError):
  """Raised when two embedding vectors have different lengths."""

  code = "DIMENSION_MISMATCH"


class EmptyVectorError(ValidationError):
  """Raised when an embedding vector has no components."""

  code = "EMPTY_VECTOR"


class InvalidIdentifierError(ValidationError):
  """Raised when a storage key or positional label is malformed."""

  code = "INVALID_IDENTIFIER"


class ConflictError(CourseGenerationError):
  """Rejected because the current state does not allow the action."""

  category = "conflict_error"
  code = "CONFLICT"


class DuplicateJobError(ConflictError):
  """Raised when a job for the same course and stage is already in flight."""

  code = "DUPLICATE_JOB"


class StaleApprovalError(ConflictError):
  """Raised when an approval targets a gate the course is no longer waiting on."""

  code = "STALE_APPROVAL"


class InvalidTransitionError(ConflictError):
  """Raised when a lifecycle action is not valid from the current status."""

  code = "INVALID_TRANSITION"


class NotFoundError(CourseGenerationError):
  """Raised when a course generation record does not exist."""

  category = "not_found"
  code = "NOT_FOUND"


class UnsupportedJobTypeError(CourseGenerationError):
  """Raised when no stage handler is registered for a job type."""

  code = "UNSUPPORTED_JOB_TYPE"


class ProviderError(CourseGenerationError):
  """Failure of an external LLM, embedding or document-conversion call."""

  category = "provider_error"
  code = "PROVIDER_ERROR"


class EmbeddingProviderError(ProviderError):
  """Embedding request failed or returned an unusable response."""

  code = "EMBEDDING_PROVIDER_ERROR"


class LLMProviderError(ProviderError):
  """LLM request failed or returned an unusable response."""

  code = "LLM_PROVIDER_ERROR"


class DocumentConversionError(ProviderError):
  """Document conversion service failed for a source file."""

  code = "DOCUMENT_CONVERSION_ERROR"


class StorageError(CourseGenerationError):
  """Failure reading or writing durable state."""

  category = "storage_error"
  code = "STORAGE_ERROR"


class QualityGateError(CourseGenerationError):
  """A generated summary did not retain enough fidelity to its source."""

  category = "quality_gate_error"
  code = "QUALITY_GATE_FAILED"


class GenerationCanceledError(CourseGenerationError):
  """Raised inside a handler when the course was cancelled mid-stage."""

  category = "cancelled"
  code = "GENERATION_CANCELLED"


def describe_failure(exc: BaseException) -> str:
  """Render an exception as `<category>: <message>` for the course error_message."""
  category = getattr(exc, "category", None) if isinstance(exc, CourseGenerationError) else None
  message = str(exc).strip() or type(exc).__name__
  if category is None:
    return f"internal_error: {type(exc).__name__}: {message}"
  return f"{category}: {message}"
