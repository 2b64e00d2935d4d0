import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from coursegen.errors import ConflictError, CourseGenerationError, JobPayloadValidationError, NotFoundError, ValidationError

logger = logging.getLogger("coursegen.core.exceptions")

_STATUS_BY_ERROR: tuple[tuple[type[CourseGenerationError], int], ...] = (
  (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
  (NotFoundError, status.HTTP_404_NOT_FOUND),
  (ConflictError, status.HTTP_409_CONFLICT),
)
# Pydantic error keys that echo caller input back.
_ECHO_KEYS = frozenset({"input", "url"})


def _json_safe(value: Any) -> Any:
  """Reduce values found in pydantic error contexts to JSON primitives."""
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    return f"{type(value).__name__}: {value}" if str(value) else type(value).__name__
  return str(value)


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Return validation errors without raw input payloads."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    scrubbed = {key: value for key, value in error.items() if key not in _ECHO_KEYS}
    if isinstance(scrubbed.get("ctx"), dict):
      scrubbed["ctx"] = {key: value for key, value in scrubbed["ctx"].items() if key not in _ECHO_KEYS}
    sanitized.append(_json_safe(scrubbed))
  return sanitized


def _respond(request: Request, status_code: int, detail: Any, *, code: str | None = None, headers: dict[str, str] | None = None) -> JSONResponse:
  """Every error body carries `detail`, plus `code` and `requestId` when known."""
  content: dict[str, Any] = {"detail": detail}
  if code:
    content["code"] = code
  request_id = getattr(request.state, "request_id", None)
  if request_id:
    content["requestId"] = request_id
  return JSONResponse(status_code=status_code, content=content, headers=headers)


def status_for_error(exc: CourseGenerationError) -> int:
  """Map a domain error onto the HTTP status returned to callers."""
  for error_type, status_code in _STATUS_BY_ERROR:
    if isinstance(exc, error_type):
      return status_code
  return status.HTTP_500_INTERNAL_SERVER_ERROR


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Last resort for errors nothing else handled."""
  logger.error("Unhandled error request_id=%s path=%s error_type=%s", getattr(request.state, "request_id", None), request.url.path, type(exc).__name__, exc_info=True)
  return _respond(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error", code="INTERNAL_ERROR")


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  errors = _sanitize_validation_errors(exc.errors())
  logger.warning("Request validation failed request_id=%s path=%s method=%s errors=%s", getattr(request.state, "request_id", None), request.url.path, request.method, errors)
  return _respond(request, status.HTTP_422_UNPROCESSABLE_ENTITY, errors, code=ValidationError.code)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Pass 4xx details through; hide 5xx details behind a generic message."""
  from coursegen.config import get_settings

  request_id = getattr(request.state, "request_id", None)
  if exc.status_code >= 500:
    logger.error("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)
    return _respond(request, exc.status_code, "Internal Server Error")

  if get_settings().log_http_4xx:
    logger.warning("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)
  return _respond(request, exc.status_code, exc.detail, headers=getattr(exc, "headers", None))


async def course_generation_exception_handler(request: Request, exc: CourseGenerationError) -> JSONResponse:
  """Return a structured response for domain errors raised by the engine."""
  request_id = getattr(request.state, "request_id", None)
  status_code = status_for_error(exc)

  if status_code >= 500:
    # Provider and storage failures may carry prompts or DSNs; keep them in logs only.
    logger.error("Course generation failure request_id=%s path=%s code=%s", request_id, request.url.path, exc.code, exc_info=True)
    return _respond(request, status_code, "Internal Server Error", code=exc.code)

  detail: Any = str(exc)
  if isinstance(exc, JobPayloadValidationError) and exc.errors:
    detail = {"message": str(exc), "errors": _sanitize_validation_errors(exc.errors)}

  logger.info("Course generation request rejected request_id=%s path=%s status_code=%s code=%s", request_id, request.url.path, status_code, exc.code)
  return _respond(request, status_code, detail, code=exc.code)
