import logging
import re
import time
import uuid
from typing import Any

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger("coursegen.core.middleware")

_COURSE_PATH = re.compile(r"/courses/([^/]+)")
# Task pollers hit this on every tick; their volume drowns useful request logs.
_QUIET_PATHS = frozenset({"/internal/tasks/process-next"})
_MAX_REQUEST_ID_LENGTH = 128


def _incoming_request_id(scope: Scope) -> str:
  """Reuse a caller-supplied id so task runners and clients can correlate logs."""
  supplied = Headers(scope=scope).get("x-request-id", "").strip()
  if supplied and len(supplied) <= _MAX_REQUEST_ID_LENGTH and supplied.isprintable():
    return supplied
  return str(uuid.uuid4())


class RequestLoggingMiddleware:
  """Tag each request with an id and log its outcome, never its body."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    request_id = _incoming_request_id(scope)
    scope.setdefault("state", {})["request_id"] = request_id

    path = scope.get("path", "")
    method = scope.get("method", "UNKNOWN")
    match = _COURSE_PATH.search(path)
    course_id = match.group(1) if match else None
    level = logging.DEBUG if path in _QUIET_PATHS else logging.INFO
    logger.log(level, "Incoming request request_id=%s %s %s course_id=%s", request_id, method, path, course_id)

    started = time.perf_counter()
    status_code = 0

    async def send_wrapper(message: dict[str, Any]) -> None:
      nonlocal status_code
      if message.get("type") == "http.response.start":
        status_code = message.get("status", 0)
        headers = MutableHeaders(scope=message)
        if "x-request-id" not in headers:
          headers["x-request-id"] = request_id
      await send(message)

    try:
      await self.app(scope, receive, send_wrapper)
    finally:
      elapsed_ms = (time.perf_counter() - started) * 1000
      # Unhandled errors surface as status 0 here; the exception handler logs the traceback.
      logger.log(level, "Response request_id=%s status=%s course_id=%s (took %.2fms)", request_id, status_code, course_id, elapsed_ms)
