"""Retry wrapper for idempotent database operations."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError

from coursegen.errors import StorageError

T = TypeVar("T")
logger = logging.getLogger(__name__)

# Postgres SQLSTATEs that clear up on their own when the transaction is replayed.
_TRANSIENT_SQLSTATES = {"40001": "serialization_conflict", "40P01": "deadlock"}
_CONNECTION_HINTS = ("connection", "timeout", "reset", "network", "broken pipe", "lost connection")


@dataclass(frozen=True)
class DBFailureClassification:
  """Classification of one database failure."""

  retryable: bool
  category: str
  sqlstate: str | None


def _extract_sqlstate(exc: BaseException) -> str | None:
  if not isinstance(exc, DBAPIError):
    return None
  orig = getattr(exc, "orig", None)
  for attr in ("pgcode", "sqlstate"):
    value = getattr(orig, attr, None)
    if value:
      return str(value)
  return None


def classify_db_failure(exc: BaseException) -> DBFailureClassification:
  """Decide whether a failed database call is worth replaying."""
  sqlstate = _extract_sqlstate(exc)

  if sqlstate in _TRANSIENT_SQLSTATES:
    return DBFailureClassification(retryable=True, category=_TRANSIENT_SQLSTATES[sqlstate], sqlstate=sqlstate)

  # Integrity, schema and permission classes never succeed on replay.
  if sqlstate and sqlstate[:2] in {"23", "42", "28"}:
    category = {"23": "integrity_error", "42": "schema_error", "28": "permission_error"}[sqlstate[:2]]
    return DBFailureClassification(retryable=False, category=category, sqlstate=sqlstate)

  if isinstance(exc, IntegrityError):
    return DBFailureClassification(retryable=False, category="integrity_error", sqlstate=sqlstate)

  if isinstance(exc, OperationalError):
    message = str(exc).lower()
    if any(hint in message for hint in _CONNECTION_HINTS):
      return DBFailureClassification(retryable=True, category="connectivity_error", sqlstate=sqlstate)
    return DBFailureClassification(retryable=False, category="operational_error", sqlstate=sqlstate)

  return DBFailureClassification(retryable=False, category="unknown_error", sqlstate=sqlstate)


async def execute_with_retry(*, operation_name: str, func: Callable[[], Awaitable[T]], max_attempts: int = 3, initial_backoff_ms: int = 100, max_backoff_ms: int = 2000) -> T:
  """
  Run an idempotent database coroutine, replaying transient failures.

  IntegrityError is re-raised untouched so callers can map unique violations
  to domain conflicts. Other SQLAlchemy failures surface as StorageError.
  """
  attempt = 0
  while True:
    attempt += 1
    try:
      return await func()
    except IntegrityError:
      raise
    except SQLAlchemyError as exc:
      classification = classify_db_failure(exc)
      logger.warning("DB operation failed operation=%s attempt=%d/%d category=%s sqlstate=%s retryable=%s", operation_name, attempt, max_attempts, classification.category, classification.sqlstate or "none", classification.retryable)

      if not classification.retryable or attempt >= max_attempts:
        raise StorageError(f"{operation_name} failed: {exc}", context={"category": classification.category, "sqlstate": classification.sqlstate}) from exc

      # Exponential backoff with +/-25% jitter.
      backoff_ms = min(initial_backoff_ms * (2 ** (attempt - 1)), max_backoff_ms)
      backoff_ms += random.uniform(-0.25, 0.25) * backoff_ms
      await asyncio.sleep(backoff_ms / 1000.0)
