"""Retry logic with specific backoff strategy."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import httpx

from coursegen.errors import CourseGenerationError, ProviderError

T = TypeVar("T")
logger = logging.getLogger(__name__)

DEFAULT_DELAYS: tuple[float, ...] = (5, 20, 50)
_RATE_LIMIT_HINTS = ("429", "too many requests", "resource exhausted", "quota exceeded", "rate limit")
_TIMEOUT_HINTS = ("timed out", "timeout")


def is_retryable_provider_error(exc: BaseException) -> bool:
  """Rate limits, quota exhaustion and timeouts are worth replaying; nothing else is."""
  # Validation and conflict errors are never retried, even if wrapped by a provider.
  if isinstance(exc, CourseGenerationError) and not isinstance(exc, ProviderError):
    return False
  if isinstance(exc, TimeoutError | httpx.TimeoutException):
    return True
  message = str(exc).lower()
  if any(hint in message for hint in _RATE_LIMIT_HINTS + _TIMEOUT_HINTS):
    return True
  # Provider wrappers chain the SDK error; judge by the original cause.
  if exc.__cause__ is not None:
    return is_retryable_provider_error(exc.__cause__)
  return False


async def retry_with_backoff(func: Callable[..., Awaitable[T]], *args: Any, delays: Sequence[float] = DEFAULT_DELAYS, **kwargs: Any) -> T:
  """
  Execute a coroutine function with bounded retries for rate-limit, quota and timeout errors.

  Delays default to 5s, 20s, 50s; the call is attempted len(delays) + 1 times.
  """
  for attempt, delay in enumerate(delays):
    try:
      return await func(*args, **kwargs)
    except Exception as e:
      if not is_retryable_provider_error(e):
        raise
      logger.warning("Retry attempt %d/%d needed. Error: %s. Retrying in %ss...", attempt + 1, len(delays), e, delay)
      await asyncio.sleep(delay)

  # Final attempt
  return await func(*args, **kwargs)
