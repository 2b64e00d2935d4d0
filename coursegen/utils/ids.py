"""Identifier and timestamp helpers."""

from __future__ import annotations

import time
import uuid
from datetime import UTC, datetime

_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def generate_job_id() -> str:
  """Return a new job identifier."""
  return str(uuid.uuid4())


def generate_idempotency_key(course_id: str, job_type: str) -> str:
  """Return an idempotency key for one submission of a stage job."""
  return f"{course_id}:{job_type}:{int(time.time() * 1000)}"


def utc_timestamp() -> str:
  """Return the current UTC time in the persisted ISO-8601 format."""
  return datetime.now(UTC).strftime(_DATE_FORMAT)
