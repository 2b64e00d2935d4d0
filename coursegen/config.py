"""Application configuration loaded from environment variables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from coursegen.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

_DEFAULT_ORIGINS = "http://localhost:3000"
_DEFAULT_APPROVAL_STAGES = "2,3,4,5"


@dataclass(frozen=True)
class Settings:
  """Typed settings for the course generation service."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  queue_backend: str
  queue_lease_seconds: int
  worker_poll_seconds: float
  approval_stages: frozenset[int]
  quality_threshold: float
  model_tiers: list[dict[str, Any]] | None = field(hash=False)
  embedding_model: str
  embedding_base_url: str | None
  openai_api_key: str | None
  llm_provider: str
  llm_model: str | None
  openrouter_api_key: str | None
  gemini_api_key: str | None
  provider_timeout_seconds: float
  document_converter_url: str | None
  uploads_base_path: str
  task_secret: str | None


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  origins = [origin.strip() for origin in (raw or _DEFAULT_ORIGINS).split(",") if origin.strip()]

  if not origins:
    raise ValueError("COURSEGEN_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("COURSEGEN_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def parse_approval_stages(raw: str | None) -> frozenset[int]:
  """Parse the comma-separated approval gate table; an empty value disables gates."""

  if raw is None:
    raw = _DEFAULT_APPROVAL_STAGES

  stages: set[int] = set()
  for part in raw.split(","):
    part = part.strip()
    if not part:
      continue
    try:
      stage = int(part)
    except ValueError as exc:
      raise ValueError(f"COURSEGEN_APPROVAL_STAGES entry '{part}' is not an integer.") from exc
    if stage < 2 or stage > 5:
      raise ValueError("COURSEGEN_APPROVAL_STAGES may only list stages 2 through 5.")
    stages.add(stage)

  return frozenset(stages)


def _parse_model_tiers(raw: str | None) -> list[dict[str, Any]] | None:
  if not raw:
    return None
  try:
    parsed = json.loads(raw)
  except json.JSONDecodeError as exc:
    raise ValueError("COURSEGEN_MODEL_TIERS must be valid JSON.") from exc
  if not isinstance(parsed, list) or not parsed:
    raise ValueError("COURSEGEN_MODEL_TIERS must be a non-empty JSON list.")
  return parsed


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("COURSEGEN_ENV", "development").lower()
  debug = _parse_bool(os.getenv("COURSEGEN_DEBUG"))

  log_max_bytes = _positive_int("COURSEGEN_LOG_MAX_BYTES", "5242880")
  log_backup_count = int(os.getenv("COURSEGEN_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("COURSEGEN_LOG_BACKUP_COUNT must be zero or a positive integer.")

  queue_backend = (os.getenv("COURSEGEN_QUEUE_BACKEND") or "memory").strip().lower()
  if queue_backend not in {"memory", "postgres"}:
    raise ValueError("COURSEGEN_QUEUE_BACKEND must be 'memory' or 'postgres'.")

  pg_dsn = os.getenv("COURSEGEN_PG_DSN") or os.getenv("DATABASE_URL")
  if queue_backend == "postgres" and not pg_dsn:
    raise ValueError("COURSEGEN_PG_DSN must be set when COURSEGEN_QUEUE_BACKEND=postgres.")

  worker_poll_seconds = float(os.getenv("COURSEGEN_WORKER_POLL_SECONDS", "2"))
  if worker_poll_seconds <= 0:
    raise ValueError("COURSEGEN_WORKER_POLL_SECONDS must be positive.")

  # The quality gate threshold is a similarity score, so it must lie in (0, 1].
  quality_threshold = float(os.getenv("COURSEGEN_QUALITY_THRESHOLD", "0.75"))
  if not 0 < quality_threshold <= 1:
    raise ValueError("COURSEGEN_QUALITY_THRESHOLD must be in the range (0, 1].")

  llm_provider = (os.getenv("COURSEGEN_LLM_PROVIDER") or "openrouter").strip().lower()
  if llm_provider not in {"openrouter", "gemini"}:
    raise ValueError("COURSEGEN_LLM_PROVIDER must be 'openrouter' or 'gemini'.")

  provider_timeout_seconds = float(os.getenv("COURSEGEN_PROVIDER_TIMEOUT_SECONDS", "60"))
  if provider_timeout_seconds <= 0:
    raise ValueError("COURSEGEN_PROVIDER_TIMEOUT_SECONDS must be positive.")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("COURSEGEN_ALLOWED_ORIGINS")),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("COURSEGEN_LOG_HTTP_4XX")),
    pg_dsn=pg_dsn,
    pg_connect_timeout=_positive_int("COURSEGEN_PG_CONNECT_TIMEOUT", "5"),
    queue_backend=queue_backend,
    queue_lease_seconds=_positive_int("COURSEGEN_QUEUE_LEASE_SECONDS", "600"),
    worker_poll_seconds=worker_poll_seconds,
    approval_stages=parse_approval_stages(os.getenv("COURSEGEN_APPROVAL_STAGES")),
    quality_threshold=quality_threshold,
    model_tiers=_parse_model_tiers(os.getenv("COURSEGEN_MODEL_TIERS")),
    embedding_model=os.getenv("COURSEGEN_EMBEDDING_MODEL", "text-embedding-3-small"),
    embedding_base_url=_optional_str(os.getenv("COURSEGEN_EMBEDDING_BASE_URL")),
    openai_api_key=_optional_str(os.getenv("OPENAI_API_KEY")),
    llm_provider=llm_provider,
    llm_model=_optional_str(os.getenv("COURSEGEN_LLM_MODEL")),
    openrouter_api_key=_optional_str(os.getenv("OPENROUTER_API_KEY")),
    gemini_api_key=_optional_str(os.getenv("GEMINI_API_KEY")),
    provider_timeout_seconds=provider_timeout_seconds,
    document_converter_url=_optional_str(os.getenv("COURSEGEN_DOCUMENT_CONVERTER_URL")),
    uploads_base_path=(os.getenv("COURSEGEN_UPLOADS_BASE_PATH") or os.getcwd()).strip(),
    task_secret=_optional_str(os.getenv("COURSEGEN_TASK_SECRET")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration."""
  # Migrations and offline scripts should not depend on unrelated env vars.
  debug = _parse_bool(os.getenv("COURSEGEN_DEBUG"))
  pg_connect_timeout = _positive_int("COURSEGEN_PG_CONNECT_TIMEOUT", "5")
  pg_dsn = os.getenv("COURSEGEN_PG_DSN") or os.getenv("DATABASE_URL")
  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)
