"""Embedding-based fidelity check for generated summaries."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass
from typing import Any

from coursegen.ai.embeddings import EmbeddingProvider
from coursegen.errors import CourseGenerationError, DimensionMismatchError, EmbeddingProviderError, EmptyInputError, EmptyVectorError

logger = logging.getLogger(__name__)

DEFAULT_QUALITY_THRESHOLD = 0.75

# Lower-resource languages embed less consistently, so their threshold is relaxed.
LANGUAGE_ADJUSTMENTS: dict[str, float] = {"en": 0.0, "de": 0.0, "es": 0.0, "ru": -0.05}


@dataclass(frozen=True)
class QualityCheckOptions:
  threshold: float | None = None
  debug: bool = False

  def __post_init__(self) -> None:
    if self.threshold is not None and not 0 < self.threshold <= 1:
      raise ValueError("threshold must be in the range (0, 1].")


@dataclass(frozen=True)
class QualityCheckResult:
  """Outcome of one original/summary comparison."""

  quality_score: float
  threshold: float
  quality_check_passed: bool
  original_length: int
  summary_length: int
  compression_ratio: float

  def to_dict(self) -> dict[str, Any]:
    return asdict(self)


def compute_cosine_similarity(vector_a: Sequence[float], vector_b: Sequence[float]) -> float:
  """Cosine similarity clamped to [0, 1]; an all-zero vector scores 0."""
  if len(vector_a) == 0 or len(vector_b) == 0:
    raise EmptyVectorError("Cannot compare empty embedding vectors.", context={"len_a": len(vector_a), "len_b": len(vector_b)})
  if len(vector_a) != len(vector_b):
    raise DimensionMismatchError(f"Embedding dimensions differ: {len(vector_a)} != {len(vector_b)}.", context={"len_a": len(vector_a), "len_b": len(vector_b)})

  # Identical vectors short-circuit so float rounding cannot report less than 1.
  if list(vector_a) == list(vector_b):
    return 0.0 if not any(vector_a) else 1.0

  dot = math.fsum(a * b for a, b in zip(vector_a, vector_b, strict=True))
  norm_a = math.sqrt(math.fsum(a * a for a in vector_a))
  norm_b = math.sqrt(math.fsum(b * b for b in vector_b))
  if norm_a == 0 or norm_b == 0:
    return 0.0

  similarity = dot / (norm_a * norm_b)
  return min(max(similarity, 0.0), 1.0)


def threshold_for_language(base: float, language: str | None) -> float:
  """Apply the per-language adjustment; unknown languages are unadjusted."""
  adjustment = LANGUAGE_ADJUSTMENTS.get((language or "").strip().lower()[:2], 0.0)
  return round(base + adjustment, 4)


class QualityValidator:
  """Scores a summary against its source with one embedding per text."""

  def __init__(self, embedding_provider: EmbeddingProvider, *, default_threshold: float = DEFAULT_QUALITY_THRESHOLD) -> None:
    if not 0 < default_threshold <= 1:
      raise ValueError("default_threshold must be in the range (0, 1].")
    self._embedding_provider = embedding_provider
    self._default_threshold = default_threshold

  @property
  def default_threshold(self) -> float:
    return self._default_threshold

  async def _embed(self, text: str, *, label: str) -> list[float]:
    try:
      return await self._embedding_provider.embed(text)
    except CourseGenerationError:
      raise
    except Exception as exc:
      raise EmbeddingProviderError(f"embedding of {label} failed: {exc}") from exc

  async def validate_summary_quality(self, original_text: str, summary: str, options: QualityCheckOptions | None = None) -> QualityCheckResult:
    """Compare a summary with its source; nothing is persisted."""
    options = options or QualityCheckOptions()
    if not original_text or not original_text.strip():
      raise EmptyInputError("Original text is empty.")
    if not summary or not summary.strip():
      raise EmptyInputError("Summary text is empty.")

    original_vector = await self._embed(original_text, label="original text")
    summary_vector = await self._embed(summary, label="summary")
    score = compute_cosine_similarity(original_vector, summary_vector)
    threshold = options.threshold if options.threshold is not None else self._default_threshold

    result = QualityCheckResult(
      quality_score=score,
      threshold=threshold,
      quality_check_passed=score >= threshold,
      original_length=len(original_text),
      summary_length=len(summary),
      compression_ratio=len(summary) / len(original_text),
    )

    if options.debug:
      logger.info(
        "Quality check dimensions=%d/%d score=%.4f threshold=%.2f passed=%s compression_ratio=%.3f",
        len(original_vector),
        len(summary_vector),
        score,
        threshold,
        result.quality_check_passed,
        result.compression_ratio,
      )
    return result

  async def batch_validate_summary_quality(self, pairs: Iterable[tuple[str, str]], options: QualityCheckOptions | None = None) -> list[QualityCheckResult]:
    """Validate pairs sequentially in input order; the first failure propagates."""
    results: list[QualityCheckResult] = []
    for original_text, summary in pairs:
      results.append(await self.validate_summary_quality(original_text, summary, options))
    return results
