from __future__ import annotations

import logging

import pytest

from coursegen.errors import DimensionMismatchError, EmbeddingProviderError, EmptyInputError, EmptyVectorError, StorageError
from coursegen.quality.validator import QualityCheckOptions, QualityValidator, compute_cosine_similarity, threshold_for_language
from tests.conftest import FakeEmbeddingProvider


def test_identical_vectors_score_exactly_one() -> None:
  for vector in ([1.0], [0.1, 0.2, 0.3], [3.0, -4.0, 12.5, 1e-9]):
    assert compute_cosine_similarity(vector, list(vector)) == 1.0


def test_orthogonal_vectors_score_zero() -> None:
  assert compute_cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0
  assert compute_cosine_similarity([1.0, 1.0, 0.0], [0.0, 0.0, 2.0]) == 0.0


def test_opposite_vectors_are_clamped_to_zero() -> None:
  vector = [0.3, -1.2, 4.0]
  assert compute_cosine_similarity(vector, [-value for value in vector]) == 0.0


def test_zero_magnitude_vector_scores_zero() -> None:
  assert compute_cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0
  assert compute_cosine_similarity([0.0, 0.0], [0.0, 0.0]) == 0.0


def test_mismatched_lengths_raise_dimension_error() -> None:
  with pytest.raises(DimensionMismatchError):
    compute_cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])


def test_empty_vectors_raise_empty_vector_error() -> None:
  with pytest.raises(EmptyVectorError):
    compute_cosine_similarity([], [])
  with pytest.raises(EmptyVectorError):
    compute_cosine_similarity([1.0], [])


def test_similarity_stays_within_unit_range() -> None:
  score = compute_cosine_similarity([1.0, 2.0, 3.0], [2.0, 1.0, 0.5])
  assert 0.0 <= score <= 1.0


@pytest.mark.anyio
async def test_identical_text_scores_one_with_unit_compression() -> None:
  validator = QualityValidator(FakeEmbeddingProvider())
  result = await validator.validate_summary_quality("Lists hold ordered items.", "Lists hold ordered items.")
  assert result.quality_score == 1.0
  assert result.compression_ratio == 1.0
  assert result.threshold == 0.75
  assert result.quality_check_passed is True


@pytest.mark.anyio
@pytest.mark.parametrize(("original", "summary"), [("", "summary"), ("   \n\t", "summary"), ("original", ""), ("original", "  ")])
async def test_blank_inputs_raise_empty_input_error(original: str, summary: str) -> None:
  provider = FakeEmbeddingProvider()
  validator = QualityValidator(provider)
  with pytest.raises(EmptyInputError):
    await validator.validate_summary_quality(original, summary)
  # Validation happens before any embedding call is made.
  assert provider.calls == []


@pytest.mark.anyio
async def test_score_below_threshold_fails_the_check() -> None:
  provider = FakeEmbeddingProvider(vectors={"source text": [1.0, 0.0], "off-topic": [0.6, 0.8]})
  validator = QualityValidator(provider)
  result = await validator.validate_summary_quality("source text", "off-topic")
  assert result.quality_score == pytest.approx(0.6)
  assert result.quality_check_passed is False


@pytest.mark.anyio
async def test_explicit_threshold_overrides_default() -> None:
  provider = FakeEmbeddingProvider(vectors={"source text": [1.0, 0.0], "close": [0.6, 0.8]})
  validator = QualityValidator(provider, default_threshold=0.9)
  result = await validator.validate_summary_quality("source text", "close", QualityCheckOptions(threshold=0.5))
  assert result.threshold == 0.5
  assert result.quality_check_passed is True


@pytest.mark.anyio
async def test_longer_summary_reports_ratio_above_one() -> None:
  validator = QualityValidator(FakeEmbeddingProvider())
  result = await validator.validate_summary_quality("short", "a much longer summary")
  assert result.compression_ratio == len("a much longer summary") / len("short")


@pytest.mark.anyio
async def test_provider_failure_is_wrapped_with_message_kept() -> None:
  validator = QualityValidator(FakeEmbeddingProvider(error=RuntimeError("connection reset by peer")))
  with pytest.raises(EmbeddingProviderError, match="connection reset by peer"):
    await validator.validate_summary_quality("original", "summary")


@pytest.mark.anyio
async def test_provider_error_passes_through_unchanged() -> None:
  error = EmbeddingProviderError("embedding request timed out")
  validator = QualityValidator(FakeEmbeddingProvider(error=error))
  with pytest.raises(EmbeddingProviderError) as excinfo:
    await validator.validate_summary_quality("original", "summary")
  assert excinfo.value is error


@pytest.mark.anyio
async def test_other_domain_errors_are_not_rewrapped() -> None:
  error = StorageError("embedding cache unavailable")
  validator = QualityValidator(FakeEmbeddingProvider(error=error))
  with pytest.raises(StorageError) as excinfo:
    await validator.validate_summary_quality("original", "summary")
  assert excinfo.value is error


@pytest.mark.anyio
async def test_debug_option_logs_dimensions_and_score(caplog: pytest.LogCaptureFixture) -> None:
  validator = QualityValidator(FakeEmbeddingProvider())
  with caplog.at_level(logging.INFO, logger="coursegen.quality.validator"):
    await validator.validate_summary_quality("text", "text", QualityCheckOptions(debug=True))
  assert "dimensions=3/3" in caplog.text
  assert "score=1.0000" in caplog.text


@pytest.mark.anyio
async def test_batch_preserves_input_order() -> None:
  provider = FakeEmbeddingProvider(vectors={"a": [1.0, 0.0], "b": [0.0, 1.0]})
  validator = QualityValidator(provider)
  results = await validator.batch_validate_summary_quality([("a", "a"), ("a", "b"), ("b", "b")])
  assert [result.quality_score for result in results] == [1.0, 0.0, 1.0]


@pytest.mark.anyio
async def test_batch_propagates_first_failure() -> None:
  validator = QualityValidator(FakeEmbeddingProvider())
  with pytest.raises(EmptyInputError):
    await validator.batch_validate_summary_quality([("a", "a"), ("", "b"), ("c", "c")])


def test_invalid_thresholds_are_rejected() -> None:
  with pytest.raises(ValueError):
    QualityCheckOptions(threshold=0)
  with pytest.raises(ValueError):
    QualityCheckOptions(threshold=1.5)
  with pytest.raises(ValueError):
    QualityValidator(FakeEmbeddingProvider(), default_threshold=0)


def test_language_adjustment_relaxes_russian_only() -> None:
  assert threshold_for_language(0.75, "ru") == 0.7
  assert threshold_for_language(0.75, "en") == 0.75
  assert threshold_for_language(0.75, "de-DE") == 0.75
  assert threshold_for_language(0.75, "fr") == 0.75
  assert threshold_for_language(0.75, None) == 0.75
