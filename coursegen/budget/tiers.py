"""Model tier table used for budget allocation."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from coursegen.budget.models import ModelTier

MIN_LOW_BUDGET = 20_000
DEFAULT_LOW_BUDGET = 40_000

DEFAULT_TIERS: tuple[ModelTier, ...] = (
  ModelTier(name="oss-120b", context_window=128_000, high_budget=80_000),
  ModelTier(name="gemini-flash", context_window=1_000_000, high_budget=400_000),
)


def order_tiers(tiers: Iterable[ModelTier]) -> tuple[ModelTier, ...]:
  """Sort tiers by context window and reject inconsistent tables."""
  ordered = tuple(sorted(tiers, key=lambda tier: (tier.context_window, tier.high_budget)))
  if not ordered:
    raise ValueError("At least one model tier must be configured.")

  names = [tier.name for tier in ordered]
  if len(set(names)) != len(names):
    raise ValueError(f"Model tier names must be unique: {names}.")

  for tier in ordered:
    if tier.high_budget <= 0 or tier.context_window <= 0:
      raise ValueError(f"Model tier '{tier.name}' must have positive budgets.")
    if tier.high_budget > tier.context_window:
      raise ValueError(f"Model tier '{tier.name}' has a HIGH budget larger than its context window.")

  # Larger windows must not come with a smaller HIGH ceiling, or selection stops being monotonic.
  for smaller, larger in zip(ordered, ordered[1:], strict=False):
    if larger.high_budget < smaller.high_budget:
      raise ValueError(f"Model tier '{larger.name}' has a smaller HIGH budget than '{smaller.name}'.")

  return ordered


def tiers_from_config(raw: Sequence[dict[str, Any]] | None) -> tuple[ModelTier, ...]:
  """Build the tier table from the COURSEGEN_MODEL_TIERS JSON entries."""
  if not raw:
    return DEFAULT_TIERS

  tiers: list[ModelTier] = []
  for entry in raw:
    try:
      tiers.append(ModelTier(name=str(entry["name"]), context_window=int(entry["context_window"]), high_budget=int(entry["high_budget"])))
    except (KeyError, TypeError, ValueError) as exc:
      raise ValueError(f"Invalid model tier entry: {entry!r}") from exc
  return order_tiers(tiers)


def get_model_context_window(tier_name: str, tiers: Sequence[ModelTier] = DEFAULT_TIERS) -> int:
  """Return the full context window of a named tier."""
  for tier in tiers:
    if tier.name == tier_name:
      return tier.context_window
  raise KeyError(f"Unknown model tier: {tier_name}")
