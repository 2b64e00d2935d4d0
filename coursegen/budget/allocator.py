"""Token budget allocation for a course's source documents."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Sequence

from coursegen.budget.models import BudgetAllocation, DocumentBudget, DocumentPriorityInfo, ModelTier, Priority
from coursegen.budget.tiers import DEFAULT_LOW_BUDGET, DEFAULT_TIERS, MIN_LOW_BUDGET, order_tiers
from coursegen.storage.budget_repo import BudgetAllocationRepository
from coursegen.storage.documents_repo import DocumentRepository
from coursegen.utils.ids import utc_timestamp

logger = logging.getLogger(__name__)


def select_model_tier(total_high_tokens: int, tiers: Sequence[ModelTier] = DEFAULT_TIERS) -> ModelTier:
  """Pick the smallest tier whose HIGH ceiling covers the HIGH total, else the largest."""
  for tier in tiers:
    if tier.high_budget >= total_high_tokens:
      return tier
  return tiers[-1]


def calculate_low_budget(tier: ModelTier, total_low_tokens: int) -> int:
  """LOW pool: the floor, the default, or the LOW total capped by the tier."""
  if total_low_tokens <= MIN_LOW_BUDGET:
    return MIN_LOW_BUDGET
  if total_low_tokens <= DEFAULT_LOW_BUDGET:
    return DEFAULT_LOW_BUDGET
  return min(total_low_tokens, tier.low_budget_cap)


def get_document_budget(allocation: BudgetAllocation, priority: Priority | str, token_count: int) -> DocumentBudget:
  """Decide whether a document is used in full or summarized down to its pool."""
  pool = allocation.pool_for(Priority(priority))
  if token_count <= pool:
    return DocumentBudget(budget=token_count, mode="full_text")
  return DocumentBudget(budget=pool, mode="summary")


def calculate_per_document_budgets(allocation: BudgetAllocation, documents: Iterable[DocumentPriorityInfo]) -> dict[str, DocumentBudget]:
  budgets = {doc.file_id: get_document_budget(allocation, doc.priority, doc.token_count) for doc in documents}
  summary_count = sum(1 for budget in budgets.values() if budget.mode == "summary")
  logger.debug("Per-document budgets course_id=%s documents=%d full_text=%d summary=%d", allocation.course_id, len(budgets), len(budgets) - summary_count, summary_count)
  return budgets


def should_use_full_text(token_count: int, budget: int) -> bool:
  return token_count <= budget


def estimate_compression_ratio(token_count: int, budget: int) -> float:
  """Fraction of the document that fits in the budget; 1.0 means no compression."""
  if token_count <= budget:
    return 1.0
  return budget / token_count


class BudgetAllocator:
  """Computes and persists the per-course budget allocation."""

  def __init__(self, *, documents_repo: DocumentRepository, allocations_repo: BudgetAllocationRepository, tiers: Sequence[ModelTier] = DEFAULT_TIERS) -> None:
    self._documents_repo = documents_repo
    self._allocations_repo = allocations_repo
    self._tiers = order_tiers(tiers)

  @property
  def tiers(self) -> tuple[ModelTier, ...]:
    return self._tiers

  def default_allocation(self, course_id: str) -> BudgetAllocation:
    """Conservative allocation used before any document is classified."""
    smallest = self._tiers[0]
    return BudgetAllocation(course_id=course_id, total_high_priority_tokens=0, total_low_priority_tokens=0, selected_model=smallest.name, high_budget=smallest.high_budget, low_budget=MIN_LOW_BUDGET, allocated_at=utc_timestamp())

  def allocate(self, course_id: str, documents: Sequence[DocumentPriorityInfo]) -> BudgetAllocation:
    """Pure allocation over an already-loaded document set."""
    if not documents:
      return self.default_allocation(course_id)

    total_high = sum(doc.token_count for doc in documents if doc.priority == Priority.HIGH)
    total_low = sum(doc.token_count for doc in documents if doc.priority != Priority.HIGH)
    tier = select_model_tier(total_high, self._tiers)
    return BudgetAllocation(
      course_id=course_id,
      total_high_priority_tokens=total_high,
      total_low_priority_tokens=total_low,
      selected_model=tier.name,
      high_budget=tier.high_budget,
      low_budget=calculate_low_budget(tier, total_low),
      allocated_at=utc_timestamp(),
    )

  async def calculate_budget_allocation(self, course_id: str) -> BudgetAllocation:
    """Read priorities, allocate, persist and return the course allocation."""
    start = time.monotonic()
    # Storage failures propagate; only missing data falls back to the default.
    documents = await self._documents_repo.list_priorities(course_id)
    if not documents:
      logger.warning("No document priorities found; using default allocation course_id=%s", course_id)

    allocation = self.allocate(course_id, documents)
    await self._allocations_repo.save_allocation(allocation)
    duration_ms = (time.monotonic() - start) * 1000
    logger.info(
      "Budget allocation complete course_id=%s model=%s high_budget=%d low_budget=%d total_high=%d total_low=%d duration_ms=%.1f",
      course_id,
      allocation.selected_model,
      allocation.high_budget,
      allocation.low_budget,
      allocation.total_high_priority_tokens,
      allocation.total_low_priority_tokens,
      duration_ms,
    )
    return allocation
