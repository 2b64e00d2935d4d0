"""Storage interface for budget allocations."""

from __future__ import annotations

from typing import Protocol

from coursegen.budget.models import BudgetAllocation


class BudgetAllocationRepository(Protocol):
  """Repository contract for per-course budget allocations."""

  async def save_allocation(self, allocation: BudgetAllocation) -> None:
    """Insert or replace the allocation for a course."""
