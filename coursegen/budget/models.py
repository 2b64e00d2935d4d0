"""Records produced and consumed by the budget allocator."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Literal

DocumentMode = Literal["full_text", "summary"]


class Priority(str, Enum):
  HIGH = "HIGH"
  LOW = "LOW"


@dataclass(frozen=True)
class DocumentPriorityInfo:
  """Priority class and token count of one classified document."""

  file_id: str
  priority: Priority
  token_count: int

  def __post_init__(self) -> None:
    if self.token_count < 0:
      raise ValueError(f"token_count must be non-negative for file {self.file_id}.")


@dataclass(frozen=True)
class ModelTier:
  """Processing tier with a fixed context window and HIGH-budget ceiling."""

  name: str
  context_window: int
  high_budget: int

  @property
  def low_budget_cap(self) -> int:
    return self.context_window - self.high_budget


@dataclass(frozen=True)
class BudgetAllocation:
  """Per-course model tier and per-priority token budgets."""

  course_id: str
  total_high_priority_tokens: int
  total_low_priority_tokens: int
  selected_model: str
  high_budget: int
  low_budget: int
  allocated_at: str

  def __post_init__(self) -> None:
    if self.high_budget < 0 or self.low_budget < 0:
      raise ValueError("Budgets must be non-negative.")

  def pool_for(self, priority: Priority) -> int:
    return self.high_budget if priority == Priority.HIGH else self.low_budget

  def to_dict(self) -> dict[str, Any]:
    return asdict(self)

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> BudgetAllocation:
    return cls(
      course_id=str(data["course_id"]),
      total_high_priority_tokens=int(data["total_high_priority_tokens"]),
      total_low_priority_tokens=int(data["total_low_priority_tokens"]),
      selected_model=str(data["selected_model"]),
      high_budget=int(data["high_budget"]),
      low_budget=int(data["low_budget"]),
      allocated_at=str(data["allocated_at"]),
    )


@dataclass(frozen=True)
class DocumentBudget:
  """Token budget and processing mode for one document."""

  budget: int
  mode: DocumentMode
