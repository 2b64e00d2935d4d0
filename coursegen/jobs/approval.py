"""Deployment policy deciding which stages halt for human approval."""

from __future__ import annotations

from dataclasses import dataclass

from coursegen.config import Settings, parse_approval_stages

GATEABLE_STAGES = frozenset({2, 3, 4, 5})


@dataclass(frozen=True)
class ApprovalPolicy:
  """Set of stage ordinals followed by an approval gate."""

  stages: frozenset[int] = GATEABLE_STAGES

  def __post_init__(self) -> None:
    invalid = set(self.stages) - GATEABLE_STAGES
    if invalid:
      raise ValueError(f"Approval gates are only supported after stages 2-5, got {sorted(invalid)}.")

  def requires_approval(self, stage: int) -> bool:
    return stage in self.stages

  @classmethod
  def from_settings(cls, settings: Settings) -> ApprovalPolicy:
    return cls(stages=frozenset(settings.approval_stages))

  @classmethod
  def parse(cls, raw: str | None) -> ApprovalPolicy:
    """Build a policy from the comma-separated env format."""
    return cls(stages=parse_approval_stages(raw))
