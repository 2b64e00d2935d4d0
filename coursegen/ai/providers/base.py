"""Base interfaces for AI providers and models."""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Protocol

from coursegen.errors import LLMProviderError

_JSON_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class ModelResponse(Protocol):
  """Response contract for model outputs."""

  content: str
  usage: dict[str, int] | None


@dataclass
class SimpleModelResponse:
  """Minimal model response structure."""

  content: str
  usage: dict[str, int] | None = None


@dataclass
class StructuredModelResponse:
  """Structured model response structure."""

  content: dict[str, Any]
  usage: dict[str, int] | None = None


class AIModel(ABC):
  """Abstract base class for AI models."""

  name: str
  supports_structured_output: bool = False

  @abstractmethod
  async def generate(self, prompt: str) -> ModelResponse:
    """Generate a response for the given prompt."""

  async def generate_structured(self, prompt: str, schema: dict[str, Any]) -> StructuredModelResponse:
    """Generate structured output that conforms to the provided JSON schema."""
    raise LLMProviderError(f"Structured output is not supported by model '{self.name}'.")

  @staticmethod
  def strip_json_fences(raw: str) -> str:
    """Remove markdown code fences some models wrap around JSON."""
    return _JSON_FENCE.sub("", raw.strip())

  @classmethod
  def parse_json_object(cls, raw: str) -> dict[str, Any]:
    """Parse a model reply into a JSON object or raise LLMProviderError."""
    cleaned = cls.strip_json_fences(raw)
    try:
      parsed = json.loads(cleaned)
    except json.JSONDecodeError as exc:
      raise LLMProviderError(f"Model returned invalid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
      raise LLMProviderError("Model returned JSON that is not an object.")
    return parsed


class Provider(ABC):
  """Abstract base class for AI providers."""

  name: str
  tier_models: dict[str, str] = {}

  @abstractmethod
  def get_model(self, model: str | None = None) -> AIModel:
    """Return the model client for the provider."""

  def get_model_for_tier(self, tier_name: str | None) -> AIModel:
    """Return the model that serves a budget tier, or the default model."""
    return self.get_model(self.tier_models.get(tier_name) if tier_name else None)
