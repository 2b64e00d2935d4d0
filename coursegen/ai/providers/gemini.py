"""Gemini provider implementation using the google-genai SDK."""

from __future__ import annotations

import logging
import os
from typing import Any, Final

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from coursegen.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse, StructuredModelResponse
from coursegen.errors import LLMProviderError

logger = logging.getLogger(__name__)


def _usage(response: Any) -> dict[str, int] | None:
  if not response.usage_metadata:
    return None
  return {"prompt_tokens": response.usage_metadata.prompt_token_count, "completion_tokens": response.usage_metadata.candidates_token_count, "total_tokens": response.usage_metadata.total_token_count}


class GeminiModel(AIModel):
  """Gemini model client with structured output support using google-genai SDK."""

  def __init__(self, name: str, *, api_key: str | None = None, timeout_seconds: float = 60.0) -> None:
    self.name: str = name
    self.supports_structured_output = True

    api_key = api_key or os.getenv("GEMINI_API_KEY")
    if not api_key:
      raise LLMProviderError("GEMINI_API_KEY environment variable is required")

    # HttpOptions.timeout is expressed in milliseconds.
    self._client = genai.Client(api_key=api_key, http_options=types.HttpOptions(timeout=int(timeout_seconds * 1000)))

  async def generate(self, prompt: str) -> ModelResponse:
    """Generate text response from Gemini."""
    try:
      # Use the async client to avoid blocking the asyncio event loop.
      response = await self._client.aio.models.generate_content(model=self.name, contents=prompt)
    except (genai_errors.APIError, httpx.HTTPError) as exc:
      raise LLMProviderError(f"Gemini request failed for model {self.name}: {exc}") from exc

    text = response.text or ""
    logger.debug("Gemini response model=%s chars=%d", self.name, len(text))
    return SimpleModelResponse(content=text, usage=_usage(response))

  async def generate_structured(self, prompt: str, schema: dict[str, Any]) -> StructuredModelResponse:
    """Generate structured JSON output using Gemini's JSON mode."""
    try:
      response = await self._client.aio.models.generate_content(model=self.name, contents=prompt, config={"response_mime_type": "application/json", "response_json_schema": schema})
    except (genai_errors.APIError, httpx.HTTPError) as exc:
      raise LLMProviderError(f"Gemini request failed for model {self.name}: {exc}") from exc

    text = response.text or "{}"
    logger.debug("Gemini structured response model=%s chars=%d", self.name, len(text))
    return StructuredModelResponse(content=self.parse_json_object(text), usage=_usage(response))


class GeminiProvider(Provider):
  """Gemini provider."""

  _DEFAULT_MODEL: Final[str] = "gemini-2.5-flash"
  tier_models = {"oss-120b": "gemini-2.5-flash-lite", "gemini-flash": "gemini-2.5-flash"}

  def __init__(self, api_key: str | None = None, *, default_model: str | None = None, timeout_seconds: float = 60.0) -> None:
    self.name: str = "gemini"
    self._api_key = api_key
    self._default_model = default_model or self._DEFAULT_MODEL
    # An explicitly configured model serves every tier.
    if default_model:
      self.tier_models = {}
    self._timeout_seconds = timeout_seconds

  def get_model(self, model: str | None = None) -> AIModel:
    """Return a Gemini model client."""
    return GeminiModel(model or self._default_model, api_key=self._api_key, timeout_seconds=self._timeout_seconds)
