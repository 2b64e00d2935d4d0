"""OpenRouter provider implementation using openai SDK."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Final

import openai
from openai import AsyncOpenAI

from coursegen.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse, StructuredModelResponse
from coursegen.errors import LLMProviderError

logger = logging.getLogger(__name__)


def _usage(response: Any) -> dict[str, int] | None:
  if not response.usage:
    return None
  return {"prompt_tokens": response.usage.prompt_tokens, "completion_tokens": response.usage.completion_tokens, "total_tokens": response.usage.total_tokens}


class OpenRouterModel(AIModel):
  """OpenRouter model client with JSON-schema output support."""

  def __init__(self, name: str, *, api_key: str | None = None, base_url: str | None = None, timeout_seconds: float = 60.0) -> None:
    self.name: str = name
    self.supports_structured_output = True

    api_key = api_key or os.getenv("OPENROUTER_API_KEY")
    if not api_key:
      raise LLMProviderError("OPENROUTER_API_KEY environment variable is required")

    # OpenRouter uses the OpenAI-compatible API; we add optional attribution headers.
    default_headers = {}
    referer = os.getenv("OPENROUTER_HTTP_REFERER")
    if referer:
      default_headers["HTTP-Referer"] = referer
    title = os.getenv("OPENROUTER_TITLE")
    if title:
      default_headers["X-Title"] = title

    # SDK-level retries are disabled; handlers own the bounded retry budget.
    self._client = AsyncOpenAI(api_key=api_key, base_url=base_url or "https://openrouter.ai/api/v1", default_headers=default_headers or None, timeout=timeout_seconds, max_retries=0)

  async def generate(self, prompt: str) -> ModelResponse:
    """Generate text response from OpenRouter."""
    try:
      response = await self._client.chat.completions.create(model=self.name, messages=[{"role": "user", "content": prompt}])
    except openai.APIError as exc:
      raise LLMProviderError(f"OpenRouter request failed for model {self.name}: {exc}") from exc

    content = response.choices[0].message.content or ""
    logger.debug("OpenRouter response model=%s chars=%d", self.name, len(content))
    return SimpleModelResponse(content=content, usage=_usage(response))

  async def generate_structured(self, prompt: str, schema: dict[str, Any]) -> StructuredModelResponse:
    """Generate structured JSON output using OpenAI's JSON schema mode."""
    schema_str = json.dumps(schema, indent=2)
    system_msg = f"You are a helpful assistant that outputs valid JSON.\nYou MUST strictly output JSON adhering to this schema:\n```json\n{schema_str}\n```\nOutput valid JSON only, no markdown formatting."

    try:
      response = await self._client.chat.completions.create(
        model=self.name,
        messages=[{"role": "system", "content": system_msg}, {"role": "user", "content": prompt}],
        response_format={"type": "json_schema", "json_schema": {"name": "course_generation_response", "schema": schema, "strict": True}},
      )
    except openai.APIError as exc:
      raise LLMProviderError(f"OpenRouter request failed for model {self.name}: {exc}") from exc

    content = response.choices[0].message.content or "{}"
    logger.debug("OpenRouter structured response model=%s chars=%d", self.name, len(content))
    return StructuredModelResponse(content=self.parse_json_object(content), usage=_usage(response))


class OpenRouterProvider(Provider):
  """OpenRouter provider."""

  _DEFAULT_MODEL: Final[str] = "openai/gpt-oss-120b"
  tier_models = {"oss-120b": "openai/gpt-oss-120b", "gemini-flash": "google/gemini-2.5-flash"}

  def __init__(self, api_key: str | None = None, base_url: str | None = None, *, default_model: str | None = None, timeout_seconds: float = 60.0) -> None:
    self.name: str = "openrouter"
    self._api_key = api_key
    self._base_url = base_url
    self._default_model = default_model or self._DEFAULT_MODEL
    # An explicitly configured model serves every tier.
    if default_model:
      self.tier_models = {}
    self._timeout_seconds = timeout_seconds

  def get_model(self, model: str | None = None) -> AIModel:
    """Return an OpenRouter model client."""
    return OpenRouterModel(model or self._default_model, api_key=self._api_key, base_url=self._base_url, timeout_seconds=self._timeout_seconds)
