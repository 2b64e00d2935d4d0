from __future__ import annotations

from coursegen.ai.providers.base import Provider
from coursegen.ai.providers.gemini import GeminiProvider
from coursegen.ai.providers.openrouter import OpenRouterProvider
from coursegen.config import Settings


def get_provider(settings: Settings) -> Provider:
  """Factory to get the configured LLM provider."""
  if settings.llm_provider == "gemini":
    return GeminiProvider(api_key=settings.gemini_api_key, default_model=settings.llm_model, timeout_seconds=settings.provider_timeout_seconds)
  return OpenRouterProvider(api_key=settings.openrouter_api_key, default_model=settings.llm_model, timeout_seconds=settings.provider_timeout_seconds)
