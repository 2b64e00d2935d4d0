"""Embedding providers used by the quality gate."""

from __future__ import annotations

import logging
import os
from typing import Protocol

import openai
from openai import AsyncOpenAI

from coursegen.config import Settings
from coursegen.errors import EmbeddingProviderError

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
  """Turns one text into one embedding vector."""

  async def embed(self, text: str) -> list[float]:
    """Return the embedding vector for a text."""
    ...


class OpenAIEmbeddingProvider:
  """OpenAI-compatible embeddings endpoint via AsyncOpenAI."""

  def __init__(self, *, model: str, api_key: str | None = None, base_url: str | None = None, timeout_seconds: float = 60.0) -> None:
    self.model = model
    self._api_key = api_key
    self._base_url = base_url
    self._timeout_seconds = timeout_seconds
    self._client: AsyncOpenAI | None = None

  def _get_client(self) -> AsyncOpenAI:
    # Build lazily so the service can start without embedding credentials.
    if self._client is None:
      api_key = self._api_key or os.getenv("OPENAI_API_KEY")
      if not api_key:
        raise EmbeddingProviderError("OPENAI_API_KEY environment variable is required")
      self._client = AsyncOpenAI(api_key=api_key, base_url=self._base_url, timeout=self._timeout_seconds, max_retries=0)
    return self._client

  async def embed(self, text: str) -> list[float]:
    client = self._get_client()
    try:
      response = await client.embeddings.create(model=self.model, input=text)
    except openai.APIError as exc:
      raise EmbeddingProviderError(f"embedding request failed: {exc}") from exc

    if not response.data:
      raise EmbeddingProviderError("embedding response contained no vectors")
    vector = list(response.data[0].embedding)
    logger.debug("Embedding generated model=%s dimensions=%d", self.model, len(vector))
    return vector


def build_embedding_provider(settings: Settings) -> OpenAIEmbeddingProvider:
  return OpenAIEmbeddingProvider(model=settings.embedding_model, api_key=settings.openai_api_key, base_url=settings.embedding_base_url, timeout_seconds=settings.provider_timeout_seconds)
