from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from coursegen.ai.embeddings import OpenAIEmbeddingProvider
from coursegen.ai.providers.openrouter import OpenRouterModel, OpenRouterProvider
from coursegen.errors import EmbeddingProviderError, LLMProviderError


def _completion(content: str | None) -> SimpleNamespace:
  return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))], usage=SimpleNamespace(prompt_tokens=3, completion_tokens=5, total_tokens=8))


def _connection_error() -> openai.APIConnectionError:
  return openai.APIConnectionError(request=httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions"))


def _model_with_client(create: AsyncMock) -> OpenRouterModel:
  model = OpenRouterModel("openai/gpt-oss-120b", api_key="test-key")
  model._client = MagicMock()
  model._client.chat.completions.create = create
  return model


def test_tier_routing_and_pinned_model() -> None:
  provider = OpenRouterProvider(api_key="test-key")
  assert provider.get_model_for_tier("gemini-flash").name == "google/gemini-2.5-flash"
  assert provider.get_model_for_tier(None).name == "openai/gpt-oss-120b"

  pinned = OpenRouterProvider(api_key="test-key", default_model="vendor/pinned")
  assert pinned.get_model_for_tier("gemini-flash").name == "vendor/pinned"


def test_missing_api_key_is_a_provider_error(monkeypatch: pytest.MonkeyPatch) -> None:
  monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
  with pytest.raises(LLMProviderError):
    OpenRouterModel("openai/gpt-oss-120b")


@pytest.mark.anyio
async def test_generate_returns_content_and_usage() -> None:
  model = _model_with_client(AsyncMock(return_value=_completion("Lesson body")))
  response = await model.generate("Write a lesson")
  assert response.content == "Lesson body"
  assert response.usage == {"prompt_tokens": 3, "completion_tokens": 5, "total_tokens": 8}


@pytest.mark.anyio
async def test_structured_output_strips_fences() -> None:
  create = AsyncMock(return_value=_completion('```json\n{"title": "Python"}\n```'))
  model = _model_with_client(create)
  response = await model.generate_structured("Plan a course", {"type": "object"})
  assert response.content == {"title": "Python"}
  assert create.await_args.kwargs["response_format"]["type"] == "json_schema"


@pytest.mark.anyio
async def test_non_object_json_is_rejected() -> None:
  model = _model_with_client(AsyncMock(return_value=_completion("[1, 2]")))
  with pytest.raises(LLMProviderError):
    await model.generate_structured("Plan a course", {"type": "object"})


@pytest.mark.anyio
async def test_sdk_errors_are_wrapped() -> None:
  model = _model_with_client(AsyncMock(side_effect=_connection_error()))
  with pytest.raises(LLMProviderError, match="openai/gpt-oss-120b"):
    await model.generate("Write a lesson")


@pytest.mark.anyio
async def test_embedding_provider_returns_first_vector() -> None:
  provider = OpenAIEmbeddingProvider(model="text-embedding-3-small", api_key="test-key")
  client = MagicMock()
  client.embeddings.create = AsyncMock(return_value=SimpleNamespace(data=[SimpleNamespace(embedding=[0.1, 0.2])]))
  provider._client = client

  assert await provider.embed("hello") == [0.1, 0.2]
  client.embeddings.create.assert_awaited_once_with(model="text-embedding-3-small", input="hello")


@pytest.mark.anyio
async def test_embedding_provider_failures() -> None:
  provider = OpenAIEmbeddingProvider(model="text-embedding-3-small", api_key="test-key")
  client = MagicMock()
  client.embeddings.create = AsyncMock(return_value=SimpleNamespace(data=[]))
  provider._client = client
  with pytest.raises(EmbeddingProviderError, match="no vectors"):
    await provider.embed("hello")

  client.embeddings.create = AsyncMock(side_effect=_connection_error())
  with pytest.raises(EmbeddingProviderError, match="embedding request failed"):
    await provider.embed("hello")


@pytest.mark.anyio
async def test_embedding_provider_requires_key(monkeypatch: pytest.MonkeyPatch) -> None:
  monkeypatch.delenv("OPENAI_API_KEY", raising=False)
  with pytest.raises(EmbeddingProviderError):
    await OpenAIEmbeddingProvider(model="text-embedding-3-small").embed("hello")
