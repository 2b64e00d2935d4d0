"""Shared fixtures: in-memory storage, fake providers and a wired orchestrator."""

from __future__ import annotations

import uuid
from dataclasses import replace
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from coursegen.ai.prompts import ANALYSIS_SCHEMA, STRUCTURE_SCHEMA
from coursegen.ai.providers.base import AIModel, Provider, SimpleModelResponse, StructuredModelResponse
from coursegen.config import Settings, get_settings
from coursegen.jobs.approval import ApprovalPolicy
from coursegen.jobs.handlers import ConvertedDocument
from coursegen.jobs.orchestrator import StageOrchestrator
from coursegen.jobs.progress import ProgressReporter
from coursegen.queue.memory import InMemoryWorkQueue
from coursegen.services.container import ServiceContainer, build_container
from coursegen.storage.factory import Repositories
from coursegen.storage.memory import InMemoryBudgetAllocationRepository, InMemoryCourseStateRepository, InMemoryDocumentRepository

FAKE_ANALYSIS = {"topic": "Python", "audience": "beginners", "difficulty": "beginner", "keyConcepts": ["lists", "loops"], "recommendedSections": 2}
FAKE_STRUCTURE = {
  "title": "Python Basics",
  "sections": [
    {"title": "Collections", "lessons": [{"title": "Lists", "objective": "Use lists."}, {"title": "Dicts", "objective": "Use dicts."}]},
    {"title": "Control flow", "lessons": [{"title": "Loops", "objective": "Write loops."}]},
  ],
}


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


class FakeEmbeddingProvider:
  """Returns configured vectors; unknown texts share one default vector."""

  def __init__(self, vectors: dict[str, list[float]] | None = None, default: list[float] | None = None, error: Exception | None = None) -> None:
    self.vectors = dict(vectors or {})
    self.default = list(default or [1.0, 0.5, 0.25])
    self.error = error
    self.calls: list[str] = []

  async def embed(self, text: str) -> list[float]:
    self.calls.append(text)
    if self.error is not None:
      raise self.error
    return list(self.vectors.get(text, self.default))


class FakeModel(AIModel):
  """Deterministic model that answers by response schema."""

  supports_structured_output = True

  def __init__(self, name: str = "fake-model", *, text: str = "Generated text.") -> None:
    self.name = name
    self.text = text
    self.prompts: list[str] = []

  async def generate(self, prompt: str) -> SimpleModelResponse:
    self.prompts.append(prompt)
    return SimpleModelResponse(content=self.text)

  async def generate_structured(self, prompt: str, schema: dict[str, Any]) -> StructuredModelResponse:
    self.prompts.append(prompt)
    if schema is ANALYSIS_SCHEMA:
      return StructuredModelResponse(content=dict(FAKE_ANALYSIS))
    if schema is STRUCTURE_SCHEMA:
      return StructuredModelResponse(content=dict(FAKE_STRUCTURE))
    return StructuredModelResponse(content={})


class FakeProvider(Provider):
  """Provider handing out one shared FakeModel and recording requested names."""

  tier_models = {"oss-120b": "fake-small", "gemini-flash": "fake-large"}

  def __init__(self, model: FakeModel | None = None) -> None:
    self.name = "fake"
    self.model = model or FakeModel()
    self.requested: list[str | None] = []

  def get_model(self, model: str | None = None) -> AIModel:
    self.requested.append(model)
    return self.model


class FakeConverter:
  """Converts every document to fixed markdown with a configurable token count."""

  def __init__(self, *, markdown: str = "# Source\nBody text.", token_count: int = 1_000, priority: str | None = None, error: Exception | None = None) -> None:
    self.markdown = markdown
    self.token_count = token_count
    self.priority = priority
    self.error = error
    self.calls: list[str] = []

  async def convert(self, path: str, mime_type: str, *, chunk_size: int, chunk_overlap: int) -> ConvertedDocument:
    self.calls.append(path)
    if self.error is not None:
      raise self.error
    return ConvertedDocument(markdown=self.markdown, token_count=self.token_count, priority=self.priority)


class FakeClock:
  """Manually advanced monotonic clock for lease expiry."""

  def __init__(self) -> None:
    self.now = 1_000.0

  def __call__(self) -> float:
    return self.now


def new_id() -> str:
  return str(uuid.uuid4())


@pytest.fixture
def course_id() -> str:
  return new_id()


@pytest.fixture
def organization_id() -> str:
  return new_id()


@pytest.fixture
def user_id() -> str:
  return new_id()


@pytest.fixture
def settings() -> Settings:
  return replace(get_settings(), approval_stages=frozenset({2, 3, 4, 5}), task_secret="test-task-secret", quality_threshold=0.75)


@pytest.fixture
def repositories() -> Repositories:
  return Repositories(courses=InMemoryCourseStateRepository(), documents=InMemoryDocumentRepository(), allocations=InMemoryBudgetAllocationRepository())


@pytest.fixture
def queue() -> InMemoryWorkQueue:
  return InMemoryWorkQueue()


@pytest.fixture
def embedding_provider() -> FakeEmbeddingProvider:
  return FakeEmbeddingProvider()


@pytest.fixture
def provider() -> FakeProvider:
  return FakeProvider()


@pytest.fixture
def converter() -> FakeConverter:
  return FakeConverter()


@pytest.fixture
def orchestrator(repositories: Repositories, queue: InMemoryWorkQueue) -> StageOrchestrator:
  return StageOrchestrator(courses_repo=repositories.courses, documents_repo=repositories.documents, queue=queue, policy=ApprovalPolicy(), progress=ProgressReporter(repositories.courses))


@pytest.fixture
def container(settings: Settings, repositories: Repositories, queue: InMemoryWorkQueue, provider: FakeProvider, embedding_provider: FakeEmbeddingProvider, converter: FakeConverter) -> ServiceContainer:
  return build_container(settings, repositories=repositories, queue=queue, provider=provider, embedding_provider=embedding_provider, converter=converter)


@pytest.fixture
async def async_client(container: ServiceContainer, settings: Settings):
  from coursegen.api.deps import get_container
  from coursegen.main import app

  app.dependency_overrides[get_container] = lambda: container
  app.dependency_overrides[get_settings] = lambda: settings
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
    yield client
  app.dependency_overrides.clear()
