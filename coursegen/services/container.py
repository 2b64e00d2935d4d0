"""Explicit wiring of the engine's collaborators."""

from __future__ import annotations

from dataclasses import dataclass

from coursegen.ai.embeddings import EmbeddingProvider, build_embedding_provider
from coursegen.ai.providers.base import Provider
from coursegen.ai.providers.factory import get_provider
from coursegen.budget.allocator import BudgetAllocator
from coursegen.budget.tiers import tiers_from_config
from coursegen.config import Settings
from coursegen.jobs.approval import ApprovalPolicy
from coursegen.jobs.handlers import (
  ContentGenerationHandler,
  DocumentConverter,
  DocumentProcessingHandler,
  FinalizationHandler,
  HttpDocumentConverter,
  InitializeHandler,
  StageHandlerRegistry,
  StructureAnalysisHandler,
  StructureGenerationHandler,
)
from coursegen.jobs.models import JobType
from coursegen.jobs.orchestrator import StageOrchestrator
from coursegen.jobs.progress import ProgressReporter
from coursegen.jobs.worker import JobWorker
from coursegen.quality.validator import QualityValidator
from coursegen.queue.factory import build_work_queue
from coursegen.queue.interface import WorkQueue
from coursegen.storage.factory import Repositories, build_repositories


@dataclass(frozen=True)
class ServiceContainer:
  """Everything the API and the worker need, built once per process."""

  settings: Settings
  repositories: Repositories
  queue: WorkQueue
  orchestrator: StageOrchestrator
  allocator: BudgetAllocator
  validator: QualityValidator
  registry: StageHandlerRegistry
  worker: JobWorker


def build_handler_registry(
  *,
  repositories: Repositories,
  allocator: BudgetAllocator,
  validator: QualityValidator,
  provider: Provider,
  converter: DocumentConverter,
  progress: ProgressReporter,
) -> StageHandlerRegistry:
  """Register the default handler for every stage."""
  return StageHandlerRegistry(
    {
      JobType.INITIALIZE: InitializeHandler(documents_repo=repositories.documents),
      JobType.DOCUMENT_PROCESSING: DocumentProcessingHandler(documents_repo=repositories.documents, converter=converter, progress=progress),
      JobType.STRUCTURE_ANALYSIS: StructureAnalysisHandler(documents_repo=repositories.documents, allocator=allocator, validator=validator, provider=provider, progress=progress),
      JobType.STRUCTURE_GENERATION: StructureGenerationHandler(courses_repo=repositories.courses, provider=provider, progress=progress),
      JobType.LESSON_CONTENT: ContentGenerationHandler(courses_repo=repositories.courses, provider=provider, progress=progress),
      JobType.FINALIZATION: FinalizationHandler(courses_repo=repositories.courses),
    }
  )


def build_container(
  settings: Settings,
  *,
  repositories: Repositories | None = None,
  queue: WorkQueue | None = None,
  provider: Provider | None = None,
  embedding_provider: EmbeddingProvider | None = None,
  converter: DocumentConverter | None = None,
) -> ServiceContainer:
  """Build the service graph; any collaborator can be swapped for tests."""
  repositories = repositories or build_repositories(settings)
  queue = queue or build_work_queue(settings)
  progress = ProgressReporter(repositories.courses)
  orchestrator = StageOrchestrator(courses_repo=repositories.courses, documents_repo=repositories.documents, queue=queue, policy=ApprovalPolicy.from_settings(settings), progress=progress)
  allocator = BudgetAllocator(documents_repo=repositories.documents, allocations_repo=repositories.allocations, tiers=tiers_from_config(settings.model_tiers))
  validator = QualityValidator(embedding_provider or build_embedding_provider(settings), default_threshold=settings.quality_threshold)
  registry = build_handler_registry(
    repositories=repositories,
    allocator=allocator,
    validator=validator,
    provider=provider or get_provider(settings),
    converter=converter or HttpDocumentConverter(settings.document_converter_url, uploads_base_path=settings.uploads_base_path, timeout_seconds=settings.provider_timeout_seconds),
    progress=progress,
  )
  worker = JobWorker(queue=queue, courses_repo=repositories.courses, orchestrator=orchestrator, registry=registry, lease_seconds=settings.queue_lease_seconds)
  return ServiceContainer(settings=settings, repositories=repositories, queue=queue, orchestrator=orchestrator, allocator=allocator, validator=validator, registry=registry, worker=worker)
