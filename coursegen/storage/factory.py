from __future__ import annotations

from dataclasses import dataclass

from coursegen.config import Settings
from coursegen.storage.budget_repo import BudgetAllocationRepository
from coursegen.storage.courses_repo import CourseStateRepository
from coursegen.storage.documents_repo import DocumentRepository
from coursegen.storage.memory import InMemoryBudgetAllocationRepository, InMemoryCourseStateRepository, InMemoryDocumentRepository
from coursegen.storage.postgres_budget_repo import PostgresBudgetAllocationRepository
from coursegen.storage.postgres_courses_repo import PostgresCourseStateRepository
from coursegen.storage.postgres_documents_repo import PostgresDocumentRepository


@dataclass(frozen=True)
class Repositories:
  courses: CourseStateRepository
  documents: DocumentRepository
  allocations: BudgetAllocationRepository


def build_repositories(settings: Settings) -> Repositories:
  """Use Postgres when a DSN is configured, in-process storage otherwise."""
  if settings.pg_dsn:
    return Repositories(courses=PostgresCourseStateRepository(), documents=PostgresDocumentRepository(), allocations=PostgresBudgetAllocationRepository())
  return Repositories(courses=InMemoryCourseStateRepository(), documents=InMemoryDocumentRepository(), allocations=InMemoryBudgetAllocationRepository())
