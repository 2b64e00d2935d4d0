"""Stage handlers executed by the worker, one per job type."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from coursegen.ai.backoff import retry_with_backoff
from coursegen.ai.prompts import ANALYSIS_SCHEMA, STRUCTURE_SCHEMA, render_analysis_prompt, render_lesson_prompt, render_structure_prompt, render_summary_prompt
from coursegen.ai.providers.base import AIModel, Provider
from coursegen.budget.allocator import BudgetAllocator, calculate_per_document_budgets
from coursegen.budget.models import Priority
from coursegen.errors import DocumentConversionError, NotFoundError, QualityGateError, UnsupportedJobTypeError
from coursegen.jobs.identifiers import LessonLabel
from coursegen.jobs.models import CourseFile, CourseGenerationState, GenerationJob, JobType, StageResult
from coursegen.jobs.payloads import DocumentProcessingPayload, FinalizationPayload, InitializePayload, LessonContentPayload, StructureAnalysisPayload, StructureGenerationPayload
from coursegen.jobs.progress import ProgressReporter
from coursegen.quality.validator import QualityCheckOptions, QualityCheckResult, QualityValidator, threshold_for_language
from coursegen.storage.courses_repo import CourseStateRepository
from coursegen.storage.documents_repo import DocumentRepository

logger = logging.getLogger(__name__)

# Rough chars-per-token ratio used when the converter reports no count.
_CHARS_PER_TOKEN = 4

# One first attempt plus three escalating retries.
SUMMARY_ATTEMPTS = 4
SUMMARY_BUDGET_ESCALATION = 1.25


class StageHandler(Protocol):
  """Runs one stage job to completion."""

  async def process(self, job: GenerationJob) -> StageResult:
    """Execute the job and return its output."""
    ...


class StageHandlerRegistry:
  """Maps job types to the handler that executes them."""

  def __init__(self, handlers: dict[JobType, StageHandler] | None = None) -> None:
    self._handlers: dict[JobType, StageHandler] = dict(handlers or {})

  def register(self, job_type: JobType, handler: StageHandler) -> None:
    self._handlers[job_type] = handler

  def resolve(self, job_type: JobType) -> StageHandler:
    try:
      return self._handlers[job_type]
    except KeyError as exc:
      raise UnsupportedJobTypeError(f"No handler registered for job type {job_type.value}.", context={"job_type": job_type.value}) from exc


@dataclass(frozen=True)
class ConvertedDocument:
  markdown: str
  token_count: int
  priority: str | None = None


class DocumentConverter(Protocol):
  """External service turning an uploaded file into markdown."""

  async def convert(self, path: str, mime_type: str, *, chunk_size: int, chunk_overlap: int) -> ConvertedDocument:
    """Convert a stored document."""
    ...


class HttpDocumentConverter:
  """Calls a document conversion service over HTTP."""

  def __init__(self, base_url: str | None, *, uploads_base_path: str, timeout_seconds: float = 60.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._base_url = base_url
    self._uploads_base_path = uploads_base_path
    self._timeout_seconds = timeout_seconds
    self._transport = transport

  def _resolve_path(self, path: str) -> str:
    # Relative storage paths are rooted at the uploads directory.
    if os.path.isabs(path):
      return path
    return os.path.join(self._uploads_base_path, path)

  async def convert(self, path: str, mime_type: str, *, chunk_size: int, chunk_overlap: int) -> ConvertedDocument:
    if not self._base_url:
      raise DocumentConversionError("Document converter URL not configured.")

    url = f"{self._base_url.rstrip('/')}/convert"
    body = {"path": self._resolve_path(path), "mimeType": mime_type, "chunkSize": chunk_size, "chunkOverlap": chunk_overlap}
    try:
      async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout_seconds, trust_env=False) as client:
        response = await client.post(url, json=body)
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPStatusError as exc:
      raise DocumentConversionError(f"Document converter returned {exc.response.status_code} for {path}: {exc.response.text[:200]}") from exc
    except httpx.HTTPError as exc:
      raise DocumentConversionError(f"Document converter request failed for {path}: {exc}") from exc
    except ValueError as exc:
      raise DocumentConversionError(f"Document converter returned invalid JSON for {path}.") from exc

    markdown = data.get("markdown")
    if not isinstance(markdown, str) or not markdown.strip():
      raise DocumentConversionError(f"Document converter returned no content for {path}.")
    token_count = data.get("tokenCount")
    if not isinstance(token_count, int) or token_count < 0:
      token_count = len(markdown) // _CHARS_PER_TOKEN
    return ConvertedDocument(markdown=markdown, token_count=token_count, priority=data.get("priority"))


def resolve_document_priority(file: CourseFile, converted: ConvertedDocument) -> Priority:
  """Uploader-assigned priority, then the converter's suggestion, then HIGH."""
  for candidate in (file.priority, converted.priority):
    if candidate is None:
      continue
    try:
      return Priority(str(candidate).upper())
    except ValueError:
      logger.warning("Ignoring unknown document priority file_id=%s priority=%s", file.file_id, candidate)
  return Priority.HIGH


async def _load_state(courses_repo: CourseStateRepository, course_id: str) -> CourseGenerationState:
  state = await courses_repo.get_state(course_id)
  if state is None:
    raise NotFoundError(f"Course generation {course_id} was not found.", context={"course_id": course_id})
  return state


def _model_for_state(provider: Provider, state: CourseGenerationState, override: str | None = None) -> AIModel:
  if override:
    return provider.get_model(override)
  tier = (state.budget_allocation or {}).get("selected_model")
  return provider.get_model_for_tier(tier)


class InitializeHandler:
  """Stage 1: record the course files that later stages will process."""

  def __init__(self, *, documents_repo: DocumentRepository) -> None:
    self._documents_repo = documents_repo

  async def process(self, job: GenerationJob) -> StageResult:
    payload = InitializePayload.model_validate(job.payload)
    files = await self._documents_repo.list_course_files(job.course_id)
    logger.info("Initialized course course_id=%s files=%d", job.course_id, len(files))
    return StageResult(output={"fileIds": [file.file_id for file in files], "metadata": payload.metadata or {}})


class DocumentProcessingHandler:
  """Stage 2: convert one uploaded file to markdown and count its tokens."""

  def __init__(self, *, documents_repo: DocumentRepository, converter: DocumentConverter, progress: ProgressReporter) -> None:
    self._documents_repo = documents_repo
    self._converter = converter
    self._progress = progress

  async def process(self, job: GenerationJob) -> StageResult:
    payload = DocumentProcessingPayload.model_validate(job.payload)
    file_id = str(payload.file_id)
    file = await self._documents_repo.get_file(file_id)
    if file is None or file.course_id != job.course_id:
      raise NotFoundError(f"File {file_id} is not attached to course {job.course_id}.", context={"file_id": file_id})

    try:
      converted = await retry_with_backoff(self._converter.convert, payload.file_path, payload.mime_type, chunk_size=payload.chunk_size, chunk_overlap=payload.chunk_overlap)
    except DocumentConversionError as exc:
      await self._documents_repo.update_file(file_id, error_message=str(exc))
      raise

    await self._progress.ensure_not_cancelled(job.course_id)
    priority = resolve_document_priority(file, converted)
    await self._documents_repo.update_file(file_id, priority=priority.value, token_count=converted.token_count, processed_content=converted.markdown, processed=True)
    logger.info("Processed document course_id=%s file_id=%s tokens=%d priority=%s", job.course_id, file_id, converted.token_count, priority.value)
    return StageResult(output={"fileId": file_id, "tokenCount": converted.token_count, "priority": priority.value}, file_id=file_id)


class StructureAnalysisHandler:
  """Stage 3: allocate budgets, summarize oversized documents and analyze the topic."""

  def __init__(
    self,
    *,
    documents_repo: DocumentRepository,
    allocator: BudgetAllocator,
    validator: QualityValidator,
    provider: Provider,
    progress: ProgressReporter,
  ) -> None:
    self._documents_repo = documents_repo
    self._allocator = allocator
    self._validator = validator
    self._provider = provider
    self._progress = progress

  async def process(self, job: GenerationJob) -> StageResult:
    payload = StructureAnalysisPayload.model_validate(job.payload)
    settings = payload.settings or {}
    language = settings.get("language") or payload.locale
    threshold = threshold_for_language(self._validator.default_threshold, language)

    allocation = await self._allocator.calculate_budget_allocation(job.course_id)
    priorities = await self._documents_repo.list_priorities(job.course_id)
    budgets = calculate_per_document_budgets(allocation, priorities)
    model = self._provider.get_model_for_tier(allocation.selected_model)

    documents: list[dict[str, Any]] = []
    for file in await self._documents_repo.list_course_files(job.course_id):
      budget = budgets.get(file.file_id)
      if budget is None or not file.processed_content:
        continue

      text = file.processed_content
      if budget.mode == "summary":
        text = await self._summarize(job.course_id, file, budget.budget, allocation.selected_model, language, threshold)
      documents.append({"fileId": file.file_id, "mode": budget.mode, "budget": budget.budget, "text": text})

    await self._progress.ensure_not_cancelled(job.course_id)
    prompt = render_analysis_prompt(title=payload.title, settings=settings, documents=documents, language=language)
    response = await retry_with_backoff(model.generate_structured, prompt, ANALYSIS_SCHEMA)
    analysis = response.content
    logger.info("Structure analysis complete course_id=%s model=%s documents=%d", job.course_id, model.name, len(documents))
    return StageResult(
      output={"analysis": analysis, "documents": [{key: doc[key] for key in ("fileId", "mode", "budget")} for doc in documents]},
      analysis_result=analysis,
      budget_allocation=allocation.to_dict(),
    )

  async def _summarize(self, course_id: str, file: CourseFile, budget: int, tier_name: str, language: str | None, threshold: float) -> str:
    """Summarize one document, escalating strategy, tier and budget until it passes the gate."""
    source = file.processed_content or ""
    model = self._provider.get_model_for_tier(tier_name)
    strict = False
    changes: list[str] = []
    result: QualityCheckResult | None = None

    for attempt in range(SUMMARY_ATTEMPTS):
      # Retry 1 tightens the prompt, retry 2 moves up a tier and retry 3 raises the budget.
      if attempt == 1:
        strict = True
        changes.append("strategy: strict fidelity prompt")
      elif attempt == 2:
        larger = self._next_tier(tier_name)
        if larger is not None:
          changes.append(f"model: {tier_name} -> {larger}")
          tier_name, model = larger, self._provider.get_model_for_tier(larger)
      elif attempt == 3:
        raised = int(budget * SUMMARY_BUDGET_ESCALATION)
        changes.append(f"max_tokens: {budget} -> {raised}")
        budget = raised

      await self._progress.ensure_not_cancelled(course_id)
      response = await retry_with_backoff(model.generate, render_summary_prompt(source, token_budget=budget, language=language, strict=strict))
      summary = response.content
      result = await retry_with_backoff(self._validator.validate_summary_quality, source, summary, QualityCheckOptions(threshold=threshold))
      quality = {**result.to_dict(), "retry_attempts": attempt, "retry_strategy_changes": list(changes)}
      await self._documents_repo.update_file(file.file_id, summary=summary, quality=quality)
      if result.quality_check_passed:
        return summary
      logger.warning("Summary below threshold file_id=%s attempt=%d score=%.3f threshold=%.2f", file.file_id, attempt + 1, result.quality_score, result.threshold)

    assert result is not None
    raise QualityGateError(
      f"Summary of file {file.file_id} scored {result.quality_score:.3f}, below threshold {result.threshold:.2f}, after {SUMMARY_ATTEMPTS} attempts.",
      context={"file_id": file.file_id, "quality_score": result.quality_score, "threshold": result.threshold, "attempts": SUMMARY_ATTEMPTS},
    )

  def _next_tier(self, tier_name: str) -> str | None:
    names = [tier.name for tier in self._allocator.tiers]
    if tier_name not in names:
      return None
    index = names.index(tier_name)
    return names[index + 1] if index + 1 < len(names) else None


class StructureGenerationHandler:
  """Stage 4: produce the section and lesson outline."""

  def __init__(self, *, courses_repo: CourseStateRepository, provider: Provider, progress: ProgressReporter) -> None:
    self._courses_repo = courses_repo
    self._provider = provider
    self._progress = progress

  async def process(self, job: GenerationJob) -> StageResult:
    payload = StructureGenerationPayload.model_validate(job.payload)
    state = await _load_state(self._courses_repo, job.course_id)
    preferences = payload.preferences.model_dump(by_alias=True, exclude_none=True) if payload.preferences else None
    title = state.request.get("title")

    model = _model_for_state(self._provider, state)
    prompt = render_structure_prompt(title=title, analysis=state.analysis_result, preferences=preferences, language=payload.locale)
    await self._progress.ensure_not_cancelled(job.course_id)
    response = await retry_with_backoff(model.generate_structured, prompt, STRUCTURE_SCHEMA)
    structure = response.content

    lessons = sum(len(section.get("lessons") or []) for section in structure.get("sections") or [])
    logger.info("Structure generated course_id=%s sections=%d lessons=%d", job.course_id, len(structure.get("sections") or []), lessons)
    return StageResult(output={"structure": structure}, course_structure=structure)


class ContentGenerationHandler:
  """Stage 5: write every lesson of the generated structure."""

  def __init__(self, *, courses_repo: CourseStateRepository, provider: Provider, progress: ProgressReporter) -> None:
    self._courses_repo = courses_repo
    self._provider = provider
    self._progress = progress

  async def process(self, job: GenerationJob) -> StageResult:
    payload = LessonContentPayload.model_validate(job.payload)
    state = await _load_state(self._courses_repo, job.course_id)
    structure = state.course_structure or {}
    model = _model_for_state(self._provider, state, payload.model_override)

    lessons: dict[str, dict[str, Any]] = {}
    for section_index, section in enumerate(structure.get("sections") or [], start=1):
      for lesson_index, lesson in enumerate(section.get("lessons") or [], start=1):
        label = LessonLabel.of(section_index, lesson_index)
        # Each lesson is a billed call, so stop as soon as the course is cancelled.
        await self._progress.ensure_not_cancelled(job.course_id)
        prompt = render_lesson_prompt(label=label, lesson=lesson, section_title=section.get("title", ""), course_title=structure.get("title"), language=payload.language)
        response = await retry_with_backoff(model.generate, prompt)
        lessons[label] = {"title": lesson.get("title"), "content": response.content}
        await self._progress.report_message(job.course_id, f"Lesson {label} generated")

    logger.info("Lesson content generated course_id=%s lessons=%d model=%s", job.course_id, len(lessons), model.name)
    return StageResult(output={"lessons": lessons})


class FinalizationHandler:
  """Stage 6: assemble the course summary and notify the webhook."""

  def __init__(self, *, courses_repo: CourseStateRepository, timeout_seconds: float = 10.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._courses_repo = courses_repo
    self._timeout_seconds = timeout_seconds
    self._transport = transport

  async def process(self, job: GenerationJob) -> StageResult:
    payload = FinalizationPayload.model_validate(job.payload)
    state = await _load_state(self._courses_repo, job.course_id)
    structure = state.course_structure or {}
    sections = structure.get("sections") or []
    lessons = (state.stage_outputs.get("5") or {}).get("lessons") or {}

    summary = {
      "courseId": state.course_id,
      "title": structure.get("title") or state.request.get("title"),
      "outputFormat": payload.output_format,
      "sectionsCount": len(sections),
      "lessonsCount": len(lessons),
      "notifyUser": payload.notify_user,
    }

    webhook_url = str(payload.webhook_url) if payload.webhook_url else None
    summary["webhookDelivered"] = await self._notify(webhook_url, summary) if webhook_url else False
    logger.info("Course finalized course_id=%s sections=%d lessons=%d format=%s", state.course_id, len(sections), len(lessons), payload.output_format)
    return StageResult(output=summary)

  async def _notify(self, url: str, summary: dict[str, Any]) -> bool:
    """Post the completion event; failures are logged and never fail finalization."""
    body = {"event": "course.generation.completed", **summary}
    try:
      async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout_seconds, trust_env=False) as client:
        response = await client.post(url, json=body)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
      logger.warning("Webhook returned %s course_id=%s url=%s", exc.response.status_code, summary["courseId"], url)
      return False
    except httpx.HTTPError as exc:
      logger.warning("Webhook delivery failed course_id=%s url=%s error=%s", summary["courseId"], url, exc)
      return False
    return True
