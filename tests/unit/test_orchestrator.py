from __future__ import annotations

import asyncio

import pytest

from coursegen.errors import DuplicateJobError, InvalidIdentifierError, InvalidTransitionError, JobPayloadValidationError, LLMProviderError, NotFoundError, StaleApprovalError, ValidationError
from coursegen.jobs.approval import ApprovalPolicy
from coursegen.jobs.models import CourseFile, GenerationStatus, JobType, StageResult
from coursegen.jobs.orchestrator import StageOrchestrator
from coursegen.queue.memory import InMemoryWorkQueue
from coursegen.storage.factory import Repositories
from tests.conftest import new_id


async def _drain(queue: InMemoryWorkQueue) -> list[JobType]:
  """Lease and ack every queued job, returning their types in dequeue order."""
  drained: list[JobType] = []
  while (lease := await queue.dequeue(60)) is not None:
    drained.append(lease.job.job_type)
    await queue.ack(lease)
  return drained


def _initialize_payload(course_id: str, organization_id: str, user_id: str) -> dict[str, str]:
  return {"jobType": "initialize", "organizationId": organization_id, "courseId": course_id, "userId": user_id, "createdAt": "2026-01-01T00:00:00Z"}


@pytest.mark.anyio
async def test_start_creates_state_and_queues_initialize(orchestrator: StageOrchestrator, queue: InMemoryWorkQueue, course_id: str, organization_id: str, user_id: str) -> None:
  state = await orchestrator.start_generation(course_id, organization_id, user_id, {"title": "Python", "locale": "en"})

  assert state.status == GenerationStatus.INITIALIZING
  assert state.current_stage == 0
  assert state.request == {"title": "Python", "locale": "en"}
  assert state.progress.logs == ["Generation requested"]

  lease = await queue.dequeue(60)
  assert lease is not None
  assert lease.job.job_type == JobType.INITIALIZE
  assert lease.job.payload["courseId"] == course_id
  assert lease.job.payload["locale"] == "en"
  # Fields the initialize schema does not accept are filtered out.
  assert "title" not in lease.job.payload


@pytest.mark.anyio
async def test_start_rejects_active_course(orchestrator: StageOrchestrator, course_id: str, organization_id: str, user_id: str) -> None:
  await orchestrator.start_generation(course_id, organization_id, user_id)
  with pytest.raises(DuplicateJobError):
    await orchestrator.start_generation(course_id, organization_id, user_id)


@pytest.mark.anyio
async def test_start_after_cancel_runs_again(orchestrator: StageOrchestrator, course_id: str, organization_id: str, user_id: str) -> None:
  await orchestrator.start_generation(course_id, organization_id, user_id)
  await orchestrator.cancel_generation(course_id)

  state = await orchestrator.start_generation(course_id, organization_id, user_id)
  assert state.status == GenerationStatus.INITIALIZING


@pytest.mark.anyio
async def test_start_rejects_malformed_ids(orchestrator: StageOrchestrator, organization_id: str, user_id: str) -> None:
  with pytest.raises(InvalidIdentifierError):
    await orchestrator.start_generation("1.2", organization_id, user_id)


@pytest.mark.anyio
async def test_get_state_unknown_course_raises_not_found(orchestrator: StageOrchestrator) -> None:
  with pytest.raises(NotFoundError):
    await orchestrator.get_state(new_id())


@pytest.mark.anyio
async def test_submit_rejects_second_job_for_same_stage(orchestrator: StageOrchestrator, course_id: str, organization_id: str, user_id: str) -> None:
  await orchestrator.start_generation(course_id, organization_id, user_id)
  with pytest.raises(DuplicateJobError):
    await orchestrator.submit(course_id, JobType.INITIALIZE, _initialize_payload(course_id, organization_id, user_id))


@pytest.mark.anyio
async def test_submit_after_ack_is_accepted(orchestrator: StageOrchestrator, queue: InMemoryWorkQueue, course_id: str, organization_id: str, user_id: str) -> None:
  await orchestrator.start_generation(course_id, organization_id, user_id)
  await _drain(queue)

  job_id = await orchestrator.submit(course_id, JobType.INITIALIZE, _initialize_payload(course_id, organization_id, user_id))
  assert await queue.in_flight(f"{course_id}:1")
  assert len(job_id) == 36


@pytest.mark.anyio
async def test_submit_validates_payload_schema(orchestrator: StageOrchestrator, course_id: str, organization_id: str, user_id: str) -> None:
  payload = _initialize_payload(course_id, organization_id, user_id)
  payload["unexpected"] = True
  with pytest.raises(JobPayloadValidationError) as excinfo:
    await orchestrator.submit(course_id, JobType.INITIALIZE, payload)
  assert excinfo.value.errors


@pytest.mark.anyio
async def test_submit_rejects_payload_for_other_course(orchestrator: StageOrchestrator, course_id: str, organization_id: str, user_id: str) -> None:
  with pytest.raises(ValidationError):
    await orchestrator.submit(course_id, JobType.INITIALIZE, _initialize_payload(new_id(), organization_id, user_id))


@pytest.mark.anyio
async def test_course_without_files_skips_document_processing(orchestrator: StageOrchestrator, queue: InMemoryWorkQueue, course_id: str, organization_id: str, user_id: str) -> None:
  await orchestrator.start_generation(course_id, organization_id, user_id)
  state = await orchestrator.handle_stage_result(course_id, 1, StageResult(output={"fileIds": []}))

  assert state.status == GenerationStatus.ANALYZING_TASK
  assert state.current_stage == 3
  assert state.stage_outputs["1"] == {"fileIds": []}
  assert await _drain(queue) == [JobType.INITIALIZE, JobType.STRUCTURE_ANALYSIS]


@pytest.mark.anyio
async def test_gate_halts_until_approved_once(orchestrator: StageOrchestrator, queue: InMemoryWorkQueue, course_id: str, organization_id: str, user_id: str) -> None:
  await orchestrator.start_generation(course_id, organization_id, user_id)
  await orchestrator.handle_stage_result(course_id, 1, StageResult())
  state = await orchestrator.handle_stage_result(course_id, 3, StageResult(output={"analysis": {"topic": "x"}}, analysis_result={"topic": "x"}))

  assert state.status == GenerationStatus.STAGE_3_AWAITING_APPROVAL
  assert state.analysis_result == {"topic": "x"}
  await _drain(queue)

  with pytest.raises(StaleApprovalError):
    await orchestrator.approve(course_id, 2)

  approved = await orchestrator.approve(course_id, 3)
  assert approved.status == GenerationStatus.GENERATING_STRUCTURE
  assert approved.current_stage == 4
  assert await _drain(queue) == [JobType.STRUCTURE_GENERATION]

  with pytest.raises(StaleApprovalError):
    await orchestrator.approve(course_id, 3)


@pytest.mark.anyio
async def test_concurrent_approvals_advance_exactly_once(orchestrator: StageOrchestrator, queue: InMemoryWorkQueue, course_id: str, organization_id: str, user_id: str) -> None:
  await orchestrator.start_generation(course_id, organization_id, user_id)
  await orchestrator.handle_stage_result(course_id, 1, StageResult())
  await orchestrator.handle_stage_result(course_id, 3, StageResult())
  await _drain(queue)

  results = await asyncio.gather(orchestrator.approve(course_id, 3), orchestrator.approve(course_id, 3), return_exceptions=True)
  assert sum(isinstance(result, StaleApprovalError) for result in results) == 1
  assert await _drain(queue) == [JobType.STRUCTURE_GENERATION]


@pytest.mark.anyio
async def test_approve_unknown_stage_is_stale(orchestrator: StageOrchestrator, course_id: str, organization_id: str, user_id: str) -> None:
  await orchestrator.start_generation(course_id, organization_id, user_id)
  with pytest.raises(StaleApprovalError):
    await orchestrator.approve(course_id, 1)
  with pytest.raises(StaleApprovalError):
    await orchestrator.approve(course_id, 6)


@pytest.mark.anyio
async def test_result_for_wrong_stage_is_ignored(orchestrator: StageOrchestrator, course_id: str, organization_id: str, user_id: str) -> None:
  await orchestrator.start_generation(course_id, organization_id, user_id)
  state = await orchestrator.handle_stage_result(course_id, 4, StageResult(output={"structure": {}}))
  assert state.status == GenerationStatus.INITIALIZING
  assert state.stage_outputs == {}


@pytest.mark.anyio
async def test_cancel_drops_queued_jobs_and_ignores_late_results(orchestrator: StageOrchestrator, queue: InMemoryWorkQueue, course_id: str, organization_id: str, user_id: str) -> None:
  await orchestrator.start_generation(course_id, organization_id, user_id)
  await orchestrator.handle_stage_result(course_id, 1, StageResult(output={"fileIds": []}))

  cancelled = await orchestrator.cancel_generation(course_id)
  assert cancelled.status == GenerationStatus.CANCELLED
  # Outputs of completed stages stay readable.
  assert cancelled.stage_outputs["1"] == {"fileIds": []}
  assert await _drain(queue) == []

  state = await orchestrator.handle_stage_result(course_id, 3, StageResult(analysis_result={"topic": "late"}))
  assert state.status == GenerationStatus.CANCELLED
  assert state.analysis_result is None


@pytest.mark.anyio
async def test_cancel_from_gate_and_twice(orchestrator: StageOrchestrator, course_id: str, organization_id: str, user_id: str) -> None:
  await orchestrator.start_generation(course_id, organization_id, user_id)
  await orchestrator.handle_stage_result(course_id, 1, StageResult())
  await orchestrator.handle_stage_result(course_id, 3, StageResult())

  state = await orchestrator.cancel_generation(course_id)
  assert state.status == GenerationStatus.CANCELLED
  with pytest.raises(InvalidTransitionError):
    await orchestrator.cancel_generation(course_id)
  with pytest.raises(StaleApprovalError):
    await orchestrator.approve(course_id, 3)


@pytest.mark.anyio
async def test_fail_stage_records_categorized_message(orchestrator: StageOrchestrator, course_id: str, organization_id: str, user_id: str) -> None:
  await orchestrator.start_generation(course_id, organization_id, user_id)
  await orchestrator.handle_stage_result(course_id, 1, StageResult())

  state = await orchestrator.fail_stage(course_id, 3, LLMProviderError("model unavailable"))
  assert state is not None
  assert state.status == GenerationStatus.FAILED
  assert state.error_message == "provider_error: model unavailable"
  assert state.progress.failed_stage == 3

  # Failed is absorbing; a second failure report leaves the first message.
  again = await orchestrator.fail_stage(course_id, 3, RuntimeError("boom"))
  assert again is not None
  assert again.error_message == "provider_error: model unavailable"


@pytest.mark.anyio
async def test_fail_stage_for_missing_course_returns_none(orchestrator: StageOrchestrator) -> None:
  assert await orchestrator.fail_stage(new_id(), 2, "storage_error: gone") is None


@pytest.mark.anyio
async def test_restart_rules(orchestrator: StageOrchestrator, queue: InMemoryWorkQueue, course_id: str, organization_id: str, user_id: str) -> None:
  await orchestrator.start_generation(course_id, organization_id, user_id)
  await orchestrator.handle_stage_result(course_id, 1, StageResult())

  with pytest.raises(InvalidTransitionError):
    await orchestrator.restart_stage(course_id, 3)

  await orchestrator.fail_stage(course_id, 3, LLMProviderError("model unavailable"))
  # The failed job would have been dead-lettered by the worker.
  await _drain(queue)

  with pytest.raises(ValidationError):
    await orchestrator.restart_stage(course_id, 7)
  with pytest.raises(InvalidTransitionError):
    await orchestrator.restart_stage(course_id, 4)

  state = await orchestrator.restart_stage(course_id, 3)
  assert state.status == GenerationStatus.ANALYZING_TASK
  assert state.error_message is None
  assert state.progress.failed_stage is None
  assert state.progress.step == 1
  assert await _drain(queue) == [JobType.STRUCTURE_ANALYSIS]


@pytest.mark.anyio
async def test_restart_waits_for_the_failing_job_to_release(orchestrator: StageOrchestrator, queue: InMemoryWorkQueue, course_id: str, organization_id: str, user_id: str) -> None:
  await orchestrator.start_generation(course_id, organization_id, user_id)
  await orchestrator.handle_stage_result(course_id, 1, StageResult())
  initialize = await queue.dequeue(60)
  assert initialize is not None
  await queue.ack(initialize)
  analysis = await queue.dequeue(60)
  assert analysis is not None and analysis.job.job_type == JobType.STRUCTURE_ANALYSIS
  await orchestrator.fail_stage(course_id, 3, "provider_error: model unavailable")

  with pytest.raises(DuplicateJobError):
    await orchestrator.restart_stage(course_id, 3)
  state = await orchestrator.get_state(course_id)
  assert state.status == GenerationStatus.FAILED
  assert state.error_message == "provider_error: model unavailable"

  await queue.dead_letter(analysis, "provider_error: model unavailable")
  restarted = await orchestrator.restart_stage(course_id, 3)
  assert restarted.status == GenerationStatus.ANALYZING_TASK
  assert restarted.error_message is None


@pytest.mark.anyio
async def test_restart_earlier_stage_rolls_progress_back(orchestrator: StageOrchestrator, queue: InMemoryWorkQueue, course_id: str, organization_id: str, user_id: str) -> None:
  await orchestrator.start_generation(course_id, organization_id, user_id)
  await orchestrator.handle_stage_result(course_id, 1, StageResult())
  await orchestrator.handle_stage_result(course_id, 3, StageResult())
  await orchestrator.approve(course_id, 3)
  await orchestrator.fail_stage(course_id, 4, "provider_error: timeout")
  await _drain(queue)

  state = await orchestrator.restart_stage(course_id, 1)
  assert state.status == GenerationStatus.INITIALIZING
  assert state.progress.step == 0
  assert state.progress.percentage == 0.0
  assert "stage_3_completed_at" not in state.progress.stage_timestamps


@pytest.mark.anyio
async def test_document_stage_waits_for_every_file(repositories: Repositories, orchestrator: StageOrchestrator, queue: InMemoryWorkQueue, course_id: str, organization_id: str, user_id: str) -> None:
  high, low = new_id(), new_id()
  files = [
    CourseFile(file_id=low, course_id=course_id, storage_path="b.pdf", mime_type="application/pdf", priority="LOW"),
    CourseFile(file_id=high, course_id=course_id, storage_path="a.pdf", mime_type="application/pdf", priority="HIGH"),
  ]
  await orchestrator.start_generation(course_id, organization_id, user_id, files=files)
  state = await orchestrator.handle_stage_result(course_id, 1, StageResult())
  assert state.status == GenerationStatus.PROCESSING_DOCUMENTS

  initialize = await queue.dequeue(60)
  first = await queue.dequeue(60)
  second = await queue.dequeue(60)
  assert initialize is not None and initialize.job.job_type == JobType.INITIALIZE
  # HIGH-priority documents are leased first.
  assert first is not None and first.job.file_id == high
  assert second is not None and second.job.file_id == low
  assert second.job.payload["filePath"] == "b.pdf"

  await repositories.documents.update_file(high, processed=True, token_count=10)
  state = await orchestrator.handle_stage_result(course_id, 2, StageResult(file_id=high))
  assert state.status == GenerationStatus.PROCESSING_DOCUMENTS
  assert state.progress.message.endswith("1 remaining")

  await repositories.documents.update_file(low, processed=True, token_count=20)
  state = await orchestrator.handle_stage_result(course_id, 2, StageResult(file_id=low))
  assert state.status == GenerationStatus.STAGE_2_AWAITING_APPROVAL
  assert {entry["fileId"] for entry in state.stage_outputs["2"]["files"]} == {high, low}

  # A duplicate report for the last file does not advance the course twice.
  again = await orchestrator.handle_stage_result(course_id, 2, StageResult(file_id=low))
  assert again.status == GenerationStatus.STAGE_2_AWAITING_APPROVAL


@pytest.mark.anyio
async def test_restart_document_stage_requeues_failed_files(repositories: Repositories, orchestrator: StageOrchestrator, queue: InMemoryWorkQueue, course_id: str, organization_id: str, user_id: str) -> None:
  ok, broken = new_id(), new_id()
  files = [
    CourseFile(file_id=ok, course_id=course_id, storage_path="ok.pdf", mime_type="application/pdf"),
    CourseFile(file_id=broken, course_id=course_id, storage_path="broken.pdf", mime_type="application/pdf"),
  ]
  await orchestrator.start_generation(course_id, organization_id, user_id, files=files)
  await orchestrator.handle_stage_result(course_id, 1, StageResult())
  await repositories.documents.update_file(ok, processed=True)
  await repositories.documents.update_file(broken, error_message="converter returned 500")
  await orchestrator.fail_stage(course_id, 2, "provider_error: converter returned 500")
  await _drain(queue)

  state = await orchestrator.restart_stage(course_id, 2)
  assert state.status == GenerationStatus.PROCESSING_DOCUMENTS
  lease = await queue.dequeue(60)
  assert lease is not None and lease.job.file_id == broken
  assert await queue.dequeue(60) is None
  restored = await repositories.documents.get_file(broken)
  assert restored is not None and restored.error_message is None


@pytest.mark.anyio
async def test_without_gates_runs_straight_to_completion(repositories: Repositories, queue: InMemoryWorkQueue, course_id: str, organization_id: str, user_id: str) -> None:
  orchestrator = StageOrchestrator(courses_repo=repositories.courses, documents_repo=repositories.documents, queue=queue, policy=ApprovalPolicy(stages=frozenset()))
  await orchestrator.start_generation(course_id, organization_id, user_id)
  for stage in (1, 3, 4, 5):
    state = await orchestrator.handle_stage_result(course_id, stage, StageResult())
    assert state.status == GenerationStatus.running(state.current_stage)

  state = await orchestrator.handle_stage_result(course_id, 6, StageResult(output={"lessonsCount": 0}))
  assert state.status == GenerationStatus.COMPLETED
  assert state.progress.percentage == 100.0
  assert sorted(state.stage_outputs) == ["1", "3", "4", "5", "6"]
