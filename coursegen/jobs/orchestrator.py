"""Stage state machine for course generation."""

from __future__ import annotations

import logging
from typing import Any

from coursegen.errors import CourseGenerationError, DuplicateJobError, InvalidTransitionError, NotFoundError, StaleApprovalError, ValidationError, describe_failure
from coursegen.jobs.approval import GATEABLE_STAGES, ApprovalPolicy
from coursegen.jobs.identifiers import CourseId, JobId, OrganizationId, UserId
from coursegen.jobs.models import TOTAL_STAGES, CourseFile, CourseGenerationState, GenerationJob, GenerationStatus, JobType, ProgressRecord, StageResult, dedup_key_for
from coursegen.jobs.payloads import dump_job_payload, payload_field_names, validate_job_payload
from coursegen.jobs.progress import ProgressReporter, mark_stage_completed, mark_stage_failed, mark_stage_restarted, mark_stage_started
from coursegen.queue.interface import WorkQueue
from coursegen.storage.courses_repo import CourseStateRepository
from coursegen.storage.documents_repo import DocumentRepository
from coursegen.utils.ids import generate_idempotency_key, generate_job_id, utc_timestamp

logger = logging.getLogger(__name__)

# HIGH-priority documents are processed ahead of the rest.
_FILE_PRIORITY = {"HIGH": 0, "LOW": 1}
_DEFAULT_FILE_PRIORITY = 1


class StageOrchestrator:
  """Advances a course through its stages, halting at configured approval gates."""

  def __init__(self, *, courses_repo: CourseStateRepository, documents_repo: DocumentRepository, queue: WorkQueue, policy: ApprovalPolicy | None = None, progress: ProgressReporter | None = None) -> None:
    self._courses_repo = courses_repo
    self._documents_repo = documents_repo
    self._queue = queue
    self._policy = policy or ApprovalPolicy()
    self._progress = progress or ProgressReporter(courses_repo)

  @property
  def policy(self) -> ApprovalPolicy:
    return self._policy

  @property
  def progress(self) -> ProgressReporter:
    return self._progress

  async def get_state(self, course_id: str) -> CourseGenerationState:
    """Return the state row or raise NotFoundError."""
    course_id = CourseId(course_id)
    state = await self._courses_repo.get_state(course_id)
    if state is None:
      raise NotFoundError(f"Course generation {course_id} was not found.", context={"course_id": course_id})
    return state

  async def start_generation(
    self, course_id: str, organization_id: str, user_id: str, request: dict[str, Any] | None = None, *, files: list[CourseFile] | None = None
  ) -> CourseGenerationState:
    """Create the state row and submit the initialize job."""
    course_id = str(CourseId(course_id))
    organization_id = str(OrganizationId(organization_id))
    user_id = str(UserId(user_id))

    existing = await self._courses_repo.get_state(course_id)
    if existing is not None and not existing.is_terminal:
      raise DuplicateJobError(f"Course {course_id} already has an active generation ({existing.status.value}).", context={"course_id": course_id, "status": existing.status.value})

    if files:
      await self._documents_repo.add_files(files)

    now = utc_timestamp()
    progress = ProgressRecord(message="Generation requested")
    progress.add_log("Generation requested")
    state = CourseGenerationState(
      course_id=course_id,
      organization_id=organization_id,
      user_id=user_id,
      current_stage=0,
      status=GenerationStatus.INITIALIZING,
      started_at=now,
      updated_at=now,
      progress=progress,
      request=dict(request or {}),
    )
    await self._courses_repo.save_state(state)
    logger.info("Generation started course_id=%s organization_id=%s files=%d", course_id, organization_id, len(files or []))

    try:
      await self.submit(course_id, JobType.INITIALIZE, self._build_payload(state, JobType.INITIALIZE))
    except CourseGenerationError as exc:
      await self.fail_stage(course_id, 1, exc)
      raise
    return await self.get_state(course_id)

  async def submit(self, course_id: str, job_type: JobType, payload: dict[str, Any], *, priority: int = 0) -> JobId:
    """Validate and enqueue one stage job."""
    course_id = str(CourseId(course_id))
    validated = validate_job_payload(job_type, payload)
    if str(validated.course_id) != course_id:
      raise ValidationError(f"Payload courseId {validated.course_id} does not match course {course_id}.", context={"course_id": course_id})

    file_id = getattr(validated, "file_id", None)
    job = GenerationJob(
      job_id=generate_job_id(),
      job_type=job_type,
      organization_id=str(validated.organization_id),
      course_id=course_id,
      user_id=str(validated.user_id),
      payload=dump_job_payload(validated),
      created_at=utc_timestamp(),
      idempotency_key=generate_idempotency_key(course_id, job_type.value),
      priority=priority,
      file_id=str(file_id) if file_id else None,
    )
    await self._queue.enqueue(job)
    logger.info("Submitted job job_id=%s course_id=%s type=%s file_id=%s", job.job_id, course_id, job_type.value, job.file_id)
    return JobId(job.job_id)

  async def handle_stage_result(self, course_id: str, stage_number: int, result: StageResult) -> CourseGenerationState:
    """Persist a stage's output and move to the next status or gate."""
    state = await self.get_state(course_id)
    if state.is_terminal or state.status.running_stage != stage_number:
      logger.info("Ignoring stage result course_id=%s stage=%s status=%s", course_id, stage_number, state.status.value)
      return state

    has_files = False
    if stage_number == 2:
      files = await self._documents_repo.list_course_files(state.course_id)
      pending = [file.file_id for file in files if not file.processed]
      if pending:
        # Stage 2 completes only once every file has reported.
        await self._progress.report_message(state.course_id, f"Processed document {result.file_id}; {len(pending)} remaining")
        return await self.get_state(course_id)
      output = {"files": [{"fileId": file.file_id, "priority": file.priority, "tokenCount": file.token_count} for file in files]}
    else:
      output = result.output
      if stage_number == 1:
        has_files = bool(await self._documents_repo.list_course_files(state.course_id))

    next_stage = self._next_stage(stage_number, has_files=has_files)
    stage_outputs = dict(state.stage_outputs)
    stage_outputs[str(stage_number)] = output
    progress = mark_stage_completed(state.progress, stage_number, f"Stage {stage_number} completed")

    if next_stage is None:
      new_status = GenerationStatus.COMPLETED
    elif stage_number != 1 and self._policy.requires_approval(stage_number):
      new_status = GenerationStatus.awaiting(stage_number)
    else:
      new_status = GenerationStatus.running(next_stage)

    updated = await self._courses_repo.update_state(
      state.course_id,
      expected_status=state.status,
      status=new_status,
      current_stage=new_status.running_stage or stage_number,
      progress=progress,
      stage_outputs=stage_outputs,
      analysis_result=result.analysis_result,
      course_structure=result.course_structure,
      budget_allocation=result.budget_allocation,
    )
    if updated is None:
      # Another worker advanced the course, or it was cancelled meanwhile.
      logger.info("Lost stage transition course_id=%s stage=%s", course_id, stage_number)
      return await self.get_state(course_id)

    logger.info("Stage completed course_id=%s stage=%s status=%s", course_id, stage_number, new_status.value)
    if new_status.running_stage is not None:
      await self._dispatch_stage(updated, new_status.running_stage)
      return await self.get_state(course_id)
    return updated

  async def approve(self, course_id: str, stage_number: int) -> CourseGenerationState:
    """Release the gate after `stage_number` and submit the next stage."""
    state = await self.get_state(course_id)
    gate = GenerationStatus.awaiting(stage_number) if stage_number in GATEABLE_STAGES else None
    if gate is None or state.status != gate:
      raise StaleApprovalError(f"Course {course_id} is not awaiting approval of stage {stage_number} (status {state.status.value}).", context={"course_id": course_id, "status": state.status.value})

    next_stage = stage_number + 1
    progress = mark_stage_started(state.progress, next_stage, f"Stage {stage_number} approved")
    updated = await self._courses_repo.update_state(
      state.course_id, expected_status=gate, status=GenerationStatus.running(next_stage), current_stage=next_stage, progress=progress
    )
    if updated is None:
      raise StaleApprovalError(f"Course {course_id} already left the stage {stage_number} gate.", context={"course_id": course_id})

    logger.info("Stage approved course_id=%s stage=%s", course_id, stage_number)
    await self._dispatch_stage(updated, next_stage)
    return await self.get_state(course_id)

  async def cancel_generation(self, course_id: str) -> CourseGenerationState:
    """Cancel from any non-terminal status; stage outputs are kept."""
    while True:
      state = await self.get_state(course_id)
      if state.is_terminal:
        raise InvalidTransitionError(f"Course {course_id} is already {state.status.value}.", context={"course_id": course_id, "status": state.status.value})

      progress = ProgressRecord.from_dict(state.progress.to_dict())
      progress.message = "Generation cancelled"
      progress.add_log(f"Generation cancelled during {state.status.value}")
      updated = await self._courses_repo.update_state(state.course_id, expected_status=state.status, status=GenerationStatus.CANCELLED, progress=progress)
      if updated is not None:
        break
      # The status moved underneath us; re-read and try again.

    dropped = await self._queue.cancel_course(state.course_id)
    logger.info("Generation cancelled course_id=%s previous_status=%s dropped_jobs=%d", course_id, state.status.value, dropped)
    return updated

  async def fail_stage(self, course_id: str, stage_number: int, error: BaseException | str) -> CourseGenerationState | None:
    """Mark the course failed with a categorized message; terminal courses are left alone."""
    message = error if isinstance(error, str) else describe_failure(error)
    while True:
      state = await self._courses_repo.get_state(str(course_id))
      if state is None:
        logger.warning("Cannot fail missing course course_id=%s stage=%s", course_id, stage_number)
        return None
      if state.is_terminal:
        logger.info("Ignoring stage failure for terminal course course_id=%s stage=%s status=%s", course_id, stage_number, state.status.value)
        return state

      progress = mark_stage_failed(state.progress, stage_number, message)
      updated = await self._courses_repo.update_state(state.course_id, expected_status=state.status, status=GenerationStatus.FAILED, progress=progress, error_message=message)
      if updated is not None:
        logger.error("Stage failed course_id=%s stage=%s error=%s", course_id, stage_number, message)
        return updated

  async def restart_stage(self, course_id: str, stage_number: int) -> CourseGenerationState:
    """Reset a failed course to `stage_number` and submit a fresh job."""
    if not 1 <= stage_number <= TOTAL_STAGES:
      raise ValidationError(f"Stage {stage_number} does not exist.", context={"stage": stage_number})

    state = await self.get_state(course_id)
    if state.status != GenerationStatus.FAILED:
      raise InvalidTransitionError(f"Only failed generations can be restarted; course {course_id} is {state.status.value}.", context={"course_id": course_id, "status": state.status.value})
    failed_stage = state.progress.failed_stage or state.current_stage
    if failed_stage and stage_number > failed_stage:
      raise InvalidTransitionError(f"Cannot restart at stage {stage_number} beyond failed stage {failed_stage}.", context={"course_id": course_id, "failed_stage": failed_stage})
    # The failing job may still hold its lease until the worker dead-letters it.
    if await self._stage_in_flight(state.course_id, stage_number):
      raise DuplicateJobError(f"A stage {stage_number} job for course {course_id} is still in flight.", context={"course_id": course_id, "stage": stage_number})

    if stage_number == 2:
      reset = await self._documents_repo.reset_file_errors(state.course_id)
      logger.info("Cleared document errors course_id=%s files=%d", course_id, reset)

    progress = mark_stage_restarted(state.progress, stage_number)
    updated = await self._courses_repo.update_state(
      state.course_id, expected_status=GenerationStatus.FAILED, status=GenerationStatus.running(stage_number), current_stage=stage_number, progress=progress, clear_error=True
    )
    if updated is None:
      raise InvalidTransitionError(f"Course {course_id} changed status during restart.", context={"course_id": course_id})

    logger.info("Stage restarted course_id=%s stage=%s", course_id, stage_number)
    await self._dispatch_stage(updated, stage_number)
    return await self.get_state(course_id)

  async def _stage_in_flight(self, course_id: str, stage_number: int) -> bool:
    if stage_number == 2:
      files = await self._documents_repo.list_course_files(course_id)
      keys = [dedup_key_for(course_id, 2, file.file_id) for file in files if not file.processed]
    else:
      keys = [dedup_key_for(course_id, stage_number)]
    for key in keys:
      if await self._queue.in_flight(key):
        return True
    return False

  def _next_stage(self, stage_number: int, *, has_files: bool) -> int | None:
    if stage_number == 1:
      return 2 if has_files else 3
    if stage_number >= TOTAL_STAGES:
      return None
    return stage_number + 1

  def _build_payload(self, state: CourseGenerationState, job_type: JobType, file: CourseFile | None = None) -> dict[str, Any]:
    """Derive a stage payload from the start request plus the course identity."""
    accepted = payload_field_names(job_type)
    payload = {key: value for key, value in state.request.items() if key in accepted}
    payload.update(jobType=job_type.value, organizationId=state.organization_id, courseId=state.course_id, userId=state.user_id, createdAt=utc_timestamp())
    if file is not None:
      payload.update(fileId=file.file_id, filePath=file.storage_path, mimeType=file.mime_type)
    return payload

  async def _dispatch_stage(self, state: CourseGenerationState, stage: int) -> None:
    """Submit the job(s) for a stage the course just entered; a failed submission fails the stage."""
    job_type = JobType.for_stage(stage)
    try:
      if job_type == JobType.DOCUMENT_PROCESSING:
        files = [file for file in await self._documents_repo.list_course_files(state.course_id) if not file.processed]
        for file in files:
          priority = _FILE_PRIORITY.get(file.priority or "", _DEFAULT_FILE_PRIORITY)
          await self.submit(state.course_id, job_type, self._build_payload(state, job_type, file), priority=priority)
        if not files:
          # Every file already finished, so the stage completes without work.
          await self.handle_stage_result(state.course_id, stage, StageResult())
      else:
        await self.submit(state.course_id, job_type, self._build_payload(state, job_type))
    except CourseGenerationError as exc:
      await self.fail_stage(state.course_id, stage, exc)
      raise
