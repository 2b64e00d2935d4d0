import logging

from fastapi import APIRouter, Depends, status

from coursegen.api.deps import get_orchestrator
from coursegen.api.models import GenerationStateResponse, StageActionRequest, StartGenerationRequest, SubmitJobRequest, SubmitJobResponse
from coursegen.jobs.identifiers import CourseId
from coursegen.jobs.orchestrator import StageOrchestrator

router = APIRouter(prefix="/courses", tags=["generation"])
logger = logging.getLogger("coursegen.api.routes.generation")


@router.post("/{course_id}/start", response_model=GenerationStateResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_generation(
  course_id: str,
  request: StartGenerationRequest,
  orchestrator: StageOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> GenerationStateResponse:
  """Create the generation state and queue the initialize stage."""
  course_id = str(CourseId(course_id))
  files = [item.to_course_file(course_id) for item in request.files]
  state = await orchestrator.start_generation(course_id, str(request.organization_id), str(request.user_id), request.to_stage_request(), files=files)
  return GenerationStateResponse.from_state(state)


@router.post("/{course_id}/jobs", response_model=SubmitJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_job(
  course_id: str,
  request: SubmitJobRequest,
  orchestrator: StageOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> SubmitJobResponse:
  """Validate and enqueue a single stage job."""
  job_id = await orchestrator.submit(course_id, request.job_type, request.payload, priority=request.priority)
  return SubmitJobResponse(job_id=job_id)


@router.post("/{course_id}/approve", response_model=GenerationStateResponse)
async def approve_stage(
  course_id: str,
  request: StageActionRequest,
  orchestrator: StageOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> GenerationStateResponse:
  """Release an approval gate and continue with the next stage."""
  state = await orchestrator.approve(course_id, request.stage_number)
  return GenerationStateResponse.from_state(state)


@router.post("/{course_id}/cancel", response_model=GenerationStateResponse)
async def cancel_generation(
  course_id: str,
  orchestrator: StageOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> GenerationStateResponse:
  """Cancel a running or gated generation."""
  state = await orchestrator.cancel_generation(course_id)
  return GenerationStateResponse.from_state(state)


@router.post("/{course_id}/restart", response_model=GenerationStateResponse)
async def restart_stage(
  course_id: str,
  request: StageActionRequest,
  orchestrator: StageOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> GenerationStateResponse:
  """Restart a failed generation at the given stage."""
  state = await orchestrator.restart_stage(course_id, request.stage_number)
  return GenerationStateResponse.from_state(state)


@router.get("/{course_id}", response_model=GenerationStateResponse)
async def get_generation_state(
  course_id: str,
  orchestrator: StageOrchestrator = Depends(get_orchestrator),  # noqa: B008
) -> GenerationStateResponse:
  """Fetch the current generation state of a course."""
  state = await orchestrator.get_state(course_id)
  return GenerationStateResponse.from_state(state)
