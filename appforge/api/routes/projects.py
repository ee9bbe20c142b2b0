import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from appforge.api.deps import get_container
from appforge.api.models import CreateProjectRequest, RunResponse
from appforge.core.container import Container
from appforge.events.sse import stream_events

router = APIRouter()
logger = logging.getLogger("appforge.api.routes.projects")


@router.post("", response_model=RunResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_project_run(
  request: CreateProjectRequest,
  container: Annotated[Container, Depends(get_container)],
  idempotency_key: str | None = Header(default=None),
) -> RunResponse:
  """Submit a prompt and start its generation pipeline."""
  try:
    run = await container.pipeline.start_run(
      request.project_id,
      request.user_id,
      request.prompt,
      asset_keys=request.asset_keys,
      environment=request.environment,
      idempotency_key=request.idempotency_key or idempotency_key,
    )
  except ValueError as exc:
    raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
  return RunResponse.from_run(run)


@router.get("/{project_id}/run", response_model=RunResponse)
async def get_project_run(project_id: str, container: Annotated[Container, Depends(get_container)]) -> RunResponse:
  """Return the latest run of a project; observers use this to resynchronize."""
  run = await container.pipeline.get_run(project_id)
  return RunResponse.from_run(run)


@router.delete("/{project_id}/run", response_model=RunResponse)
async def cancel_project_run(project_id: str, container: Annotated[Container, Depends(get_container)]) -> RunResponse:
  """Fail the active run of a project."""
  run = await container.pipeline.cancel_run(project_id, "Cancelled by request")
  if run is None:
    run = await container.pipeline.get_run(project_id)
  return RunResponse.from_run(run)


@router.get("/{project_id}/events")
async def stream_project_events(project_id: str, request: Request, container: Annotated[Container, Depends(get_container)]) -> StreamingResponse:
  """Stream live progress events for a project; nothing published before connecting is replayed."""
  subscription = container.channel.subscribe(project_id)
  logger.info("Event stream opened project_id=%s subscribers=%d", project_id, container.channel.subscriber_count(project_id))
  return StreamingResponse(
    stream_events(subscription, request.is_disconnected),
    media_type="text/event-stream",
    headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no", "Connection": "keep-alive"},
  )
