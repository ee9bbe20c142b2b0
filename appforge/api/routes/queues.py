"""Operator endpoints for inspecting and managing queues."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from appforge.api.deps import get_container, get_queue, require_task_secret
from appforge.api.models import CleanQueueRequest, CleanQueueResponse, JobResponse, QueueStatusResponse
from appforge.core.container import Container
from appforge.queue.models import JobStatus
from appforge.queue.queue import JobQueue

router = APIRouter(dependencies=[Depends(require_task_secret)])
logger = logging.getLogger(__name__)


async def _status(queue: JobQueue) -> QueueStatusResponse:
  return QueueStatusResponse(name=queue.name, paused=queue.is_paused, concurrency=queue.config.concurrency, counts=await queue.counts())


@router.get("", response_model=list[QueueStatusResponse])
async def list_queues(container: Annotated[Container, Depends(get_container)]) -> list[QueueStatusResponse]:
  return [await _status(queue) for queue in container.queues]


@router.get("/{name}", response_model=QueueStatusResponse)
async def get_queue_status(queue: Annotated[JobQueue, Depends(get_queue)]) -> QueueStatusResponse:
  return await _status(queue)


@router.get("/{name}/jobs", response_model=list[JobResponse])
async def list_queue_jobs(
  queue: Annotated[JobQueue, Depends(get_queue)],
  job_status: Annotated[JobStatus | None, Query(alias="status")] = None,
  correlation_id: Annotated[str | None, Query(alias="correlationId")] = None,
  limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[JobResponse]:
  jobs = await queue.list_jobs(status=job_status, correlation_id=correlation_id, limit=limit)
  return [JobResponse.from_record(job) for job in jobs]


@router.get("/{name}/jobs/{job_id}", response_model=JobResponse)
async def get_queue_job(job_id: str, queue: Annotated[JobQueue, Depends(get_queue)]) -> JobResponse:
  return JobResponse.from_record(await queue.require_job(job_id))


@router.delete("/{name}/jobs/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_queue_job(job_id: str, queue: Annotated[JobQueue, Depends(get_queue)]) -> Response:
  """Remove a job that is not currently executing."""
  await queue.remove_job(job_id)
  return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{name}/pause", response_model=QueueStatusResponse)
async def pause_queue(queue: Annotated[JobQueue, Depends(get_queue)]) -> QueueStatusResponse:
  queue.pause()
  return await _status(queue)


@router.post("/{name}/resume", response_model=QueueStatusResponse)
async def resume_queue(queue: Annotated[JobQueue, Depends(get_queue)]) -> QueueStatusResponse:
  queue.resume()
  return await _status(queue)


@router.post("/{name}/clean", response_model=CleanQueueResponse)
async def clean_queue(payload: CleanQueueRequest, queue: Annotated[JobQueue, Depends(get_queue)]) -> CleanQueueResponse:
  removed = await queue.clean(payload.status, grace_seconds=payload.grace_seconds, limit=payload.limit)
  logger.info("Operator cleaned queue=%s status=%s removed=%d", queue.name, payload.status, len(removed))
  return CleanQueueResponse(removed=removed)
