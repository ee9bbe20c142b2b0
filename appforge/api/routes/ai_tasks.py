import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status

from appforge.api.deps import get_container
from appforge.api.models import CreateAITaskRequest, EnqueueResponse, JobResponse
from appforge.core.container import Container
from appforge.queue.models import QueueName

router = APIRouter()
logger = logging.getLogger("appforge.api.routes.ai_tasks")


@router.post("", response_model=EnqueueResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_ai_task(request: CreateAITaskRequest, container: Annotated[Container, Depends(get_container)]) -> EnqueueResponse:
  """Queue a standalone AI task."""
  result = await container.producers.add_ai_task_job(request.user_id, request.type, request.input, project_id=request.project_id, context=request.context, llm=request.llm)
  return EnqueueResponse(job_id=result.job_id, queue=result.queue_name, duplicate=not result.accepted)


@router.get("/{task_id}", response_model=JobResponse)
async def get_ai_task(task_id: str, container: Annotated[Container, Depends(get_container)]) -> JobResponse:
  """Return the status and output of an AI task."""
  job = await container.queues.get(QueueName.AI_TASK).require_job(task_id)
  return JobResponse.from_record(job)
