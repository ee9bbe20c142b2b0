"""Shared FastAPI dependencies."""

from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from appforge.config import Settings, get_settings
from appforge.core.container import Container
from appforge.queue.queue import JobQueue

logger = logging.getLogger(__name__)


def get_container(request: Request) -> Container:
  """Return the container built during startup."""
  container = getattr(request.app.state, "container", None)
  if container is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is starting up.")
  return container


def require_task_secret(settings: Annotated[Settings, Depends(get_settings)], authorization: str | None = Header(default=None), x_appforge_task_secret: str | None = Header(default=None)) -> None:
  """Guard operator endpoints with the shared task secret."""
  # Deny by default when no secret is configured.
  if not settings.task_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Task authentication is not configured.")
  shared_secret_valid = secrets.compare_digest((x_appforge_task_secret or ""), settings.task_secret)
  bearer_valid = secrets.compare_digest((authorization or ""), f"Bearer {settings.task_secret}")
  if not shared_secret_valid and not bearer_valid:
    logger.warning("Unauthorized access attempt to operator endpoint")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid task secret.")


def get_queue(name: str, container: Annotated[Container, Depends(get_container)]) -> JobQueue:
  """Resolve the `{name}` path segment to a queue."""
  try:
    return container.queues.get(name)
  except ValueError as exc:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
