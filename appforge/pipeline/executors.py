"""Out-of-process build and deployment executors."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
import msgspec

from appforge.config import Settings
from appforge.core.errors import UnrecoverableJobError

logger = logging.getLogger(__name__)


class ExecutorResult(msgspec.Struct, kw_only=True):
  """Outcome reported by a build or deployment executor."""

  success: bool
  error: str | None = None
  url: str | None = None
  logs: list[str] = msgspec.field(default_factory=list)
  artifact: dict[str, Any] | None = None

  def as_dict(self) -> dict[str, Any]:
    return msgspec.to_builtins(self)


class StageExecutor(Protocol):
  """Runs one pipeline stage for a job payload."""

  async def execute(self, payload: dict[str, Any]) -> ExecutorResult:
    """Run the stage and report its outcome; raise only on transport failure."""


class HttpStageExecutor:
  """POST the job payload to an executor service and decode its verdict."""

  def __init__(self, url: str | None, settings: Settings, *, stage: str, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._url = url
    self._settings = settings
    self._stage = stage
    self._transport = transport

  def _headers(self) -> dict[str, str]:
    if not self._settings.task_secret:
      return {}
    return {"authorization": f"Bearer {self._settings.task_secret}"}

  def _build_client(self) -> httpx.AsyncClient:
    # Never trust environment proxy variables for executor dispatch.
    return httpx.AsyncClient(transport=self._transport, trust_env=False, timeout=self._settings.executor_timeout_seconds)

  async def execute(self, payload: dict[str, Any]) -> ExecutorResult:
    if not self._url:
      raise UnrecoverableJobError(f"No {self._stage} executor configured.")

    try:
      async with self._build_client() as client:
        logger.info("Dispatching %s job to %s", self._stage, self._url)
        response = await client.post(self._url, json=payload, headers=self._headers())
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
      logger.error("%s executor returned %s: %s", self._stage, exc.response.status_code, exc.response.text)
      raise
    except httpx.RequestError as exc:
      logger.error("Failed to reach %s executor: %s", self._stage, exc)
      raise

    try:
      return msgspec.json.decode(response.content, type=ExecutorResult)
    except msgspec.DecodeError as exc:
      raise UnrecoverableJobError(f"{self._stage} executor returned an invalid result: {exc}") from exc
