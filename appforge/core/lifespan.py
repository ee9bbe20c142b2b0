import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from appforge.core.container import Container
from appforge.core.database import dispose_engine
from appforge.core.logging import _initialize_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging, build the container and run queue workers for the app lifetime."""
  from appforge.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("appforge.core.lifespan")

  try:
    _initialize_logging(settings)
    logger.info("Startup complete - logging verified.")
  except Exception:  # noqa: BLE001
    logger.warning("Initial logging setup failed; continuing with default handlers.", exc_info=True)

  # Tests install their own container before startup.
  container = getattr(app.state, "container", None)
  if container is None:
    if settings.job_store == "postgres":
      logger.info("Using Postgres job store at %s", _redact_dsn(settings.pg_dsn))
    container = Container(settings)
    app.state.container = container

  if settings.workers_enabled:
    container.start_workers()
  else:
    logger.info("Queue workers disabled; jobs will only be enqueued.")

  try:
    yield
  finally:
    if settings.workers_enabled:
      await container.stop_workers()
    await dispose_engine()
    logger.info("Shutdown complete.")


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
