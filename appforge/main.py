from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from appforge import __version__
from appforge.api.routes import ai_tasks, projects, queues
from appforge.config import get_settings
from appforge.core.errors import JobActiveError, JobNotFoundError, RunConflictError, RunNotFoundError
from appforge.core.exceptions import conflict_exception_handler, global_exception_handler, http_exception_handler, not_found_exception_handler, request_validation_exception_handler
from appforge.core.lifespan import lifespan
from appforge.core.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware

settings = get_settings()

app = FastAPI(title="AppForge", version=__version__, lifespan=lifespan, docs_url="/docs" if settings.debug else None, redoc_url=None)

app.add_middleware(CORSMiddleware, allow_origins=settings.allowed_origins, allow_credentials=True, allow_methods=["GET", "POST", "DELETE", "OPTIONS"], allow_headers=["content-type", "authorization", "idempotency-key"], expose_headers=["content-length", "x-request-id"])

app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(JobNotFoundError, not_found_exception_handler)
app.add_exception_handler(RunNotFoundError, not_found_exception_handler)
app.add_exception_handler(JobActiveError, conflict_exception_handler)
app.add_exception_handler(RunConflictError, conflict_exception_handler)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": __version__}


app.include_router(projects.router, prefix="/v1/projects", tags=["projects"])
app.include_router(ai_tasks.router, prefix="/v1/ai-tasks", tags=["ai-tasks"])
app.include_router(queues.router, prefix="/admin/queues", tags=["admin"])
