"""Application configuration loaded from environment variables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache

from appforge.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

_JOB_STORES = {"memory", "postgres"}
_AI_PROVIDERS = {"gemini", "openrouter"}
_DEPLOY_ENVIRONMENTS = {"preview", "staging", "production"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the AppForge service."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_max_bytes: int
  log_backup_count: int
  log_dir: str | None
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  job_store: str
  workers_enabled: bool
  worker_poll_interval_seconds: float
  retention_sweep_seconds: float
  queue_concurrency: dict[str, int] = field(hash=False)
  healing_max_attempts: int
  planner_max_prompt_chars: int
  ai_provider: str
  ai_model: str | None
  openrouter_api_key: str | None
  gemini_api_key: str | None
  build_executor_url: str | None
  deploy_executor_url: str | None
  notification_webhook_url: str | None
  executor_timeout_seconds: float
  task_secret: str | None
  event_buffer_size: int
  default_deploy_environment: str


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("APPFORGE_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("APPFORGE_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("APPFORGE_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  return value or None


def _parse_concurrency(raw: str | None) -> dict[str, int]:
  """Parse a JSON object of queue name to worker concurrency."""
  if not raw:
    return {}
  try:
    parsed = json.loads(raw)
  except json.JSONDecodeError as exc:
    raise ValueError("APPFORGE_QUEUE_CONCURRENCY must be a JSON object.") from exc
  if not isinstance(parsed, dict):
    raise ValueError("APPFORGE_QUEUE_CONCURRENCY must be a JSON object.")

  concurrency: dict[str, int] = {}
  for queue_name, value in parsed.items():
    try:
      limit = int(value)
    except (TypeError, ValueError) as exc:
      raise ValueError(f"APPFORGE_QUEUE_CONCURRENCY[{queue_name}] must be an integer.") from exc
    if limit <= 0:
      raise ValueError(f"APPFORGE_QUEUE_CONCURRENCY[{queue_name}] must be a positive integer.")
    concurrency[str(queue_name)] = limit
  return concurrency


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


def _resolve_pg_dsn() -> str | None:
  return _optional_str(os.getenv("APPFORGE_PG_DSN")) or _optional_str(os.getenv("DATABASE_URL"))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("APPFORGE_ENV", "development").lower()
  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("APPFORGE_DEBUG"))

  log_max_bytes = _positive_int("APPFORGE_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("APPFORGE_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("APPFORGE_LOG_BACKUP_COUNT must be zero or a positive integer.")

  pg_dsn = _resolve_pg_dsn()
  job_store = (os.getenv("APPFORGE_JOB_STORE") or "memory").strip().lower()
  if job_store not in _JOB_STORES:
    raise ValueError("APPFORGE_JOB_STORE must be 'memory' or 'postgres'.")
  if job_store == "postgres" and not pg_dsn:
    raise ValueError("APPFORGE_PG_DSN must be set when APPFORGE_JOB_STORE is 'postgres'.")

  ai_provider = (os.getenv("APPFORGE_AI_PROVIDER") or "gemini").strip().lower()
  if ai_provider not in _AI_PROVIDERS:
    raise ValueError("APPFORGE_AI_PROVIDER must be 'gemini' or 'openrouter'.")

  default_deploy_environment = (os.getenv("APPFORGE_DEFAULT_DEPLOY_ENVIRONMENT") or "preview").strip().lower()
  if default_deploy_environment not in _DEPLOY_ENVIRONMENTS:
    raise ValueError("APPFORGE_DEFAULT_DEPLOY_ENVIRONMENT must be one of preview, staging, production.")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("APPFORGE_ALLOWED_ORIGINS")),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_dir=_optional_str(os.getenv("APPFORGE_LOG_DIR")),
    log_http_4xx=_parse_bool(os.getenv("APPFORGE_LOG_HTTP_4XX")),
    pg_dsn=pg_dsn,
    pg_connect_timeout=_positive_int("APPFORGE_PG_CONNECT_TIMEOUT", "5"),
    job_store=job_store,
    workers_enabled=_parse_bool(os.getenv("APPFORGE_WORKERS_ENABLED"), default=True),
    worker_poll_interval_seconds=_positive_float("APPFORGE_WORKER_POLL_INTERVAL_SECONDS", "0.5"),
    retention_sweep_seconds=_positive_float("APPFORGE_RETENTION_SWEEP_SECONDS", "60"),
    queue_concurrency=_parse_concurrency(os.getenv("APPFORGE_QUEUE_CONCURRENCY")),
    healing_max_attempts=_positive_int("APPFORGE_HEALING_MAX_ATTEMPTS", "3"),
    planner_max_prompt_chars=_positive_int("APPFORGE_PLANNER_MAX_PROMPT_CHARS", "10000"),
    ai_provider=ai_provider,
    ai_model=_optional_str(os.getenv("APPFORGE_AI_MODEL")),
    openrouter_api_key=_optional_str(os.getenv("OPENROUTER_API_KEY")),
    gemini_api_key=_optional_str(os.getenv("GEMINI_API_KEY")),
    build_executor_url=_optional_str(os.getenv("APPFORGE_BUILD_EXECUTOR_URL")),
    deploy_executor_url=_optional_str(os.getenv("APPFORGE_DEPLOY_EXECUTOR_URL")),
    notification_webhook_url=_optional_str(os.getenv("APPFORGE_NOTIFICATION_WEBHOOK_URL")),
    executor_timeout_seconds=_positive_float("APPFORGE_EXECUTOR_TIMEOUT_SECONDS", "600"),
    task_secret=_optional_str(os.getenv("APPFORGE_TASK_SECRET")),
    event_buffer_size=_positive_int("APPFORGE_EVENT_BUFFER_SIZE", "256"),
    default_deploy_environment=default_deploy_environment,
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring the web-facing environment."""

  return DatabaseSettings(debug=_parse_bool(os.getenv("APPFORGE_DEBUG")), pg_dsn=_resolve_pg_dsn(), pg_connect_timeout=_positive_int("APPFORGE_PG_CONNECT_TIMEOUT", "5"))
