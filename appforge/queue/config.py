"""Per-queue defaults for attempts, backoff, timeouts and concurrency."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace

from appforge.queue.models import BackoffPolicy, QueueConfig, QueueName, RateLimit

COMPLETED_RETENTION_SECONDS = 3600.0
FAILED_RETENTION_SECONDS = 86400.0

DEFAULT_QUEUE_CONFIGS: dict[str, QueueConfig] = {
  QueueName.PROJECT.value: QueueConfig(name=QueueName.PROJECT.value, attempts=3, backoff=BackoffPolicy("exponential", 2.0), concurrency=4),
  QueueName.GENERATION.value: QueueConfig(name=QueueName.GENERATION.value, attempts=3, backoff=BackoffPolicy("exponential", 5.0), concurrency=2),
  # Builds are the most expensive stage.
  QueueName.BUILD.value: QueueConfig(name=QueueName.BUILD.value, attempts=3, backoff=BackoffPolicy("exponential", 10.0), timeout_seconds=600.0, concurrency=1),
  QueueName.DEPLOY.value: QueueConfig(name=QueueName.DEPLOY.value, attempts=2, backoff=BackoffPolicy("exponential", 5.0), timeout_seconds=300.0, concurrency=2),
  QueueName.AI_TASK.value: QueueConfig(name=QueueName.AI_TASK.value, attempts=3, backoff=BackoffPolicy("exponential", 2.0), concurrency=4, rate_limit=RateLimit(max_jobs=50, window_seconds=60.0)),
  QueueName.NOTIFICATION.value: QueueConfig(name=QueueName.NOTIFICATION.value, attempts=5, backoff=BackoffPolicy("exponential", 1.0), concurrency=8),
}


def build_queue_configs(concurrency_overrides: Mapping[str, int] | None = None) -> dict[str, QueueConfig]:
  """Return queue configs with per-queue concurrency overrides applied."""
  overrides = dict(concurrency_overrides or {})
  unknown = set(overrides) - set(DEFAULT_QUEUE_CONFIGS)
  if unknown:
    raise ValueError(f"Unknown queue names in concurrency overrides: {', '.join(sorted(unknown))}")

  configs: dict[str, QueueConfig] = {}
  for name, config in DEFAULT_QUEUE_CONFIGS.items():
    if name in overrides:
      config = replace(config, concurrency=overrides[name])
    configs[name] = config
  return configs
