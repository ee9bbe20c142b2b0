"""Identifier utilities."""

from __future__ import annotations

import secrets
import string
import time
from datetime import UTC, datetime

_ALPHABET = string.ascii_lowercase + string.digits


def generate_nanoid(size: int = 9) -> str:
  """Return a short non-sequential id suitable for public references."""
  return "".join(secrets.choice(_ALPHABET) for _ in range(size))


def generate_prefixed_id(prefix: str) -> str:
  """Return `<prefix>_<epoch-ms>_<random>` so ids sort roughly by creation time."""
  return f"{prefix}_{int(time.time() * 1000)}_{generate_nanoid()}"


def generate_generation_id() -> str:
  return generate_prefixed_id("gen")


def generate_build_id() -> str:
  return generate_prefixed_id("build")


def generate_deployment_id() -> str:
  return generate_prefixed_id("deploy")


def generate_task_id() -> str:
  return generate_prefixed_id("ai")


def generate_notification_id() -> str:
  return generate_prefixed_id("notif")


def generate_correlation_id() -> str:
  """Return a new correlation id shared by every job of one pipeline run."""
  return generate_prefixed_id("corr")


def utc_timestamp() -> str:
  """Return the current UTC time as an ISO-8601 string with second precision."""
  return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def utc_now_iso() -> str:
  """Return the current UTC time as ISO-8601 with millisecond precision."""
  return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
