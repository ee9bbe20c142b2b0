"""Shared error classification helpers for AI provider handling."""

from __future__ import annotations

from collections.abc import Iterable

_PROVIDER_HINTS: tuple[str, ...] = (
  "unsupported model",
  "model not found",
  "no such model",
  "model is not available",
  "rate limit",
  "quota",
  "resource exhausted",
  "timeout",
  "timed out",
  "connection",
  "network",
  "api key",
  "unauthorized",
  "forbidden",
  "service unavailable",
  "bad gateway",
  "gateway",
  "openrouter",
  "gemini",
)

# Provider failures that no amount of retrying will fix.
_CONFIGURATION_HINTS: tuple[str, ...] = (
  "unsupported model",
  "model not found",
  "no such model",
  "api key",
  "unauthorized",
  "forbidden",
  "environment variable is required",
)


def _match_hint(message: str, hints: Iterable[str]) -> bool:
  """Return True when any hint appears in the message."""
  return any(hint in message for hint in hints)


def is_provider_error(exc: Exception) -> bool:
  """Return True when an exception indicates a provider or model availability failure."""
  message = str(exc).lower()
  return _match_hint(message, _PROVIDER_HINTS)


def is_configuration_error(exc: Exception) -> bool:
  """Return True when a provider failure is caused by credentials or model selection."""
  message = str(exc).lower()
  return _match_hint(message, _CONFIGURATION_HINTS)
