"""Routing utilities for provider/model selection."""

from __future__ import annotations

from enum import Enum

from appforge.ai.providers.base import AIModel, Provider
from appforge.ai.providers.gemini import GeminiProvider
from appforge.ai.providers.openrouter import OpenRouterProvider
from appforge.config import Settings


class ProviderMode(str, Enum):
  """Supported provider modes."""

  GEMINI = "gemini"
  OPENROUTER = "openrouter"


def get_provider_for_mode(mode: str | ProviderMode, settings: Settings | None = None) -> Provider:
  """Return a provider instance for the given mode."""
  key = mode.value if isinstance(mode, ProviderMode) else mode
  if key == ProviderMode.GEMINI.value:
    return GeminiProvider(api_key=settings.gemini_api_key if settings else None)
  if key == ProviderMode.OPENROUTER.value:
    return OpenRouterProvider(api_key=settings.openrouter_api_key if settings else None)
  raise ValueError(f"Unsupported provider mode '{mode}'.")


def get_model_for_mode(mode: str | ProviderMode, model: str | None = None, settings: Settings | None = None) -> AIModel:
  """Return a model client for the given mode and model name."""
  provider = get_provider_for_mode(mode, settings)
  return provider.get_model(model)


def get_configured_model(settings: Settings) -> AIModel:
  """Return the model selected by APPFORGE_AI_PROVIDER and APPFORGE_AI_MODEL."""
  return get_model_for_mode(settings.ai_provider, settings.ai_model, settings)
