"""Gemini provider implementation using the google-genai SDK."""

from __future__ import annotations

import os
from typing import Final

from google import genai
from google.genai import types

from appforge.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse


class GeminiModel(AIModel):
  """Gemini model client using the async surface of google-genai."""

  def __init__(self, name: str, api_key: str | None = None) -> None:
    self.name: str = name

    api_key = api_key or os.getenv("GEMINI_API_KEY")
    if not api_key:
      raise ValueError("GEMINI_API_KEY environment variable is required")

    self._client = genai.Client(api_key=api_key)

  async def generate(self, prompt: str, *, system: str | None = None) -> ModelResponse:
    """Generate text response from Gemini."""
    config = types.GenerateContentConfig(system_instruction=system) if system else None
    response = await self._client.aio.models.generate_content(model=self.name, contents=prompt, config=config)
    usage = None
    if response.usage_metadata:
      usage = {
        "prompt_tokens": response.usage_metadata.prompt_token_count or 0,
        "completion_tokens": response.usage_metadata.candidates_token_count or 0,
        "total_tokens": response.usage_metadata.total_token_count or 0,
      }
    return SimpleModelResponse(content=response.text or "", usage=usage)


class GeminiProvider(Provider):
  """Gemini provider."""

  _DEFAULT_MODEL: Final[str] = "gemini-2.5-flash"
  _AVAILABLE_MODELS: Final[set[str]] = {
    "gemini-2.5-pro",
    "gemini-2.5-flash",
    "gemini-2.0-flash",
    "gemini-pro-latest",
    "gemini-flash-latest",
  }

  def __init__(self, api_key: str | None = None) -> None:
    self.name: str = "gemini"
    self._api_key = api_key

  def get_model(self, model: str | None = None) -> AIModel:
    """Return a Gemini model client."""
    model_name = model or self._DEFAULT_MODEL
    if model_name not in self._AVAILABLE_MODELS:
      raise ValueError(f"Unsupported Gemini model '{model_name}'.")
    return GeminiModel(model_name, api_key=self._api_key)
