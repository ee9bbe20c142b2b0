"""Prompt rendering for the planning, repair and ancillary AI steps."""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from functools import lru_cache
from pathlib import Path
from typing import Any

from appforge.ai.specification import specification_json_schema
from appforge.queue.payloads import GenerationAsset

_PROMPTS_DIR = Path(__file__).parent / "prompts"
_PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")

_AI_TASK_DESCRIPTIONS: dict[str, str] = {
  "code-generation": "Write the code described in the input.",
  "code-review": "Review the code in the input. Report bugs, security issues and maintainability problems, most severe first.",
  "code-explanation": "Explain what the code in the input does, step by step, for a developer new to the code base.",
  "code-refactoring": "Refactor the code in the input for readability without changing behavior. Return the full refactored code.",
  "documentation": "Write developer documentation for the code in the input.",
  "testing": "Write automated tests for the code in the input.",
  "debugging": "Find the cause of the problem described in the input and propose a fix.",
  "conversation": "Answer the developer's question in the input.",
}


@lru_cache(maxsize=16)
def _load_prompt(name: str) -> str:
  try:
    path = _PROMPTS_DIR / name
    return path.read_text(encoding="utf-8").strip()
  except (FileNotFoundError, PermissionError, UnicodeDecodeError) as exc:
    raise RuntimeError(f"Failed to load prompt '{name}': {exc}") from exc


def _replace_placeholders(template: str, values: dict[str, str]) -> str:
  """Substitute {{PLACEHOLDER}} markers in one pass; substituted text is never rescanned."""
  return _PLACEHOLDER_PATTERN.sub(lambda match: values.get(match.group(1), match.group(0)), template)


@lru_cache(maxsize=1)
def render_specification_system_prompt() -> str:
  """System instruction: role, output contract, checklist and schema."""
  schema = json.dumps(specification_json_schema(), separators=(",", ":"), ensure_ascii=True)
  return _replace_placeholders(_load_prompt("specification_system.md"), {"SCHEMA": schema})


def describe_assets(assets: Sequence[GenerationAsset]) -> str:
  """Describe uploaded assets so the planner can reference them."""
  if not assets:
    return "No assets were provided."

  blocks: list[str] = []
  for index, asset in enumerate(assets, start=1):
    lines = [f"### Asset {index}: {asset.filename or asset.key}"]
    if asset.mime_type:
      lines.append(f"- Type: {asset.mime_type}")
    if asset.url:
      lines.append(f"- URL: {asset.url}")
    if asset.description:
      lines.append(f"- Description: {asset.description}")
    blocks.append("\n".join(lines))
  return "\n\n".join(blocks)


def render_specification_request(prompt: str, assets: Sequence[GenerationAsset] = ()) -> str:
  return _replace_placeholders(_load_prompt("specification_request.md"), {"PROMPT": prompt.strip(), "ASSETS": describe_assets(assets)})


def render_specification_retry(request: str, error: str) -> str:
  """Corrective re-request carrying the original request and the parse error."""
  return _replace_placeholders(_load_prompt("specification_retry.md"), {"ERROR": error, "REQUEST": request})


def render_repair_prompt(*, project_name: str, error: str, attempt: int, max_attempts: int, previous_errors: Sequence[str]) -> str:
  if previous_errors:
    listed = "\n".join(f"  {index}. {item}" for index, item in enumerate(previous_errors, start=1))
    previous = f"- Previous errors:\n{listed}"
  else:
    previous = ""
  values = {"PROJECT_NAME": project_name, "ERROR": error, "ATTEMPT": str(attempt), "MAX_ATTEMPTS": str(max_attempts), "PREVIOUS_ERRORS": previous}
  return _replace_placeholders(_load_prompt("repair.md"), values)


def render_ai_task_system_prompt(task_type: str, context: dict[str, Any] | None = None) -> str:
  description = _AI_TASK_DESCRIPTIONS.get(task_type)
  if description is None:
    raise ValueError(f"Unsupported AI task type: {task_type}")
  if context:
    context_text = "Context:\n" + json.dumps(context, ensure_ascii=True, sort_keys=True, indent=2)
  else:
    context_text = ""
  return _replace_placeholders(_load_prompt("ai_task.md"), {"TASK_DESCRIPTION": description, "CONTEXT": context_text})
