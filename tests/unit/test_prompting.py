from __future__ import annotations

from appforge.ai.prompting import render_specification_request, render_specification_retry
from appforge.queue.payloads import GenerationAsset


def test_placeholders_inside_the_user_prompt_are_left_alone() -> None:
  rendered = render_specification_request("Show {{ASSETS}} literally in the footer", [GenerationAsset(key="uploads/logo.png", filename="logo.png")])

  assert "Show {{ASSETS}} literally in the footer" in rendered
  assert rendered.count("### Asset 1: logo.png") == 1


def test_retry_prompt_does_not_expand_placeholders_in_the_error() -> None:
  request = render_specification_request("Build a todo app")

  rendered = render_specification_retry(request, "unexpected token near {{REQUEST}}")

  assert "unexpected token near {{REQUEST}}" in rendered
  assert rendered.count("Build a todo app") == 1
