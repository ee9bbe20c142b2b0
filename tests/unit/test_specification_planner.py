from __future__ import annotations

import json

import pytest

from appforge.ai.planner import SpecificationPlanner
from appforge.ai.specification import SpecificationParseError, TechnicalSpecification, parse_specification
from appforge.core.errors import SpecificationGenerationFailed, UnrecoverableJobError
from appforge.queue.payloads import GenerationAsset


@pytest.mark.anyio
async def test_valid_first_response_needs_one_call(scripted_model, spec_json) -> None:
  model = scripted_model([spec_json()])
  thoughts: list[str] = []

  result = await SpecificationPlanner(model).plan("Build a todo app", on_thought=thoughts.append)

  assert result.attempts == 1
  assert result.specification.project_name == "todo-app"
  assert len(model.calls) == 1
  prompt, system = model.calls[0]
  assert "Build a todo app" in prompt
  assert system is not None and "projectStructure" in system
  assert thoughts[-1] == "Specification ready for todo-app"


@pytest.mark.anyio
async def test_malformed_then_valid_uses_exactly_one_corrective_retry(scripted_model, spec_json) -> None:
  model = scripted_model(['{"projectName": "todo-app"}', spec_json()])

  result = await SpecificationPlanner(model).plan("Build a todo app")

  assert result.attempts == 2
  assert len(model.calls) == 2
  retry_prompt = model.calls[1][0]
  assert "description" in retry_prompt
  assert "Build a todo app" in retry_prompt
  assert len(result.usage) == 2


@pytest.mark.anyio
async def test_two_malformed_responses_raise_without_third_call(scripted_model) -> None:
  model = scripted_model(["not json at all", '{"projectName": ""}', "never used"])

  with pytest.raises(SpecificationGenerationFailed) as excinfo:
    await SpecificationPlanner(model).plan("Build a todo app")

  assert len(model.calls) == 2
  assert isinstance(excinfo.value, UnrecoverableJobError)
  assert "single JSON object" in excinfo.value.first_error


@pytest.mark.anyio
async def test_fenced_output_is_treated_as_malformed(scripted_model, spec_json) -> None:
  model = scripted_model([f"```json\n{spec_json()}\n```", spec_json()])

  result = await SpecificationPlanner(model).plan("Build a todo app")

  assert result.attempts == 2


@pytest.mark.anyio
async def test_provider_errors_propagate_for_queue_retry(scripted_model) -> None:
  model = scripted_model([ConnectionError("connection reset by peer")])

  with pytest.raises(ConnectionError):
    await SpecificationPlanner(model).plan("Build a todo app")


@pytest.mark.anyio
async def test_prompt_limits_are_enforced_before_calling_the_model(scripted_model) -> None:
  model = scripted_model([])
  planner = SpecificationPlanner(model, max_prompt_chars=20)

  with pytest.raises(ValueError):
    await planner.plan("   ")
  with pytest.raises(ValueError):
    await planner.plan("x" * 21)
  assert model.calls == []


@pytest.mark.anyio
async def test_assets_are_described_in_the_request(scripted_model, spec_json) -> None:
  model = scripted_model([spec_json()])
  assets = [GenerationAsset(key="uploads/p/wireframe.png", filename="wireframe.png", mime_type="image/png", description="Home page wireframe")]

  await SpecificationPlanner(model).plan("Build a todo app", assets)

  prompt = model.calls[0][0]
  assert "### Asset 1: wireframe.png" in prompt
  assert "Home page wireframe" in prompt


def test_specification_round_trips_through_wire_format(spec_dict) -> None:
  spec = parse_specification(json.dumps(spec_dict()))

  again = TechnicalSpecification.model_validate(spec.to_json_dict())

  assert again == spec
  assert spec.to_json_dict()["components"][0]["eventHandlers"][0]["async"] is True
  assert spec.to_json_dict()["apiRoutes"][0]["responses"][0]["schema"] == {"type": "array"}


def test_unknown_keys_and_bad_node_types_are_rejected(spec_dict) -> None:
  with pytest.raises(SpecificationParseError):
    parse_specification(json.dumps(spec_dict(extra="nope")))

  broken = spec_dict()
  broken["projectStructure"]["root"]["children"].append({"name": "x", "type": "symlink"})
  with pytest.raises(SpecificationParseError, match="projectStructure"):
    parse_specification(json.dumps(broken))


def test_data_models_need_at_least_one_field(spec_dict) -> None:
  with pytest.raises(SpecificationParseError):
    parse_specification(json.dumps(spec_dict(dataModels=[{"name": "Empty", "fields": []}])))
