"""Technical Specification contract produced by the planning step."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel


class SpecModel(BaseModel):
  """Strict camelCase model: unknown keys are rejected rather than ignored."""

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class FileNode(SpecModel):
  name: str = Field(min_length=1)
  type: Literal["file"]
  description: str | None = None
  category: str | None = None


class DirectoryNode(SpecModel):
  name: str = Field(min_length=1)
  type: Literal["directory"]
  description: str | None = None
  children: list[ProjectNode] = Field(default_factory=list)


ProjectNode = Annotated[FileNode | DirectoryNode, Field(discriminator="type")]


class ProjectStructure(SpecModel):
  root: DirectoryNode


class PropDefinition(SpecModel):
  name: str
  type: str
  required: bool = False
  default_value: Any | None = None
  description: str | None = None


class StateDefinition(SpecModel):
  name: str
  type: str
  initial_value: Any | None = None
  description: str | None = None


class EventHandlerDefinition(SpecModel):
  name: str
  event_type: str
  description: str | None = None
  is_async: bool = Field(default=False, alias="async")


class ComponentSpec(SpecModel):
  name: str = Field(min_length=1)
  path: str = Field(min_length=1)
  description: str
  type: Literal["client", "server", "shared"]
  props: list[PropDefinition] = Field(default_factory=list)
  state: list[StateDefinition] = Field(default_factory=list)
  event_handlers: list[EventHandlerDefinition] = Field(default_factory=list)
  dependencies: list[str] = Field(default_factory=list)
  accessibility: list[str] = Field(default_factory=list)


class DataFetching(SpecModel):
  method: Literal["server-component", "client-fetch", "server-action", "static", "isr"]
  source: str | None = None
  error_handling: str | None = None


class PageMetadata(SpecModel):
  title: str
  description: str | None = None


class PageSpec(SpecModel):
  route: str = Field(min_length=1)
  file_path: str = Field(min_length=1)
  description: str
  components: list[str] = Field(default_factory=list)
  data_fetching: DataFetching | None = None
  metadata: PageMetadata | None = None
  requires_auth: bool = False


class ApiResponseSpec(SpecModel):
  status_code: int = Field(ge=100, le=599)
  description: str
  schema_: dict[str, Any] | None = Field(default=None, alias="schema")


class ApiRouteSpec(SpecModel):
  path: str = Field(min_length=1)
  method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"]
  description: str
  request_body: dict[str, Any] | None = None
  responses: list[ApiResponseSpec] = Field(default_factory=list)
  requires_auth: bool = False


class DependencySpec(SpecModel):
  name: str = Field(min_length=1)
  version: str
  dev_dependency: bool = False
  reason: str | None = None


class DataField(SpecModel):
  name: str
  type: str
  required: bool = True
  unique: bool = False
  description: str | None = None


class DataRelation(SpecModel):
  name: str
  type: Literal["one-to-one", "one-to-many", "many-to-many"]
  related_model: str
  foreign_key: str | None = None
  description: str | None = None


class DataModelSpec(SpecModel):
  name: str = Field(min_length=1)
  description: str | None = None
  fields: list[DataField] = Field(min_length=1)
  relations: list[DataRelation] = Field(default_factory=list)
  indexes: list[str] = Field(default_factory=list)


class EnvVariableSpec(SpecModel):
  name: str = Field(min_length=1)
  description: str
  required: bool = True
  example: str | None = None
  category: str | None = None
  sensitive: bool = False


class TechnicalSpecification(SpecModel):
  """Complete blueprint of the application to generate."""

  project_name: str = Field(min_length=1)
  description: str
  technical_summary: str
  project_structure: ProjectStructure
  components: list[ComponentSpec] = Field(default_factory=list)
  pages: list[PageSpec] = Field(default_factory=list)
  api_routes: list[ApiRouteSpec] = Field(default_factory=list)
  dependencies: list[DependencySpec] = Field(default_factory=list)
  data_models: list[DataModelSpec] = Field(default_factory=list)
  env_variables: list[EnvVariableSpec] = Field(default_factory=list)
  implementation_notes: list[str] = Field(default_factory=list)

  def to_json_dict(self) -> dict[str, Any]:
    """Serialize with wire aliases so the output parses back to an equal model."""
    return self.model_dump(by_alias=True, mode="json")


DirectoryNode.model_rebuild()
ProjectStructure.model_rebuild()
TechnicalSpecification.model_rebuild()


class SpecificationParseError(ValueError):
  """Raised when model output is not a schema-conformant specification."""


def parse_specification(raw: str) -> TechnicalSpecification:
  """Parse raw model output as a specification with no leniency.

  The text must be exactly one JSON object; markdown fences or surrounding prose
  are rejected so the corrective retry can address them.
  """
  text = raw.strip()
  if not text:
    raise SpecificationParseError("Response was empty.")
  if not text.startswith("{"):
    raise SpecificationParseError("Response must be a single JSON object with no surrounding text or markdown fences.")
  try:
    return TechnicalSpecification.model_validate_json(text)
  except ValidationError as exc:
    raise SpecificationParseError(_summarize_validation_error(exc)) from exc


def _summarize_validation_error(exc: ValidationError, limit: int = 10) -> str:
  """Format validation errors as a short list the model can act on."""
  lines: list[str] = []
  for error in exc.errors(include_url=False)[:limit]:
    location = ".".join(str(part) for part in error.get("loc", ())) or "<root>"
    lines.append(f"{location}: {error.get('msg')}")
  remaining = exc.error_count() - limit
  if remaining > 0:
    lines.append(f"... and {remaining} more error(s)")
  return "; ".join(lines)


def specification_json_schema() -> dict[str, Any]:
  """JSON schema of the specification using wire aliases."""
  return TechnicalSpecification.model_json_schema(by_alias=True)
