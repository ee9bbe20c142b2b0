"""Typed payloads carried by pipeline jobs."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

GenerationType = Literal["component", "page", "api-route", "full-app", "refactor", "fix", "documentation"]
DeployEnvironment = Literal["preview", "staging", "production"]
AITaskType = Literal["code-generation", "code-review", "code-explanation", "code-refactoring", "documentation", "testing", "debugging", "conversation"]
NotificationType = Literal["email", "push", "in-app", "webhook", "slack", "discord"]
ProjectAction = Literal["create", "delete"]


class PayloadModel(BaseModel):
  """Base model serialized with camelCase keys inside job payloads."""

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

  def to_payload(self) -> dict[str, Any]:
    return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class GenerationConfig(PayloadModel):
  framework: str = "nextjs"
  styling: str = "tailwind"
  language: Literal["typescript", "javascript"] = "typescript"
  features: list[str] = Field(default_factory=list)
  model: str | None = None
  temperature: float | None = None
  max_tokens: int | None = None
  custom_instructions: str | None = None


class GenerationAsset(PayloadModel):
  key: str
  filename: str | None = None
  url: str | None = None
  mime_type: str | None = None
  description: str | None = None


class GenerationJobPayload(PayloadModel):
  generation_id: str
  project_id: str
  user_id: str
  prompt: str
  type: GenerationType = "full-app"
  assets: list[GenerationAsset] = Field(default_factory=list)
  config: GenerationConfig = Field(default_factory=GenerationConfig)
  correlation_id: str
  created_at: str | None = None


class BuildConfig(PayloadModel):
  build_command: str = "npm run build"
  output_directory: str = ".next"
  install_command: str = "npm install"
  environment_variables: dict[str, str] = Field(default_factory=dict)
  node_version: str = "20"


class GitInfo(PayloadModel):
  repository: str
  branch: str = "main"
  commit_sha: str | None = None


class RepairInstruction(PayloadModel):
  """Corrective action attached to a re-submitted build."""

  attempt: int
  cause: str
  summary: str
  instructions: list[str] = Field(default_factory=list)
  dependencies: list[str] = Field(default_factory=list)


class BuildJobPayload(PayloadModel):
  build_id: str
  project_id: str
  user_id: str
  generation_id: str | None = None
  correlation_id: str
  specification: dict[str, Any] | None = None
  config: BuildConfig = Field(default_factory=BuildConfig)
  git_info: GitInfo | None = None
  repair: RepairInstruction | None = None


class DomainConfig(PayloadModel):
  name: str
  ssl: bool = True


class DeployJobPayload(PayloadModel):
  deployment_id: str
  project_id: str
  user_id: str
  build_id: str
  environment: DeployEnvironment = "preview"
  domain: DomainConfig | None = None
  artifact: dict[str, Any] | None = None
  correlation_id: str


class ModelConfig(PayloadModel):
  provider: str | None = None
  model: str | None = None
  temperature: float | None = None
  max_tokens: int | None = None


class AITaskJobPayload(PayloadModel):
  task_id: str
  user_id: str
  project_id: str | None = None
  type: AITaskType
  input: str
  context: dict[str, Any] = Field(default_factory=dict)
  llm: ModelConfig | None = Field(default=None, alias="modelConfig")
  correlation_id: str | None = None


class NotificationJobPayload(PayloadModel):
  notification_id: str
  user_id: str
  type: NotificationType = "in-app"
  channel: str | None = None
  subject: str
  body: str
  data: dict[str, Any] = Field(default_factory=dict)
  action_url: str | None = None
  correlation_id: str | None = None


class ProjectJobPayload(PayloadModel):
  project_id: str
  user_id: str
  action: ProjectAction
  prompt: str | None = None
  asset_keys: list[str] = Field(default_factory=list)
  environment: DeployEnvironment | None = None
  correlation_id: str | None = None
  generation_id: str | None = None
