"""Enqueue helpers used by the API, the state machine and job handlers."""

from __future__ import annotations

from typing import Any

from appforge.queue.models import EnqueueResult, QueueName
from appforge.queue.payloads import (
  AITaskJobPayload,
  AITaskType,
  BuildConfig,
  BuildJobPayload,
  DeployEnvironment,
  DeployJobPayload,
  DomainConfig,
  GenerationAsset,
  GenerationConfig,
  GenerationJobPayload,
  GenerationType,
  GitInfo,
  ModelConfig,
  NotificationJobPayload,
  NotificationType,
  ProjectAction,
  ProjectJobPayload,
  RepairInstruction,
)
from appforge.queue.registry import QueueRegistry
from appforge.utils.ids import generate_build_id, generate_correlation_id, generate_deployment_id, generate_generation_id, generate_notification_id, generate_task_id, utc_timestamp

FULL_APP_PRIORITY = 10
PREVIEW_DEPLOY_PRIORITY = 5


def _asset_from_key(key: str) -> GenerationAsset:
  """Describe an uploaded asset by its storage key."""
  filename = key.rsplit("/", 1)[-1] or key
  return GenerationAsset(key=key, filename=filename)


class JobProducers:
  """Typed submission API over the queue registry."""

  def __init__(self, registry: QueueRegistry) -> None:
    self._registry = registry

  async def add_generation_job(
    self,
    project_id: str,
    user_id: str,
    prompt: str,
    *,
    generation_type: GenerationType = "full-app",
    asset_keys: list[str] | None = None,
    config: GenerationConfig | None = None,
    correlation_id: str | None = None,
    generation_id: str | None = None,
    priority: int = 0,
  ) -> EnqueueResult:
    payload = GenerationJobPayload(
      generation_id=generation_id or generate_generation_id(),
      project_id=project_id,
      user_id=user_id,
      prompt=prompt,
      type=generation_type,
      assets=[_asset_from_key(key) for key in asset_keys or []],
      config=config or GenerationConfig(),
      correlation_id=correlation_id or generate_correlation_id(),
      created_at=utc_timestamp(),
    )
    return await self._registry.get(QueueName.GENERATION).enqueue(payload.generation_id, payload.to_payload(), name=f"generate:{generation_type}", priority=priority, correlation_id=payload.correlation_id)

  async def add_full_app_generation_job(self, project_id: str, user_id: str, prompt: str, asset_keys: list[str] | None = None, *, correlation_id: str | None = None, generation_id: str | None = None) -> str:
    """Submit a full application generation at a deferred (numerically higher) priority so lighter work is served first."""
    result = await self.add_generation_job(project_id, user_id, prompt, generation_type="full-app", asset_keys=asset_keys, correlation_id=correlation_id, generation_id=generation_id, priority=FULL_APP_PRIORITY)
    return result.job_id

  async def add_component_generation_job(self, project_id: str, user_id: str, prompt: str, *, correlation_id: str | None = None) -> str:
    result = await self.add_generation_job(project_id, user_id, prompt, generation_type="component", correlation_id=correlation_id)
    return result.job_id

  async def add_page_generation_job(self, project_id: str, user_id: str, prompt: str, *, correlation_id: str | None = None) -> str:
    result = await self.add_generation_job(project_id, user_id, prompt, generation_type="page", correlation_id=correlation_id)
    return result.job_id

  async def add_build_job(
    self,
    project_id: str,
    user_id: str,
    correlation_id: str,
    *,
    generation_id: str | None = None,
    specification: dict[str, Any] | None = None,
    config: BuildConfig | None = None,
    git_info: GitInfo | None = None,
    repair: RepairInstruction | None = None,
    build_id: str | None = None,
  ) -> EnqueueResult:
    payload = BuildJobPayload(
      build_id=build_id or generate_build_id(),
      project_id=project_id,
      user_id=user_id,
      generation_id=generation_id,
      correlation_id=correlation_id,
      specification=specification,
      config=config or BuildConfig(),
      git_info=git_info,
      repair=repair,
    )
    name = "rebuild" if repair is not None else "build"
    return await self._registry.get(QueueName.BUILD).enqueue(payload.build_id, payload.to_payload(), name=name, correlation_id=correlation_id)

  async def add_deploy_job(
    self,
    project_id: str,
    user_id: str,
    build_id: str,
    correlation_id: str,
    *,
    environment: DeployEnvironment = "preview",
    domain: DomainConfig | None = None,
    artifact: dict[str, Any] | None = None,
    deployment_id: str | None = None,
  ) -> EnqueueResult:
    """Submit a deployment; production outranks preview and staging."""
    payload = DeployJobPayload(
      deployment_id=deployment_id or generate_deployment_id(),
      project_id=project_id,
      user_id=user_id,
      build_id=build_id,
      environment=environment,
      domain=domain,
      artifact=artifact,
      correlation_id=correlation_id,
    )
    priority = 0 if environment == "production" else PREVIEW_DEPLOY_PRIORITY
    return await self._registry.get(QueueName.DEPLOY).enqueue(payload.deployment_id, payload.to_payload(), name=f"deploy:{environment}", priority=priority, correlation_id=correlation_id)

  async def add_preview_deploy_job(self, project_id: str, user_id: str, build_id: str, correlation_id: str) -> str:
    result = await self.add_deploy_job(project_id, user_id, build_id, correlation_id, environment="preview")
    return result.job_id

  async def add_production_deploy_job(self, project_id: str, user_id: str, build_id: str, correlation_id: str, *, domain: DomainConfig | None = None) -> str:
    result = await self.add_deploy_job(project_id, user_id, build_id, correlation_id, environment="production", domain=domain)
    return result.job_id

  async def add_ai_task_job(self, user_id: str, task_type: AITaskType, task_input: str, *, project_id: str | None = None, context: dict[str, Any] | None = None, llm: ModelConfig | None = None, correlation_id: str | None = None, task_id: str | None = None) -> EnqueueResult:
    payload = AITaskJobPayload(task_id=task_id or generate_task_id(), user_id=user_id, project_id=project_id, type=task_type, input=task_input, context=context or {}, llm=llm, correlation_id=correlation_id)
    return await self._registry.get(QueueName.AI_TASK).enqueue(payload.task_id, payload.to_payload(), name=task_type, correlation_id=correlation_id)

  async def add_code_review_job(self, user_id: str, code: str, *, project_id: str | None = None, language: str | None = None) -> str:
    context = {"language": language} if language else {}
    result = await self.add_ai_task_job(user_id, "code-review", code, project_id=project_id, context=context)
    return result.job_id

  async def add_code_explanation_job(self, user_id: str, code: str, *, project_id: str | None = None, language: str | None = None) -> str:
    context = {"language": language} if language else {}
    result = await self.add_ai_task_job(user_id, "code-explanation", code, project_id=project_id, context=context)
    return result.job_id

  async def add_notification_job(
    self,
    user_id: str,
    subject: str,
    body: str,
    *,
    notification_type: NotificationType = "in-app",
    channel: str | None = None,
    data: dict[str, Any] | None = None,
    action_url: str | None = None,
    correlation_id: str | None = None,
    notification_id: str | None = None,
  ) -> EnqueueResult:
    payload = NotificationJobPayload(
      notification_id=notification_id or generate_notification_id(),
      user_id=user_id,
      type=notification_type,
      channel=channel,
      subject=subject,
      body=body,
      data=data or {},
      action_url=action_url,
      correlation_id=correlation_id,
    )
    return await self._registry.get(QueueName.NOTIFICATION).enqueue(payload.notification_id, payload.to_payload(), name=notification_type, correlation_id=correlation_id)

  async def add_email_notification_job(self, user_id: str, email: str, subject: str, body: str) -> str:
    result = await self.add_notification_job(user_id, subject, body, notification_type="email", channel=email)
    return result.job_id

  async def add_in_app_notification_job(self, user_id: str, subject: str, body: str, *, action_url: str | None = None, correlation_id: str | None = None) -> str:
    result = await self.add_notification_job(user_id, subject, body, notification_type="in-app", action_url=action_url, correlation_id=correlation_id)
    return result.job_id

  async def add_project_job(self, project_id: str, user_id: str, action: ProjectAction, *, prompt: str | None = None, asset_keys: list[str] | None = None, environment: DeployEnvironment | None = None, correlation_id: str | None = None) -> EnqueueResult:
    """Submit a project lifecycle action; ids are fixed here so retries stay idempotent."""
    if action == "create":
      if not prompt:
        raise ValueError("prompt is required for project creation")
      correlation_id = correlation_id or generate_correlation_id()
    payload = ProjectJobPayload(
      project_id=project_id,
      user_id=user_id,
      action=action,
      prompt=prompt,
      asset_keys=asset_keys or [],
      environment=environment,
      correlation_id=correlation_id,
      generation_id=generate_generation_id() if action == "create" else None,
    )
    job_id = f"project_{project_id}_{action}_{correlation_id or utc_timestamp()}"
    return await self._registry.get(QueueName.PROJECT).enqueue(job_id, payload.to_payload(), name=f"project:{action}", correlation_id=correlation_id)

  async def add_project_create_job(self, project_id: str, user_id: str, prompt: str, *, asset_keys: list[str] | None = None, environment: DeployEnvironment | None = None) -> str:
    result = await self.add_project_job(project_id, user_id, "create", prompt=prompt, asset_keys=asset_keys, environment=environment)
    return result.job_id

  async def add_project_delete_job(self, project_id: str, user_id: str) -> str:
    result = await self.add_project_job(project_id, user_id, "delete")
    return result.job_id
