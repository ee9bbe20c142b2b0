"""Composition root wiring queues, workers, the pipeline and the event channel."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from appforge.ai.planner import SpecificationPlanner
from appforge.ai.providers.base import AIModel
from appforge.ai.router import get_configured_model, get_model_for_mode
from appforge.config import Settings
from appforge.core.database import get_session_factory
from appforge.events.channel import EventChannel
from appforge.events.tracker import ProgressTracker
from appforge.pipeline.executors import HttpStageExecutor, StageExecutor
from appforge.pipeline.handlers import AITaskJobHandler, BuildJobHandler, DeployJobHandler, GenerationJobHandler, NotificationJobHandler, ProjectJobHandler
from appforge.pipeline.healing import ChainedRepairAdvisor, DependencyRepairAdvisor, ModelRepairAdvisor, SelfHealingController
from appforge.pipeline.runs_repo import InMemoryRunsRepository, PostgresRunsRepository, RunsRepository
from appforge.pipeline.state_machine import PipelineJobListener, PipelineStateMachine
from appforge.queue.config import build_queue_configs
from appforge.queue.dispatch import JobHandler, JobHandlerRegistry
from appforge.queue.memory_store import InMemoryJobStore
from appforge.queue.models import QueueName
from appforge.queue.payloads import ModelConfig
from appforge.queue.postgres_store import PostgresJobStore
from appforge.queue.producers import JobProducers
from appforge.queue.queue import Clock
from appforge.queue.registry import QueueRegistry
from appforge.queue.store import JobStore
from appforge.queue.worker import WorkerPool

logger = logging.getLogger(__name__)


class Container:
  """Own every long-lived collaborator of the service.

  Tests construct it with in-memory stores, a fake model and fake executors;
  the application builds it from settings in the lifespan hook.
  """

  def __init__(
    self,
    settings: Settings,
    *,
    store: JobStore | None = None,
    runs: RunsRepository | None = None,
    model_factory: Callable[[], AIModel] | None = None,
    build_executor: StageExecutor | None = None,
    deploy_executor: StageExecutor | None = None,
    clock: Clock = time.time,
  ) -> None:
    self.settings = settings
    self.store = store or self._build_store(settings)
    self.runs = runs or self._build_runs(settings)
    self._model_factory = model_factory or (lambda: get_configured_model(settings))

    self.queues = QueueRegistry(self.store, build_queue_configs(settings.queue_concurrency), clock=clock)
    self.producers = JobProducers(self.queues)
    self.channel = EventChannel(settings.event_buffer_size)
    self.tracker = ProgressTracker(self.channel)

    advisor = ChainedRepairAdvisor([DependencyRepairAdvisor(), ModelRepairAdvisor(self._model_factory)])
    self.healing = SelfHealingController(advisor, max_attempts=settings.healing_max_attempts, tracker=self.tracker)
    self.pipeline = PipelineStateMachine(
      self.runs,
      self.producers,
      self.queues,
      self.healing,
      self.tracker,
      default_environment=settings.default_deploy_environment,
      max_prompt_chars=settings.planner_max_prompt_chars,
    )

    build_executor = build_executor or HttpStageExecutor(settings.build_executor_url, settings, stage="build")
    deploy_executor = deploy_executor or HttpStageExecutor(settings.deploy_executor_url, settings, stage="deploy")
    handlers: dict[str, JobHandler] = {
      QueueName.PROJECT.value: ProjectJobHandler(self.pipeline),
      QueueName.GENERATION.value: GenerationJobHandler(self._build_planner, self.tracker),
      QueueName.BUILD.value: BuildJobHandler(build_executor, self.tracker),
      QueueName.DEPLOY.value: DeployJobHandler(deploy_executor, self.tracker),
      QueueName.AI_TASK.value: AITaskJobHandler(self._model_for_task),
      QueueName.NOTIFICATION.value: NotificationJobHandler(settings),
    }
    self.handlers = JobHandlerRegistry(handlers)
    self.workers = WorkerPool(
      self.queues,
      self.handlers,
      listeners=[PipelineJobListener(self.pipeline, self.tracker)],
      poll_interval=settings.worker_poll_interval_seconds,
      sweep_interval=settings.retention_sweep_seconds,
    )

  @staticmethod
  def _build_store(settings: Settings) -> JobStore:
    if settings.job_store == "postgres":
      return PostgresJobStore(get_session_factory())
    return InMemoryJobStore()

  @staticmethod
  def _build_runs(settings: Settings) -> RunsRepository:
    if settings.job_store == "postgres":
      return PostgresRunsRepository(get_session_factory())
    return InMemoryRunsRepository()

  def _build_planner(self) -> SpecificationPlanner:
    return SpecificationPlanner(self._model_factory(), max_prompt_chars=self.settings.planner_max_prompt_chars)

  def _model_for_task(self, llm: ModelConfig | None) -> AIModel:
    if llm is None or not (llm.provider or llm.model):
      return self._model_factory()
    return get_model_for_mode(llm.provider or self.settings.ai_provider, llm.model, self.settings)

  def start_workers(self) -> None:
    logger.info("Starting queue workers store=%s queues=%s", self.settings.job_store, ", ".join(self.queues.names()))
    self.workers.start()

  async def stop_workers(self) -> None:
    await self.workers.stop()
