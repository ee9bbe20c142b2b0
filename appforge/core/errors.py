"""Exception types shared across the pipeline."""

from __future__ import annotations


class AppForgeError(Exception):
  """Base class for service-level errors."""


class UnrecoverableJobError(AppForgeError):
  """Raised by a job handler to fail the job without consuming further attempts."""


class InvalidTransitionError(AppForgeError):
  """Raised when a pipeline run is asked to move between unconnected stages."""


class JobNotFoundError(AppForgeError):
  """Raised when a job id is unknown to its queue."""

  def __init__(self, queue_name: str, job_id: str) -> None:
    super().__init__(f"Job '{job_id}' not found on queue '{queue_name}'.")
    self.queue_name = queue_name
    self.job_id = job_id


class JobActiveError(AppForgeError):
  """Raised when removal is requested for a job that is already executing."""

  def __init__(self, queue_name: str, job_id: str) -> None:
    super().__init__(f"Job '{job_id}' on queue '{queue_name}' is active and cannot be removed.")
    self.queue_name = queue_name
    self.job_id = job_id


class RunNotFoundError(AppForgeError):
  """Raised when no pipeline run exists for a project."""

  def __init__(self, project_id: str) -> None:
    super().__init__(f"No pipeline run found for project '{project_id}'.")
    self.project_id = project_id


class RunConflictError(AppForgeError):
  """Raised when a project already has a pipeline run in progress."""

  def __init__(self, project_id: str, correlation_id: str) -> None:
    super().__init__(f"Project '{project_id}' already has an active run '{correlation_id}'.")
    self.project_id = project_id
    self.correlation_id = correlation_id


class StaleRunError(AppForgeError):
  """Raised when a run was changed by another writer since it was loaded."""

  def __init__(self, correlation_id: str, version: int) -> None:
    super().__init__(f"Pipeline run '{correlation_id}' changed since version {version}.")
    self.correlation_id = correlation_id
    self.version = version


class SpecificationGenerationFailed(UnrecoverableJobError):
  """Raised when the model could not produce a valid specification after the corrective retry."""

  def __init__(self, first_error: str, retry_error: str) -> None:
    super().__init__(f"Specification generation failed after corrective retry: {retry_error}")
    self.first_error = first_error
    self.retry_error = retry_error
