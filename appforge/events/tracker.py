"""Helpers that stamp and publish progress events."""

from __future__ import annotations

import logging
from typing import Any

from appforge.events.channel import EventPublisher
from appforge.events.models import EventType, ProgressEvent
from appforge.utils.ids import utc_now_iso

logger = logging.getLogger(__name__)


class ProgressTracker:
  """Emit structured progress events to a publisher."""

  def __init__(self, publisher: EventPublisher | None = None) -> None:
    self._publisher = publisher

  def emit(self, project_id: str, event_type: EventType, message: str, **metadata: Any) -> ProgressEvent:
    """Emit and return a progress event."""
    event = ProgressEvent(project_id=project_id, type=event_type, message=message, timestamp=utc_now_iso(), metadata={key: value for key, value in metadata.items() if value is not None})
    logger.debug("Progress event project_id=%s type=%s message=%s", project_id, event_type, message)
    if self._publisher is not None:
      try:
        self._publisher.publish(event)
      except Exception:  # noqa: BLE001
        logger.warning("Event publish failed project_id=%s type=%s", project_id, event_type, exc_info=True)
    return event
