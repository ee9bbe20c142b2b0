"""In-process publish/subscribe channel for progress events."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Protocol

from appforge.events.models import ProgressEvent

logger = logging.getLogger(__name__)


class EventPublisher(Protocol):
  """Fire-and-forget sink for progress events."""

  def publish(self, event: ProgressEvent) -> None:
    """Deliver an event to current observers without blocking or raising."""


class Subscription:
  """Bounded buffer of events for one observer of one project."""

  def __init__(self, channel: EventChannel, project_id: str, buffer_size: int) -> None:
    self._channel = channel
    self.project_id = project_id
    self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=buffer_size)
    self.dropped = 0
    self.closed = False

  def offer(self, event: ProgressEvent) -> None:
    """Buffer an event, discarding the oldest one when the buffer is full."""
    if self.closed:
      return
    if self._queue.full():
      self._queue.get_nowait()
      self.dropped += 1
    self._queue.put_nowait(event)

  async def get(self, timeout: float | None = None) -> ProgressEvent | None:
    """Wait for the next event; return None when the timeout elapses."""
    if timeout is None:
      return await self._queue.get()
    try:
      return await asyncio.wait_for(self._queue.get(), timeout=timeout)
    except TimeoutError:
      return None

  def pending(self) -> list[ProgressEvent]:
    """Drain buffered events without waiting."""
    events: list[ProgressEvent] = []
    while not self._queue.empty():
      events.append(self._queue.get_nowait())
    return events

  def close(self) -> None:
    if self.closed:
      return
    self.closed = True
    self._channel.unsubscribe(self)

  def __aiter__(self) -> Subscription:
    return self

  async def __anext__(self) -> ProgressEvent:
    if self.closed:
      raise StopAsyncIteration
    return await self._queue.get()

  def __enter__(self) -> Subscription:
    return self

  def __exit__(self, *_exc: object) -> None:
    self.close()


class EventChannel(EventPublisher):
  """Broadcast events to the observers subscribed to a project.

  There is no replay buffer: a new subscriber only sees events published after it
  subscribed. Publishing never blocks and never raises; slow observers lose their
  oldest buffered events instead of stalling the pipeline.
  """

  def __init__(self, buffer_size: int = 256) -> None:
    if buffer_size <= 0:
      raise ValueError("buffer_size must be a positive integer")
    self._buffer_size = buffer_size
    self._subscribers: dict[str, set[Subscription]] = defaultdict(set)

  def subscribe(self, project_id: str) -> Subscription:
    subscription = Subscription(self, project_id, self._buffer_size)
    self._subscribers[project_id].add(subscription)
    logger.debug("Subscriber added project_id=%s total=%d", project_id, len(self._subscribers[project_id]))
    return subscription

  def unsubscribe(self, subscription: Subscription) -> None:
    subscribers = self._subscribers.get(subscription.project_id)
    if not subscribers:
      return
    subscribers.discard(subscription)
    if not subscribers:
      del self._subscribers[subscription.project_id]

  def subscriber_count(self, project_id: str) -> int:
    return len(self._subscribers.get(project_id, ()))

  def publish(self, event: ProgressEvent) -> None:
    for subscription in list(self._subscribers.get(event.project_id, ())):
      try:
        subscription.offer(event)
      except Exception:  # noqa: BLE001
        logger.warning("Dropping event for subscriber project_id=%s type=%s", event.project_id, event.type, exc_info=True)
