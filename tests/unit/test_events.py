from __future__ import annotations

import json

import pytest

from appforge.events.channel import EventChannel
from appforge.events.models import ProgressEvent, decode_event, encode_event
from appforge.events.sse import KEEPALIVE_FRAME, format_sse, stream_events
from appforge.events.tracker import ProgressTracker


def _event(message: str, project_id: str = "proj-1") -> ProgressEvent:
  return ProgressEvent(project_id=project_id, type="build", message=message, timestamp="2026-01-01T00:00:00Z")


def test_subscribers_only_see_events_for_their_project() -> None:
  channel = EventChannel()
  mine = channel.subscribe("proj-1")
  theirs = channel.subscribe("proj-2")

  channel.publish(_event("npm install"))

  assert [event.message for event in mine.pending()] == ["npm install"]
  assert theirs.pending() == []


def test_late_subscriber_gets_no_replay() -> None:
  channel = EventChannel()
  channel.publish(_event("before"))

  subscription = channel.subscribe("proj-1")
  channel.publish(_event("after"))

  assert [event.message for event in subscription.pending()] == ["after"]


def test_full_buffer_drops_oldest_events() -> None:
  channel = EventChannel(buffer_size=2)
  subscription = channel.subscribe("proj-1")

  for index in range(4):
    channel.publish(_event(f"line {index}"))

  assert [event.message for event in subscription.pending()] == ["line 2", "line 3"]
  assert subscription.dropped == 2


def test_closing_subscription_unsubscribes() -> None:
  channel = EventChannel()
  with channel.subscribe("proj-1") as subscription:
    assert channel.subscriber_count("proj-1") == 1

  assert subscription.closed
  assert channel.subscriber_count("proj-1") == 0
  channel.publish(_event("ignored"))
  assert subscription.pending() == []


def test_publishing_without_subscribers_is_a_no_op() -> None:
  EventChannel().publish(_event("nobody listening"))


def test_tracker_stamps_events_and_drops_empty_metadata() -> None:
  channel = EventChannel()
  subscription = channel.subscribe("proj-1")

  event = ProgressTracker(channel).emit("proj-1", "healing", "Healing attempt 1/3", attempt=1, cause=None)

  assert event.metadata == {"attempt": 1}
  assert event.timestamp
  assert subscription.pending() == [event]


def test_tracker_survives_a_failing_publisher() -> None:
  class BrokenPublisher:
    def publish(self, event: ProgressEvent) -> None:
      raise RuntimeError("socket closed")

  event = ProgressTracker(BrokenPublisher()).emit("proj-1", "error", "boom")

  assert event.message == "boom"


def test_events_encode_with_camel_case_keys() -> None:
  event = ProgressEvent(project_id="proj-1", type="success", message="Deployed", timestamp="2026-01-01T00:00:00Z", metadata={"url": "https://todo.example"})

  raw = encode_event(event)

  assert json.loads(raw)["projectId"] == "proj-1"
  assert decode_event(raw) == event


def test_sse_frame_names_the_event_type() -> None:
  frame = format_sse(_event("npm run build"))

  assert frame.startswith(b"event: build\ndata: {")
  assert frame.endswith(b"\n\n")


@pytest.mark.anyio
async def test_stream_yields_events_and_keepalives_then_releases_subscription() -> None:
  channel = EventChannel()
  subscription = channel.subscribe("proj-1")
  channel.publish(_event("compiling"))
  checks = iter([False, False, True])

  async def is_disconnected() -> bool:
    return next(checks)

  frames = [frame async for frame in stream_events(subscription, is_disconnected, keepalive_seconds=0.01)]

  assert frames[0] == b": connected\n\n"
  assert b"compiling" in frames[1]
  assert frames[2] == KEEPALIVE_FRAME
  assert len(frames) == 3
  assert channel.subscriber_count("proj-1") == 0
