"""Progress events streamed to live observers."""

from __future__ import annotations

from typing import Any, Literal

import msgspec

EventType = Literal["thought", "build", "healing", "deployment", "progress", "error", "success", "system"]


class ProgressEvent(msgspec.Struct, frozen=True, kw_only=True, rename="camel"):
  """One observable pipeline occurrence, keyed by project id.

  Events are a transport artifact; the pipeline run record stays the system of record.
  """

  project_id: str
  type: EventType
  message: str
  timestamp: str
  metadata: dict[str, Any] = msgspec.field(default_factory=dict)

  def as_dict(self) -> dict[str, Any]:
    """Serialize the event for logging or transport."""
    return msgspec.to_builtins(self)


_ENCODER = msgspec.json.Encoder()


def encode_event(event: ProgressEvent) -> bytes:
  return _ENCODER.encode(event)


def decode_event(raw: bytes | str) -> ProgressEvent:
  return msgspec.json.decode(raw, type=ProgressEvent)
