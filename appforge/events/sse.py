"""Server-sent event framing for progress subscriptions."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable

from appforge.events.channel import Subscription
from appforge.events.models import ProgressEvent, encode_event

KEEPALIVE_FRAME = b": keep-alive\n\n"


def format_sse(event: ProgressEvent) -> bytes:
  return b"event: " + event.type.encode("ascii") + b"\ndata: " + encode_event(event) + b"\n\n"


async def stream_events(subscription: Subscription, is_disconnected: Callable[[], Awaitable[bool]], *, keepalive_seconds: float = 15.0) -> AsyncIterator[bytes]:
  """Yield framed events until the client goes away; always releases the subscription."""
  try:
    yield b": connected\n\n"
    while True:
      if await is_disconnected():
        break
      event = await subscription.get(timeout=keepalive_seconds)
      if event is None:
        yield KEEPALIVE_FRAME
        continue
      yield format_sse(event)
  finally:
    subscription.close()
