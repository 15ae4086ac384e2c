"""Event decoder: turn raw wire frames into typed stream events.

Pure per-frame decoding: a frame that cannot be parsed, or that names an
event type this client does not know, becomes an ``UnknownEvent`` instead
of raising, so one bad frame never ends the stream. The agent graph on
the server evolves independently of the client; new event kinds must
pass through untouched.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from agent_chat.models.components import first_error
from agent_chat.streaming.events import (
    KNOWN_EVENT_TYPES,
    STREAM_EVENT_ADAPTER,
    TIMESTAMPED_EVENT_TYPES,
    RawFrame,
    StreamEvent,
    UnknownEvent,
)

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


def decode(
    frame: RawFrame,
    *,
    clock: Callable[[], float] = time.time,
) -> StreamEvent | UnknownEvent:
    """Decode one raw frame.

    Accepts the enveloped form ``{"type": ..., "data": {...}}``, the flat
    form ``{"type": ..., <fields>}``, and a bare object whose type comes
    from the SSE ``event:`` field. Timestamped events without a ``ts``
    are stamped with ``clock()`` at receipt.

    Args:
        frame: Frame read by the transport.
        clock: Time source for receipt stamps (seconds).

    Returns:
        A StreamEvent, or an UnknownEvent describing why decoding failed.
    """
    try:
        parsed = json.loads(frame.data)
    except json.JSONDecodeError as e:
        return UnknownEvent(raw=frame.data, error=f"invalid JSON: {e.msg}")

    if not isinstance(parsed, dict):
        return UnknownEvent(raw=frame.data, error="frame payload is not a JSON object")

    event_type, payload = _split_envelope(parsed, frame.event)
    if event_type is None:
        return UnknownEvent(raw=frame.data, error="frame has no event type")
    if event_type not in KNOWN_EVENT_TYPES:
        return UnknownEvent(raw=frame.data, event_type=event_type)

    if event_type in TIMESTAMPED_EVENT_TYPES and payload.get("ts") is None:
        payload["ts"] = clock()

    try:
        return STREAM_EVENT_ADAPTER.validate_python({**payload, "type": event_type})
    except ValidationError as e:
        return UnknownEvent(
            raw=frame.data,
            event_type=event_type,
            error=f"{e.error_count()} validation error(s): {first_error(e)}",
        )


def _split_envelope(parsed: dict[str, Any], sse_event: str) -> tuple[str | None, dict[str, Any]]:
    """Return (event type, field dict) for an enveloped, flat or bare frame."""
    event_type = parsed.get("type")
    if not isinstance(event_type, str) or not event_type:
        # Bare object: the SSE event name carries the type
        if sse_event and sse_event != "message":
            return sse_event, dict(parsed)
        return None, {}

    inner = parsed.get("data")
    if isinstance(inner, dict):
        return event_type, dict(inner)
    return event_type, {k: v for k, v in parsed.items() if k != "type"}


def log_unknown(event: UnknownEvent) -> None:
    """Log a protocol error or an unrecognized event. Never surfaced to users."""
    if event.error:
        logger.warning(
            "Skipping malformed frame (type=%s): %s. Raw: %s",
            event.event_type or "?",
            event.error,
            event.raw[:200],
        )
    else:
        logger.debug("Ignoring unrecognized event type '%s'", event.event_type)
