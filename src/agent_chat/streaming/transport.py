"""Transport client: one streaming POST per turn, read as SSE frames.

``SSETransport.open_stream`` returns a lazy, single-pass sequence of
``RawFrame``s read from the response body as bytes arrive. It never
raises for network or HTTP failures: those become one synthetic
``error`` frame, so consumers have a single failure channel. Aborting
the caller's ``AbortSignal`` stops the sequence at once, whether it is
still waiting for response headers or for the next read, without raising.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from typing import TYPE_CHECKING, Any

import httpx
from httpx_sse import SSEError, aconnect_sse

from agent_chat.streaming.decoder import DONE_SENTINEL
from agent_chat.streaming.events import RawFrame

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, AsyncIterable, Awaitable

    from agent_chat.models.chat import TurnRequest
    from agent_chat.settings import Settings

logger = logging.getLogger(__name__)


class AbortSignal:
    """Cooperative cancellation flag shared by a turn and its transport.

    Aborting is idempotent; only the first reason is kept.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class SSETransport:
    """Opens agent streams over HTTP.

    Usage::

        transport = SSETransport(settings)
        signal = AbortSignal()
        async for frame in transport.open_stream(request, signal, token=token):
            ...
        await transport.aclose()
    """

    def __init__(self, settings: Settings, *, client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self._client = client
        self._owns_client = client is None

    @property
    def url(self) -> str:
        return f"{self.settings.api_base_url.rstrip('/')}{self.settings.agent_path}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self.settings.request_timeout,
                    connect=self.settings.connect_timeout,
                    read=self.settings.stream_timeout,
                ),
            )
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def open_stream(
        self,
        request: TurnRequest,
        signal: AbortSignal,
        *,
        token: str | None = None,
    ) -> AsyncGenerator[RawFrame, None]:
        """Send one turn and yield the frames of its response.

        The request body is sent as is; history truncation is the
        caller's job.

        Args:
            request: Serialized turn.
            signal: Abort signal; once set, no further frames are yielded.
            token: Bearer credential, fetched by the caller before the call.

        Yields:
            Raw frames in arrival order. Failures yield one ``error`` frame.
        """
        if signal.aborted:
            return

        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        started = time.monotonic()
        logger.debug("Opening agent stream: %s", self.url)

        try:
            async with contextlib.AsyncExitStack() as stack:
                # Waiting for response headers races the abort signal too
                event_source = await _unless_aborted(
                    stack.enter_async_context(
                        aconnect_sse(
                            self._get_client(),
                            "POST",
                            self.url,
                            json=request.to_payload(),
                            headers=headers,
                        )
                    ),
                    signal,
                )
                if event_source is _ABORTED:
                    logger.info("Agent stream aborted before the response arrived (%s)", signal.reason)
                    return

                response = event_source.response
                content_type = response.headers.get("content-type", "")
                logger.info(
                    "Agent stream connected in %.0fms (status=%s, content-type=%s)",
                    (time.monotonic() - started) * 1000,
                    response.status_code,
                    content_type,
                )

                if response.is_error:
                    await response.aread()
                    yield error_frame(
                        _http_error_message(response),
                        status_code=response.status_code,
                    )
                    return

                # Some deployments answer simple prompts with one JSON document
                if "application/json" in content_type:
                    await response.aread()
                    yield _json_fallback_frame(response)
                    return

                async with contextlib.aclosing(_until_aborted(event_source.aiter_sse(), signal)) as events:
                    async for sse in events:
                        if sse.data.strip() == DONE_SENTINEL:
                            return
                        if not sse.data.strip():
                            continue
                        yield RawFrame(data=sse.data, event=sse.event or "message", id=sse.id or None)

        except httpx.TimeoutException as e:
            logger.warning("Agent stream timed out: %s", e)
            yield error_frame(f"Request timeout: {e}", code="TIMEOUT")
        except SSEError as e:
            logger.warning("Agent stream is not an event stream: %s", e)
            yield error_frame(f"Invalid stream response: {e}", code="PARSE_ERROR")
        except httpx.TransportError as e:
            logger.warning("Agent stream network error: %s", e)
            yield error_frame(f"Network connection error: {e}", code="NETWORK_ERROR")

        if signal.aborted:
            logger.info("Agent stream aborted (%s)", signal.reason)


_ABORTED: Any = object()


async def _unless_aborted(awaitable: Awaitable[Any], signal: AbortSignal) -> Any:
    """Await ``awaitable`` unless ``signal`` is aborted first.

    Returns ``_ABORTED`` when the signal wins; the pending work is then
    cancelled before returning.
    """
    pending = asyncio.ensure_future(awaitable)
    abort_wait = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait({pending, abort_wait}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        pending.cancel()
        raise
    finally:
        abort_wait.cancel()

    if pending in done:
        return pending.result()

    pending.cancel()
    with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration, httpx.HTTPError):
        await pending
    return _ABORTED


async def _until_aborted(source: AsyncIterable[Any], signal: AbortSignal) -> AsyncGenerator[Any, None]:
    """Relay ``source`` until it ends or ``signal`` is aborted.

    Each pending read races the abort signal, so a stalled connection
    does not delay cancellation.
    """
    iterator = aiter(source)
    while not signal.aborted:
        try:
            item = await _unless_aborted(anext(iterator), signal)
        except StopAsyncIteration:
            return
        if item is _ABORTED:
            return
        yield item


def error_frame(message: str, *, code: str | None = None, status_code: int | None = None) -> RawFrame:
    """Build a synthetic ``error`` frame for a transport-level failure."""
    data: dict[str, Any] = {"message": message}
    if code is not None:
        data["code"] = code
    if status_code is not None:
        data["statusCode"] = status_code
    return RawFrame(data=json.dumps({"type": "error", "data": data}), event="error")


def _http_error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "detail", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return f"HTTP {response.status_code}"


def _json_fallback_frame(response: httpx.Response) -> RawFrame:
    """Translate a non-streaming JSON reply into one ``final`` frame."""
    try:
        body = response.json()
    except ValueError as e:
        return error_frame(f"Invalid JSON response: {e}", code="PARSE_ERROR")
    if not isinstance(body, dict):
        return error_frame("Invalid JSON response: expected an object", code="PARSE_ERROR")

    # Quick replies (greetings, thanks) only carry ``response``
    if "textResponse" not in body and "response" in body:
        body = {"textResponse": body["response"]}

    logger.info("Agent returned JSON instead of a stream; treating it as the final event")
    data = {
        key: body[key]
        for key in ("textResponse", "componentBlock", "messageId", "timestamp", "agentType", "dataChanged")
        if body.get(key) is not None
    }
    return RawFrame(data=json.dumps({"type": "final", "data": data}), event="message")
