############################################################
#
# switchyard - Messages API Translation Gateway
#
# relay.py: Upstream-to-downstream streaming relay
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Streaming relay - pumps one upstream response into canonical events.

The relay is a pull pipeline:

    upstream bytes -> translator.decode_chunk -> canonical events -> SSE bytes

It moves through IDLE -> HEADERS_SENT -> STREAMING -> TERMINATED exactly once.
Whatever happens upstream, the caller sees one well-formed event sequence:
either a normal terminus (message_delta + message_stop, synthesized when the
upstream just closes) or a single ``error`` event. When the caller goes away
the upstream response is closed and nothing more is written.
"""

import asyncio
import json
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import httpx

from backend.app.core.canonical_schemas import CanonicalRequest, StreamEventBase
from backend.app.core.errors import (
    DownstreamDisconnect,
    GatewayError,
    UpstreamProtocolError,
    UpstreamStatusError,
    UpstreamTransportError,
)
from backend.app.core.translators.base import Translator, UpstreamTarget
from backend.app.logging_config import get_logger
from backend.app.settings import Settings

logger = get_logger(__name__)


class RelayState(str, Enum):
    IDLE = "idle"
    HEADERS_SENT = "headers_sent"
    STREAMING = "streaming"
    TERMINATED = "terminated"


class StreamingRelay:
    """Relay one canonical request through one translator and upstream."""

    def __init__(
        self,
        translator: Translator,
        request: CanonicalRequest,
        target: UpstreamTarget,
        client: httpx.AsyncClient,
        settings: Optional[Settings] = None,
        message_id: Optional[str] = None,
        disconnect_check: Optional[Callable[[], Awaitable[bool]]] = None,
        on_event: Optional[Callable[[StreamEventBase], None]] = None,
        on_finish: Optional[Callable[[str], None]] = None,
    ):
        self.translator = translator
        self.request = request
        self.target = target
        self.client = client
        self.settings = settings
        self.disconnect_check = disconnect_check
        self.on_event = on_event
        self.on_finish = on_finish

        self.ctx = translator.new_context(target.model, message_id)
        self.state = RelayState.IDLE
        # completed | error | disconnected
        self.outcome: Optional[str] = None
        self.error: Optional[GatewayError] = None

    @property
    def provider(self) -> str:
        return self.target.provider.value

    @property
    def message_id(self) -> str:
        return self.ctx.message_id

    def _timeout(self) -> Optional[httpx.Timeout]:
        if self.settings is None:
            return None
        return httpx.Timeout(
            connect=self.settings.upstream_connect_timeout,
            read=self.settings.upstream_idle_timeout,
            write=self.settings.upstream_write_timeout,
            pool=self.settings.upstream_connect_timeout,
        )

    async def events(self) -> AsyncIterator[StreamEventBase]:
        """Yield canonical events for the request, in upstream order.

        Entering the generator means the caller has committed its response
        headers. Closing it early (``aclose`` or task cancellation) closes the
        upstream response.
        """
        if self.state is not RelayState.IDLE:
            raise RuntimeError(f"relay already used (state={self.state.value})")
        self.state = RelayState.HEADERS_SENT

        try:
            upstream = self.translator.encode_request(self.request, self.target)
            logger.debug("upstream_request", provider=self.provider, url=upstream.url, headers=upstream.headers)

            stream_kwargs: Dict[str, Any] = {"headers": upstream.headers, "json": upstream.body}
            timeout = self._timeout()
            if timeout is not None:
                stream_kwargs["timeout"] = timeout

            async with self.client.stream(upstream.method, upstream.url, **stream_kwargs) as response:
                self.state = RelayState.STREAMING

                if response.status_code >= 400:
                    body = await response.aread()
                    raise UpstreamStatusError(
                        _upstream_error_message(body, response.status_code),
                        status_code=response.status_code,
                        provider=self.provider,
                    )

                async for chunk in response.aiter_bytes():
                    if self.disconnect_check is not None and await self.disconnect_check():
                        raise DownstreamDisconnect()
                    for event in self.translator.decode_chunk(chunk, self.ctx):
                        self._observe(event)
                        yield event
                    if self.ctx.finished:
                        break

                if not self.ctx.finished:
                    # Clean close: flush partial frames, then synthesize the terminus
                    self.ctx.eof = True
                    for event in self.translator.decode_chunk(b"", self.ctx):
                        self._observe(event)
                        yield event
                    for event in self.ctx.finish():
                        self._observe(event)
                        yield event

            self.outcome = "completed"
            logger.info(
                "stream_completed",
                provider=self.provider,
                stop_reason=self.ctx.stop_reason,
                output_tokens=self.ctx.output_tokens,
            )

        except DownstreamDisconnect:
            self.outcome = "disconnected"
            logger.info("downstream_disconnect", provider=self.provider)

        except (GatewayError, httpx.HTTPError) as e:
            for event in self._fail(e):
                yield event

        except Exception as e:
            # Translator tripped over a payload it did not anticipate
            logger.exception("relay_unexpected_error", provider=self.provider)
            for event in self._fail(e):
                yield event

        except (GeneratorExit, asyncio.CancelledError):
            # aclose() / cancellation: upstream already closed by the context manager
            if self.outcome is None:
                self.outcome = "disconnected"
                logger.info("downstream_disconnect", provider=self.provider)
            raise

        finally:
            self.state = RelayState.TERMINATED
            if self.on_finish is not None:
                self.on_finish(self.outcome or "disconnected")

    async def stream(self) -> AsyncIterator[bytes]:
        """SSE-encoded bytes for a ``text/event-stream`` response."""
        events = self.events()
        try:
            async for event in events:
                yield event.to_sse().encode("utf-8")
        finally:
            await events.aclose()

    async def collect(self) -> Dict[str, Any]:
        """Drive the stream and fold it into one Messages API response.

        Raises:
            GatewayError: The stream ended in an error event
        """
        message: Dict[str, Any] = {}
        blocks: Dict[int, Dict[str, Any]] = {}
        partial_json: Dict[int, List[str]] = {}

        events = self.events()
        try:
            async for event in events:
                if event.type == "message_start":
                    message = dict(event.message)
                    message["usage"] = dict(message.get("usage") or {})
                elif event.type == "content_block_start":
                    blocks[event.index] = dict(event.content_block)
                elif event.type == "content_block_delta":
                    _apply_delta(blocks.setdefault(event.index, {}), event.delta, partial_json, event.index)
                elif event.type == "message_delta":
                    message.update(event.delta)
                    message.setdefault("usage", {}).update(event.usage)
                elif event.type == "error":
                    raise self.error or GatewayError(
                        event.error.get("message", "upstream error"),
                        status_code=event.error.get("status_code"),
                        error_type=event.error.get("type"),
                    )
        finally:
            await events.aclose()

        for index, fragments in partial_json.items():
            raw = "".join(fragments)
            try:
                blocks[index]["input"] = json.loads(raw) if raw else {}
            except json.JSONDecodeError:
                raise UpstreamProtocolError(
                    f"Tool input for block {index} is not valid JSON",
                    provider=self.provider,
                )

        message["content"] = [blocks[i] for i in sorted(blocks)]
        return message

    def _fail(self, error: Exception) -> List[StreamEventBase]:
        """Record the failure and build the single terminal error event."""
        self.error = _as_gateway_error(error, self.provider)
        self.outcome = "error"
        logger.warning(
            "upstream_error",
            provider=self.provider,
            status_code=self.error.status_code,
            error_type=self.error.error_type,
            error=self.error.message,
        )
        events = self.ctx.fail(self.error)
        for event in events:
            self._observe(event)
        return events

    def _observe(self, event: StreamEventBase) -> None:
        if self.on_event is not None:
            self.on_event(event)


def _apply_delta(
    block: Dict[str, Any],
    delta: Dict[str, Any],
    partial_json: Dict[int, List[str]],
    index: int,
) -> None:
    delta_type = delta.get("type")
    if delta_type == "text_delta":
        block["text"] = block.get("text", "") + delta.get("text", "")
    elif delta_type == "input_json_delta":
        partial_json.setdefault(index, []).append(delta.get("partial_json", ""))
    elif delta_type == "thinking_delta":
        block["thinking"] = block.get("thinking", "") + delta.get("thinking", "")
    elif delta_type == "signature_delta":
        block["signature"] = delta.get("signature", "")


def _as_gateway_error(error: Exception, provider: str) -> GatewayError:
    if isinstance(error, GatewayError):
        return error
    if isinstance(error, httpx.TimeoutException):
        return UpstreamTransportError(f"Upstream timed out: {error!r}", provider=provider)
    if isinstance(error, httpx.TransportError):
        return UpstreamTransportError(f"Upstream connection failed: {error!r}", provider=provider)
    if isinstance(error, httpx.HTTPError):
        # Body-level failures such as a corrupt content-encoding
        return UpstreamProtocolError(f"Upstream body could not be read: {error!r}", provider=provider)
    return UpstreamProtocolError(f"Unexpected payload from {provider}: {error!r}", provider=provider)


def _upstream_error_message(body: bytes, status_code: int) -> str:
    """Best-effort human message from an upstream error body."""
    text = body.decode("utf-8", errors="replace").strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = None

    if isinstance(data, list) and data:
        # Gemini wraps errors in a one-element array
        data = data[0]
    if isinstance(data, dict):
        error = data.get("error", data)
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error

    return text[:500] or f"Upstream returned HTTP {status_code}"
