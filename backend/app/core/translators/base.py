############################################################
#
# switchyard - Messages API Translation Gateway
#
# base.py: Translator interface and per-stream decode context
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Translator interface and per-stream decode context.

A translator owns exactly one upstream dialect and exposes two operations:

* ``encode_request``: canonical request -> upstream URL, headers and body
* ``decode_chunk``: raw upstream bytes -> zero or more canonical stream events

All cross-chunk state lives in a ``DecodeContext`` scoped to one request. The
context also builds the canonical events, so every translator emits the same
well-formed shape: one ``message_start``, at most one open content block at a
time, one ``message_delta`` + ``message_stop`` (or one ``error``) at the end.
"""

import json
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from backend.app.core.canonical_schemas import (
    CanonicalRequest,
    ContentBlockDeltaEvent,
    ContentBlockStartEvent,
    ContentBlockStopEvent,
    ErrorEvent,
    MessageDeltaEvent,
    MessageStartEvent,
    MessageStopEvent,
    Provider,
    StreamEventBase,
    UpstreamCredential,
)
from backend.app.core.errors import GatewayError, UpstreamProtocolError
from backend.app.core.translators.framing import NDJSONDecoder, SSEFrameDecoder
from backend.app.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class UpstreamTarget:
    """Everything a translator needs to address one upstream call."""
    provider: Provider
    model: str
    credential: UpstreamCredential
    anthropic_version: str = "2023-06-01"
    forward_headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class UpstreamRequest:
    """Native upstream HTTP request produced by ``encode_request``."""
    url: str
    headers: Dict[str, str]
    body: Dict[str, Any]
    method: str = "POST"


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:24]}"


def new_tool_use_id() -> str:
    return f"toolu_{uuid.uuid4().hex[:24]}"


class DecodeContext:
    """Cross-chunk decode state for exactly one request."""

    def __init__(
        self,
        message_id: str,
        model: str,
        framing: Union[SSEFrameDecoder, NDJSONDecoder],
    ):
        self.message_id = message_id
        self.model = model
        self.framing = framing

        # Set by the relay once the upstream body closed cleanly
        self.eof = False

        self.started = False
        self.finished = False
        self.open_block: Optional[int] = None
        self.open_block_type: Optional[str] = None
        self.next_index = 0

        # Upstream tool-call index -> canonical content block index
        self.tool_blocks: Dict[Any, int] = {}
        # Accumulated argument fragments per upstream tool-call index
        self.tool_args: Dict[Any, str] = {}

        self.input_tokens: Optional[int] = None
        self.output_tokens = 0
        self.stop_reason: Optional[str] = None
        # A message_delta was already forwarded from upstream
        self.delta_sent = False

    # ------------------------------------------------------------------
    # Event builders
    # ------------------------------------------------------------------

    def ensure_started(self) -> List[StreamEventBase]:
        if self.started:
            return []
        self.started = True
        return [
            MessageStartEvent(
                message={
                    "id": self.message_id,
                    "type": "message",
                    "role": "assistant",
                    "model": self.model,
                    "content": [],
                    "stop_reason": None,
                    "stop_sequence": None,
                    "usage": {"input_tokens": self.input_tokens or 0, "output_tokens": 0},
                }
            )
        ]

    def close_block(self) -> List[StreamEventBase]:
        if self.open_block is None:
            return []
        index = self.open_block
        self.open_block = None
        self.open_block_type = None
        return [ContentBlockStopEvent(index=index)]

    def _open_block(self, content_block: Dict[str, Any]) -> List[StreamEventBase]:
        events = self.ensure_started()
        events.extend(self.close_block())
        index = self.next_index
        self.next_index += 1
        self.open_block = index
        self.open_block_type = content_block["type"]
        events.append(ContentBlockStartEvent(index=index, content_block=content_block))
        return events

    def text(self, text: str) -> List[StreamEventBase]:
        """Text fragment; opens a text block when none is open."""
        if not text:
            return []
        events: List[StreamEventBase] = []
        if self.open_block_type != "text":
            events.extend(self._open_block({"type": "text", "text": ""}))
        self.output_tokens += 1  # approximate until upstream reports usage
        events.append(
            ContentBlockDeltaEvent(
                index=self.open_block,
                delta={"type": "text_delta", "text": text},
            )
        )
        return events

    def start_tool(self, key: Any, tool_id: Optional[str], name: str) -> List[StreamEventBase]:
        """Open a tool_use block for upstream tool call ``key``."""
        events = self._open_block(
            {
                "type": "tool_use",
                "id": tool_id or new_tool_use_id(),
                "name": name,
                "input": {},
            }
        )
        self.tool_blocks[key] = self.open_block
        self.tool_args[key] = ""
        return events

    def tool_arguments(self, key: Any, fragment: str) -> List[StreamEventBase]:
        """Argument fragment for an already-opened tool call."""
        if not fragment:
            return []
        index = self.tool_blocks.get(key)
        if index is None or index != self.open_block:
            # Blocks are strictly sequential on the canonical side
            logger.warning("tool_fragment_out_of_order", tool_call=key, open_block=self.open_block)
            return []
        self.tool_args[key] += fragment
        return [
            ContentBlockDeltaEvent(
                index=index,
                delta={"type": "input_json_delta", "partial_json": fragment},
            )
        ]

    def tool_call(self, key: Any, tool_id: Optional[str], name: str, arguments: Any) -> List[StreamEventBase]:
        """Complete tool call delivered in one piece (Gemini, Ollama)."""
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments or {})
        events = self.start_tool(key, tool_id, name)
        events.extend(self.tool_arguments(key, arguments))
        events.extend(self.close_block())
        return events

    def finish(
        self,
        stop_reason: Optional[str] = None,
        output_tokens: Optional[int] = None,
    ) -> List[StreamEventBase]:
        """Close everything and emit the terminal message_delta + message_stop."""
        if self.finished:
            return []
        events = self.ensure_started()
        events.extend(self.close_block())

        if stop_reason:
            self.stop_reason = stop_reason
        if output_tokens is not None:
            self.output_tokens = output_tokens

        if not self.delta_sent:
            usage: Dict[str, Any] = {"output_tokens": self.output_tokens}
            if self.input_tokens is not None:
                usage["input_tokens"] = self.input_tokens
            events.append(
                MessageDeltaEvent(
                    delta={"stop_reason": self.stop_reason or self.default_stop_reason(), "stop_sequence": None},
                    usage=usage,
                )
            )
            self.delta_sent = True
        events.append(MessageStopEvent())
        self.finished = True
        return events

    def default_stop_reason(self) -> str:
        return "tool_use" if self.tool_blocks else "end_turn"

    def fail(self, error: GatewayError) -> List[StreamEventBase]:
        """Single terminal error event; open blocks are abandoned."""
        if self.finished:
            return []
        self.finished = True
        body: Dict[str, Any] = {"type": error.error_type, "message": error.message}
        if error.status_code:
            body["status_code"] = error.status_code
        return [ErrorEvent(error=body)]

    # ------------------------------------------------------------------
    # Passthrough bookkeeping
    # ------------------------------------------------------------------

    def track(self, event: StreamEventBase) -> None:
        """Update state from an event produced upstream in canonical form."""
        if event.type == "message_start":
            self.started = True
        elif event.type == "content_block_start":
            self.open_block = event.index
            self.open_block_type = event.content_block.get("type")
            self.next_index = max(self.next_index, event.index + 1)
        elif event.type == "content_block_stop":
            if self.open_block == event.index:
                self.open_block = None
                self.open_block_type = None
        elif event.type == "message_delta":
            self.delta_sent = True
            self.stop_reason = event.delta.get("stop_reason") or self.stop_reason
            if "output_tokens" in event.usage:
                self.output_tokens = event.usage["output_tokens"]
        elif event.type in ("message_stop", "error"):
            self.finished = True


class Translator(ABC):
    """Per-provider request encoder and response stream decoder."""

    provider: Provider
    framing: str = "sse"

    def new_context(self, model: str, message_id: Optional[str] = None) -> DecodeContext:
        decoder = NDJSONDecoder() if self.framing == "ndjson" else SSEFrameDecoder()
        return DecodeContext(message_id or new_message_id(), model, decoder)

    @abstractmethod
    def encode_request(self, request: CanonicalRequest, target: UpstreamTarget) -> UpstreamRequest:
        """Shape the canonical request for the upstream dialect."""

    @abstractmethod
    def decode_chunk(self, chunk: bytes, ctx: DecodeContext) -> List[StreamEventBase]:
        """Turn one upstream chunk into canonical events (possibly none).

        Raises:
            UpstreamProtocolError: chunk cannot be decoded
            UpstreamStatusError: upstream reported an error in-stream
        """

    def _frames(self, chunk: bytes, ctx: DecodeContext) -> list:
        return ctx.framing.feed(chunk, final=ctx.eof)

    def _object(self, value: Any, what: str) -> Dict[str, Any]:
        """``value`` as a JSON object; absent reads as empty.

        Raises:
            UpstreamProtocolError: value is present but not an object
        """
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise UpstreamProtocolError(
                f"Expected an object for '{what}' from {self.provider.value}, "
                f"got {type(value).__name__}",
                provider=self.provider.value,
            )
        return value

    def _array(self, value: Any, what: str) -> List[Any]:
        """``value`` as a JSON array; absent reads as empty."""
        if value is None:
            return []
        if not isinstance(value, list):
            raise UpstreamProtocolError(
                f"Expected an array for '{what}' from {self.provider.value}, "
                f"got {type(value).__name__}",
                provider=self.provider.value,
            )
        return value

    def _string(self, value: Any, what: str) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            raise UpstreamProtocolError(
                f"Expected a string for '{what}' from {self.provider.value}, "
                f"got {type(value).__name__}",
                provider=self.provider.value,
            )
        return value
