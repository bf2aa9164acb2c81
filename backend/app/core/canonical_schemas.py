############################################################
#
# switchyard - Messages API Translation Gateway
#
# canonical_schemas.py: Canonical request, routing and stream event schemas
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Canonical request/response schemas for protocol translation.

The canonical protocol is the Anthropic Messages API. Every inbound request is
validated into a ``CanonicalRequest``; every translator must produce a sequence
of ``CanonicalStreamEvent`` values regardless of the upstream dialect.

Unknown fields are preserved on requests, blocks and events so the native
passthrough path can forward them untouched.
"""

import json
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter


class Provider(str, Enum):
    """Upstream providers. Values double as model-string routing prefixes."""
    ANTHROPIC = "anthropic"
    GLM = "glm"
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    GEMINI = "gemini"
    OLLAMA = "ollama"


class MessageRole(str, Enum):
    """Message roles in a Messages API conversation."""
    USER = "user"
    ASSISTANT = "assistant"


class ProviderModel(BaseModel):
    """Routing decision: which provider serves the request, under which model name."""

    model_config = ConfigDict(frozen=True)

    provider: Provider
    model: str

    def as_status(self) -> Dict[str, str]:
        return {"provider": self.provider.value, "model": self.model}


class UpstreamCredential(BaseModel):
    """Secret and endpoint for one provider, read-only after startup."""

    model_config = ConfigDict(frozen=True)

    base_url: str
    secret: Optional[str] = None


# Content Block Types
class _Block(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)


class TextBlock(_Block):
    """Text content block."""
    type: Literal["text"] = "text"
    text: str


class ImageBlock(_Block):
    """Image content block ({"type": "base64"|"url", ...} source)."""
    type: Literal["image"] = "image"
    source: Dict[str, Any]


class ToolUseBlock(_Block):
    """Assistant tool invocation."""
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(_Block):
    """User-supplied result for an earlier tool_use."""
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: Union[str, List[Dict[str, Any]]] = ""
    is_error: Optional[bool] = None

    def get_text_content(self) -> str:
        if isinstance(self.content, str):
            return self.content
        parts = []
        for block in self.content:
            if isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "\n".join(parts)


class ThinkingBlock(_Block):
    """Extended thinking block echoed back by the client."""
    type: Literal["thinking"] = "thinking"
    thinking: str = ""
    signature: Optional[str] = None


class OpaqueBlock(_Block):
    """Any block type the gateway does not interpret (documents, server tools...)."""
    type: str


_KNOWN_BLOCK_TYPES = {"text", "image", "tool_use", "tool_result", "thinking"}


def _block_tag(value: Any) -> str:
    if isinstance(value, dict):
        block_type = value.get("type")
    else:
        block_type = getattr(value, "type", None)
    return block_type if block_type in _KNOWN_BLOCK_TYPES else "opaque"


ContentBlock = Annotated[
    Union[
        Annotated[TextBlock, Tag("text")],
        Annotated[ImageBlock, Tag("image")],
        Annotated[ToolUseBlock, Tag("tool_use")],
        Annotated[ToolResultBlock, Tag("tool_result")],
        Annotated[ThinkingBlock, Tag("thinking")],
        Annotated[OpaqueBlock, Tag("opaque")],
    ],
    Discriminator(_block_tag),
]


class CanonicalMessage(BaseModel):
    """Canonical message representation."""

    model_config = ConfigDict(extra="allow", frozen=True)

    role: MessageRole
    content: Union[str, List[ContentBlock]]

    def blocks(self) -> List[Any]:
        """Content as a block list; plain strings become one text block."""
        if isinstance(self.content, str):
            return [TextBlock(text=self.content)] if self.content else []
        return list(self.content)

    def get_text_content(self) -> str:
        """Extract text content from message."""
        if isinstance(self.content, str):
            return self.content
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    def has_images(self) -> bool:
        if isinstance(self.content, str):
            return False
        for block in self.content:
            if isinstance(block, ImageBlock):
                return True
            if isinstance(block, ToolResultBlock) and isinstance(block.content, list):
                if any(isinstance(b, dict) and b.get("type") == "image" for b in block.content):
                    return True
        return False

    def has_tool_blocks(self) -> bool:
        if isinstance(self.content, str):
            return False
        return any(isinstance(b, (ToolUseBlock, ToolResultBlock)) for b in self.content)


class ToolSpec(BaseModel):
    """Tool definition as declared by the caller."""

    model_config = ConfigDict(extra="allow", frozen=True)

    name: str
    description: Optional[str] = None
    input_schema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object"})


class CanonicalRequest(BaseModel):
    """Canonical Messages API request. Immutable once received."""

    model_config = ConfigDict(extra="allow", frozen=True)

    # Required
    messages: List[CanonicalMessage]

    # Routing hint; may carry a "provider:" or "provider/" prefix
    model: str = ""

    system: Optional[Union[str, List[Dict[str, Any]]]] = None

    # Optional parameters
    max_tokens: Optional[int] = Field(default=None, ge=1)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    top_p: Optional[float] = Field(default=None, ge=0, le=1)
    top_k: Optional[int] = Field(default=None, ge=0)
    stop_sequences: Optional[List[str]] = None
    stream: bool = False

    # Tool calling
    tools: Optional[List[ToolSpec]] = None
    tool_choice: Optional[Dict[str, Any]] = None

    thinking: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None

    def get_system_prompt(self) -> Optional[str]:
        """System prompt flattened to text (string or list of text blocks)."""
        if self.system is None:
            return None
        if isinstance(self.system, str):
            return self.system
        parts = [
            block.get("text", "")
            for block in self.system
            if isinstance(block, dict) and block.get("type", "text") == "text"
        ]
        return "\n\n".join(p for p in parts if p)

    def requires_tools(self) -> bool:
        """Tools declared, or tool_use/tool_result blocks in the history."""
        if self.tools:
            return True
        return any(msg.has_tool_blocks() for msg in self.messages)

    def requires_vision(self) -> bool:
        return any(msg.has_images() for msg in self.messages)

    def requires_thinking(self) -> bool:
        return bool(self.thinking) and self.thinking.get("type") in ("enabled", "adaptive")

    def to_wire(self) -> Dict[str, Any]:
        """Body exactly as received (unset defaults omitted, unknown fields kept)."""
        return self.model_dump(mode="json", exclude_unset=True)


# Stream event types
class StreamEventBase(BaseModel):
    model_config = ConfigDict(extra="allow")

    def to_sse(self) -> str:
        """Serialize as one canonical SSE frame."""
        payload = self.model_dump(mode="json")
        return f"event: {payload['type']}\ndata: {json.dumps(payload)}\n\n"


class MessageStartEvent(StreamEventBase):
    type: Literal["message_start"] = "message_start"
    message: Dict[str, Any]


class ContentBlockStartEvent(StreamEventBase):
    type: Literal["content_block_start"] = "content_block_start"
    index: int
    content_block: Dict[str, Any]


class ContentBlockDeltaEvent(StreamEventBase):
    """Delta is {"type": "text_delta", "text"} or {"type": "input_json_delta", "partial_json"}."""
    type: Literal["content_block_delta"] = "content_block_delta"
    index: int
    delta: Dict[str, Any]


class ContentBlockStopEvent(StreamEventBase):
    type: Literal["content_block_stop"] = "content_block_stop"
    index: int


class MessageDeltaEvent(StreamEventBase):
    type: Literal["message_delta"] = "message_delta"
    delta: Dict[str, Any]
    usage: Dict[str, Any] = Field(default_factory=lambda: {"output_tokens": 0})


class MessageStopEvent(StreamEventBase):
    type: Literal["message_stop"] = "message_stop"


class PingEvent(StreamEventBase):
    type: Literal["ping"] = "ping"


class ErrorEvent(StreamEventBase):
    type: Literal["error"] = "error"
    error: Dict[str, Any]


CanonicalStreamEvent = Annotated[
    Union[
        MessageStartEvent,
        ContentBlockStartEvent,
        ContentBlockDeltaEvent,
        ContentBlockStopEvent,
        MessageDeltaEvent,
        MessageStopEvent,
        PingEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

STREAM_EVENT_TYPES = frozenset(
    {
        "message_start",
        "content_block_start",
        "content_block_delta",
        "content_block_stop",
        "message_delta",
        "message_stop",
        "ping",
        "error",
    }
)

_stream_event_adapter: TypeAdapter = TypeAdapter(CanonicalStreamEvent)


def parse_stream_event(data: Dict[str, Any]) -> StreamEventBase:
    """Validate one decoded ``data:`` payload into a typed stream event.

    Raises:
        pydantic.ValidationError: payload is not a recognizable event
    """
    return _stream_event_adapter.validate_python(data)
