############################################################
#
# switchyard - Messages API Translation Gateway
#
# ollama_out.py: Canonical schema to Ollama API format translator
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Canonical schema to Ollama API format translator."""

import json
from typing import Any, Dict, List

from backend.app.core.canonical_schemas import (
    CanonicalMessage,
    CanonicalRequest,
    ImageBlock,
    MessageRole,
    Provider,
    StreamEventBase,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from backend.app.core.errors import UpstreamProtocolError, UpstreamStatusError
from backend.app.core.translators.base import (
    DecodeContext,
    Translator,
    UpstreamRequest,
    UpstreamTarget,
)
from backend.app.logging_config import get_logger

logger = get_logger(__name__)


class OllamaTranslator(Translator):
    """Translate canonical requests to Ollama /api/chat and back."""

    provider = Provider.OLLAMA
    framing = "ndjson"

    def encode_request(self, request: CanonicalRequest, target: UpstreamTarget) -> UpstreamRequest:
        """Translate canonical request to Ollama /api/chat format.

        Args:
            request: Canonical request
            target: Resolved model and credential (base URL, optional key)

        Returns:
            UpstreamRequest for /api/chat
        """
        messages: List[Dict[str, Any]] = []

        system = request.get_system_prompt()
        if system:
            messages.append({"role": "system", "content": system})

        for msg in request.messages:
            messages.extend(self._translate_message(msg))

        payload: Dict[str, Any] = {
            "model": target.model,
            "messages": messages,
            "stream": True,
        }

        options = self._build_options(request)
        if options:
            payload["options"] = options

        if request.tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description or "",
                        "parameters": tool.input_schema,
                    },
                }
                for tool in request.tools
            ]

        # Thinking mode goes at top level, NOT inside options
        if request.thinking is not None:
            payload["think"] = request.requires_thinking()

        headers = {"Content-Type": "application/json"}
        if target.credential.secret:
            headers["Authorization"] = f"Bearer {target.credential.secret}"

        return UpstreamRequest(
            url=f"{target.credential.base_url}/api/chat",
            headers=headers,
            body=payload,
        )

    def decode_chunk(self, chunk: bytes, ctx: DecodeContext) -> List[StreamEventBase]:
        """Translate Ollama NDJSON lines to canonical events.

        Ollama streams JSON objects line by line:
        {"model":"llama3.2","message":{"role":"assistant","content":"Hello"},"done":false}
        {"model":"llama3.2","message":{"role":"assistant","content":"!"},"done":true,
         "done_reason":"stop","prompt_eval_count":10,"eval_count":50}
        """
        events: List[StreamEventBase] = []

        for line in self._frames(chunk, ctx):
            if ctx.finished:
                break
            try:
                data = json.loads(line)
            except json.JSONDecodeError as e:
                raise UpstreamProtocolError(
                    f"Malformed line from ollama: {e}", provider=self.provider.value
                )
            if not isinstance(data, dict):
                raise UpstreamProtocolError(
                    "Unexpected line type from ollama", provider=self.provider.value
                )

            if data.get("error"):
                raise UpstreamStatusError(
                    str(data["error"]), status_code=502, provider=self.provider.value
                )

            message = self._object(data.get("message"), "message")
            content = self._string(message.get("content"), "message.content")
            if content:
                events.extend(ctx.text(content))

            for call in self._array(message.get("tool_calls"), "tool_calls"):
                call = self._object(call, "tool_calls[]")
                function = self._object(call.get("function"), "function")
                events.extend(
                    ctx.tool_call(
                        len(ctx.tool_blocks),
                        call.get("id"),
                        function.get("name", ""),
                        function.get("arguments") or {},
                    )
                )

            if data.get("done"):
                if data.get("prompt_eval_count") is not None:
                    ctx.input_tokens = data["prompt_eval_count"]
                stop_reason = _map_done_reason(data.get("done_reason"))
                if stop_reason == "end_turn" and ctx.tool_blocks:
                    stop_reason = "tool_use"
                events.extend(
                    ctx.finish(stop_reason=stop_reason, output_tokens=data.get("eval_count"))
                )

        return events

    @staticmethod
    def _translate_message(msg: CanonicalMessage) -> List[Dict[str, Any]]:
        """Translate canonical message to Ollama format."""
        if isinstance(msg.content, str):
            return [{"role": msg.role.value, "content": msg.content}]

        messages: List[Dict[str, Any]] = []
        text_parts: List[str] = []
        images: List[str] = []
        tool_calls: List[Dict[str, Any]] = []

        for block in msg.content:
            if isinstance(block, TextBlock):
                text_parts.append(block.text)
            elif isinstance(block, ImageBlock):
                if block.source.get("type") == "base64":
                    images.append(block.source.get("data", ""))
                else:
                    # Ollama doesn't fetch URLs
                    logger.warning("ollama_image_url_dropped")
            elif isinstance(block, ToolUseBlock):
                tool_calls.append({"function": {"name": block.name, "arguments": block.input}})
            elif isinstance(block, ToolResultBlock):
                messages.append({"role": "tool", "content": block.get_text_content()})

        if text_parts or images or tool_calls or not messages:
            result: Dict[str, Any] = {"role": msg.role.value, "content": "".join(text_parts)}
            if images:
                result["images"] = images
            if tool_calls and msg.role == MessageRole.ASSISTANT:
                result["tool_calls"] = tool_calls
            messages.append(result)

        return messages

    @staticmethod
    def _build_options(request: CanonicalRequest) -> Dict[str, Any]:
        """Build Ollama options dict from canonical request."""
        options: Dict[str, Any] = {}

        if request.temperature is not None:
            options["temperature"] = request.temperature
        if request.top_p is not None:
            options["top_p"] = request.top_p
        if request.top_k is not None:
            options["top_k"] = request.top_k
        if request.max_tokens is not None:
            options["num_predict"] = request.max_tokens
        if request.stop_sequences:
            options["stop"] = request.stop_sequences

        return options


def _map_done_reason(reason: Any) -> str:
    if reason == "length":
        return "max_tokens"
    return "end_turn"
