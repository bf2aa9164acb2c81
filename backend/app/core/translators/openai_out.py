############################################################
#
# switchyard - Messages API Translation Gateway
#
# openai_out.py: Canonical schema to OpenAI Chat Completions translator
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Canonical schema to OpenAI Chat Completions translator.

Also serves OpenRouter, which speaks the same dialect with its own endpoint,
attribution headers and a few extra sampling parameters.
"""

import json
from typing import Any, Dict, List, Optional, Union

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


class OpenAITranslator(Translator):
    """Translate canonical requests to OpenAI Chat Completions and back."""

    provider = Provider.OPENAI
    framing = "sse"

    # o-series models reject max_tokens
    max_tokens_field = "max_completion_tokens"
    supports_top_k = False

    def encode_request(self, request: CanonicalRequest, target: UpstreamTarget) -> UpstreamRequest:
        """Translate canonical request to a streaming /chat/completions body.

        Args:
            request: Canonical request
            target: Resolved model and credential

        Returns:
            UpstreamRequest for the chat completions endpoint
        """
        messages: List[Dict[str, Any]] = []

        # System prompt is top-level in the Messages API, first message here
        system = request.get_system_prompt()
        if system:
            messages.append({"role": "system", "content": system})

        for msg in request.messages:
            messages.extend(self._translate_message(msg))

        payload: Dict[str, Any] = {
            "model": target.model,
            "messages": messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }

        if request.max_tokens is not None:
            payload[self.max_tokens_field] = request.max_tokens
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.top_p is not None:
            payload["top_p"] = request.top_p
        if request.top_k is not None and self.supports_top_k:
            payload["top_k"] = request.top_k
        if request.stop_sequences:
            payload["stop"] = request.stop_sequences
        if request.metadata and request.metadata.get("user_id"):
            payload["user"] = request.metadata["user_id"]

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
            tool_choice = self._translate_tool_choice(request.tool_choice)
            if tool_choice is not None:
                payload["tool_choice"] = tool_choice
            if request.tool_choice and request.tool_choice.get("disable_parallel_tool_use"):
                payload["parallel_tool_calls"] = False

        return UpstreamRequest(
            url=f"{target.credential.base_url}/chat/completions",
            headers=self._headers(target),
            body=payload,
        )

    def decode_chunk(self, chunk: bytes, ctx: DecodeContext) -> List[StreamEventBase]:
        """Translate OpenAI SSE chunks to canonical events.

        OpenAI streams Server-Sent Events:
        data: {"choices":[{"index":0,"delta":{"content":"Hi"},"finish_reason":null}]}
        data: {"choices":[{"index":0,"delta":{},"finish_reason":"stop"}]}
        data: {"choices":[],"usage":{"prompt_tokens":9,"completion_tokens":2}}
        data: [DONE]
        """
        events: List[StreamEventBase] = []

        for frame in self._frames(chunk, ctx):
            if ctx.finished:
                break

            if frame.data.strip() == "[DONE]":
                events.extend(ctx.finish())
                break

            try:
                data = frame.json()
            except json.JSONDecodeError as e:
                raise UpstreamProtocolError(
                    f"Malformed chunk from {self.provider.value}: {e}",
                    provider=self.provider.value,
                )
            if not isinstance(data, dict):
                raise UpstreamProtocolError(
                    f"Unexpected chunk type from {self.provider.value}",
                    provider=self.provider.value,
                )

            # Mid-stream failures arrive as {"error": {...}} on the data line
            if data.get("error"):
                raise self._stream_error(data["error"])

            usage = self._object(data.get("usage"), "usage")
            if usage.get("prompt_tokens") is not None:
                ctx.input_tokens = usage["prompt_tokens"]
            if usage.get("completion_tokens") is not None:
                ctx.output_tokens = usage["completion_tokens"]

            choices = self._array(data.get("choices"), "choices")
            if not choices:
                continue

            choice = self._object(choices[0], "choices[0]")
            delta = self._object(choice.get("delta"), "delta")

            content = self._string(delta.get("content"), "delta.content")
            if content:
                events.extend(ctx.text(content))

            for tc_delta in self._array(delta.get("tool_calls"), "tool_calls"):
                tc_delta = self._object(tc_delta, "tool_calls[]")
                tc_index = tc_delta.get("index", 0)
                tc_func = self._object(tc_delta.get("function"), "function")
                if tc_index not in ctx.tool_blocks:
                    events.extend(
                        ctx.start_tool(tc_index, tc_delta.get("id"), tc_func.get("name") or "")
                    )
                arguments = self._string(tc_func.get("arguments"), "function.arguments")
                events.extend(ctx.tool_arguments(tc_index, arguments))

            finish_reason = choice.get("finish_reason")
            if finish_reason:
                # Usage chunk and [DONE] still follow; only close the block here
                ctx.stop_reason = map_finish_reason(finish_reason)
                if ctx.stop_reason == "end_turn" and ctx.tool_blocks:
                    ctx.stop_reason = "tool_use"
                events.extend(ctx.close_block())

        return events

    def _headers(self, target: UpstreamTarget) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "Authorization": f"Bearer {target.credential.secret}",
        }

    def _stream_error(self, error: Any) -> UpstreamStatusError:
        if isinstance(error, dict):
            message = error.get("message") or json.dumps(error)
            code = error.get("code")
        else:
            message, code = str(error), None
        status_code = code if isinstance(code, int) and 400 <= code < 600 else 502
        return UpstreamStatusError(message, status_code=status_code, provider=self.provider.value)

    @staticmethod
    def _translate_message(msg: CanonicalMessage) -> List[Dict[str, Any]]:
        """Translate one canonical message; tool results expand to tool messages."""
        if isinstance(msg.content, str):
            return [{"role": msg.role.value, "content": msg.content}]

        if msg.role == MessageRole.ASSISTANT:
            text_parts: List[str] = []
            tool_calls: List[Dict[str, Any]] = []
            for block in msg.content:
                if isinstance(block, TextBlock):
                    text_parts.append(block.text)
                elif isinstance(block, ToolUseBlock):
                    tool_calls.append(
                        {
                            "id": block.id,
                            "type": "function",
                            "function": {
                                "name": block.name,
                                "arguments": json.dumps(block.input),
                            },
                        }
                    )
                # thinking and opaque blocks have no Chat Completions equivalent

            result: Dict[str, Any] = {
                "role": "assistant",
                "content": "".join(text_parts) if text_parts else None,
            }
            if tool_calls:
                result["tool_calls"] = tool_calls
            elif result["content"] is None:
                result["content"] = ""
            return [result]

        # User message: tool results must directly follow the assistant turn
        messages: List[Dict[str, Any]] = []
        parts: List[Dict[str, Any]] = []
        for block in msg.content:
            if isinstance(block, ToolResultBlock):
                content = block.get_text_content()
                if block.is_error:
                    content = f"Error: {content}"
                messages.append(
                    {"role": "tool", "tool_call_id": block.tool_use_id, "content": content}
                )
            elif isinstance(block, TextBlock):
                parts.append({"type": "text", "text": block.text})
            elif isinstance(block, ImageBlock):
                image = _image_url(block)
                if image:
                    parts.append({"type": "image_url", "image_url": {"url": image}})

        if parts:
            messages.append({"role": "user", "content": _collapse_parts(parts)})
        elif not messages:
            messages.append({"role": "user", "content": ""})
        return messages

    @staticmethod
    def _translate_tool_choice(tool_choice: Optional[Dict[str, Any]]) -> Optional[Union[str, Dict[str, Any]]]:
        if not tool_choice:
            return None
        tc_type = tool_choice.get("type")
        if tc_type == "auto":
            return "auto"
        if tc_type == "any":
            return "required"
        if tc_type == "none":
            return "none"
        if tc_type == "tool":
            return {"type": "function", "function": {"name": tool_choice.get("name", "")}}
        return None


class OpenRouterTranslator(OpenAITranslator):
    """OpenRouter: OpenAI dialect plus attribution headers and top_k."""

    provider = Provider.OPENROUTER
    max_tokens_field = "max_tokens"
    supports_top_k = True

    def __init__(self, referer: Optional[str] = None, title: Optional[str] = None):
        self.referer = referer
        self.title = title

    def _headers(self, target: UpstreamTarget) -> Dict[str, str]:
        headers = super()._headers(target)
        if self.referer:
            headers["HTTP-Referer"] = self.referer
        if self.title:
            headers["X-Title"] = self.title
        return headers


def map_finish_reason(reason: str) -> str:
    """Map OpenAI finish_reason to Messages API stop_reason."""
    mapping = {
        "stop": "end_turn",
        "length": "max_tokens",
        "tool_calls": "tool_use",
        "function_call": "tool_use",
        "content_filter": "refusal",
    }
    return mapping.get(reason, "end_turn")


def _image_url(block: ImageBlock) -> Optional[str]:
    source = block.source
    if source.get("type") == "base64":
        return f"data:{source.get('media_type', 'image/png')};base64,{source.get('data', '')}"
    if source.get("type") == "url":
        return source.get("url")
    return None


def _collapse_parts(parts: List[Dict[str, Any]]) -> Union[str, List[Dict[str, Any]]]:
    # Plain string content is accepted by every OpenAI-compatible server
    if all(p["type"] == "text" for p in parts):
        return "".join(p["text"] for p in parts)
    return parts
