############################################################
#
# switchyard - Messages API Translation Gateway
#
# gemini_out.py: Canonical schema to Gemini generateContent translator
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Canonical schema to Gemini ``streamGenerateContent`` translator."""

import json
from typing import Any, Dict, List, Optional

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

# JSON-schema keywords outside the OpenAPI subset Gemini accepts
UNSUPPORTED_SCHEMA_KEYS = frozenset(
    {
        "$schema",
        "$id",
        "$ref",
        "$defs",
        "definitions",
        "additionalProperties",
        "default",
        "examples",
        "const",
        "exclusiveMinimum",
        "exclusiveMaximum",
        "patternProperties",
        "propertyNames",
        "unevaluatedProperties",
    }
)

# Gemini only understands these string formats
SUPPORTED_STRING_FORMATS = frozenset({"enum", "date-time"})

FINISH_REASONS = {
    "STOP": "end_turn",
    "MAX_TOKENS": "max_tokens",
    "SAFETY": "refusal",
    "RECITATION": "refusal",
    "BLOCKLIST": "refusal",
    "PROHIBITED_CONTENT": "refusal",
    "SPII": "refusal",
}


class GeminiTranslator(Translator):
    """Translate canonical requests to Gemini and back."""

    provider = Provider.GEMINI
    framing = "sse"

    def encode_request(self, request: CanonicalRequest, target: UpstreamTarget) -> UpstreamRequest:
        """Translate canonical request to a Gemini GenerateContentRequest.

        Gemini has no tool-call ids; ``functionResponse`` parts are matched by
        name, recovered from the ``tool_use`` block each result refers to.
        """
        tool_names: Dict[str, str] = {}
        contents: List[Dict[str, Any]] = []
        for msg in request.messages:
            content = self._translate_message(msg, tool_names)
            if content is not None:
                contents.append(content)

        payload: Dict[str, Any] = {"contents": contents}

        system = request.get_system_prompt()
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}

        if request.tools:
            payload["tools"] = [
                {
                    "functionDeclarations": [
                        {
                            "name": tool.name,
                            "description": tool.description or "",
                            "parameters": clean_schema(tool.input_schema),
                        }
                        for tool in request.tools
                    ]
                }
            ]
            tool_config = self._translate_tool_choice(request.tool_choice)
            if tool_config:
                payload["toolConfig"] = tool_config

        generation_config: Dict[str, Any] = {}
        if request.max_tokens is not None:
            generation_config["maxOutputTokens"] = request.max_tokens
        if request.temperature is not None:
            generation_config["temperature"] = request.temperature
        if request.top_p is not None:
            generation_config["topP"] = request.top_p
        if request.top_k is not None:
            generation_config["topK"] = request.top_k
        if request.stop_sequences:
            generation_config["stopSequences"] = request.stop_sequences
        if generation_config:
            payload["generationConfig"] = generation_config

        return UpstreamRequest(
            url=f"{target.credential.base_url}/models/{target.model}:streamGenerateContent?alt=sse",
            headers={
                "Content-Type": "application/json",
                "x-goog-api-key": target.credential.secret or "",
            },
            body=payload,
        )

    def decode_chunk(self, chunk: bytes, ctx: DecodeContext) -> List[StreamEventBase]:
        """Translate Gemini SSE chunks to canonical events.

        Each data line is a full GenerateContentResponse:
        data: {"candidates":[{"content":{"role":"model","parts":[{"text":"Hi"}]}}]}
        data: {"candidates":[{"content":{...},"finishReason":"STOP"}],"usageMetadata":{...}}

        The stream has no terminal sentinel; it simply closes, and the relay
        synthesizes message_stop from the recorded stop reason.
        """
        events: List[StreamEventBase] = []

        for frame in self._frames(chunk, ctx):
            if ctx.finished:
                break
            try:
                data = frame.json()
            except json.JSONDecodeError as e:
                raise UpstreamProtocolError(
                    f"Malformed chunk from gemini: {e}", provider=self.provider.value
                )
            if not isinstance(data, dict):
                raise UpstreamProtocolError(
                    "Unexpected chunk type from gemini", provider=self.provider.value
                )

            if data.get("error"):
                error = data["error"]
                code = error.get("code") if isinstance(error, dict) else None
                raise UpstreamStatusError(
                    error.get("message", "gemini error") if isinstance(error, dict) else str(error),
                    status_code=code if isinstance(code, int) and code >= 400 else 502,
                    provider=self.provider.value,
                )

            candidates = self._array(data.get("candidates"), "candidates")
            if candidates:
                events.extend(self._decode_candidate(self._object(candidates[0], "candidates[0]"), ctx))
            elif self._object(data.get("promptFeedback"), "promptFeedback").get("blockReason"):
                ctx.stop_reason = "refusal"

            # Reported counts replace the running estimate
            usage = self._object(data.get("usageMetadata"), "usageMetadata")
            if usage.get("promptTokenCount") is not None:
                ctx.input_tokens = usage["promptTokenCount"]
            if usage.get("candidatesTokenCount") is not None:
                ctx.output_tokens = usage["candidatesTokenCount"]

        return events

    def _decode_candidate(self, candidate: Dict[str, Any], ctx: DecodeContext) -> List[StreamEventBase]:
        events: List[StreamEventBase] = []
        content = self._object(candidate.get("content"), "content")
        for part in self._array(content.get("parts"), "parts"):
            part = self._object(part, "parts[]")
            if part.get("thought"):
                continue
            if "text" in part:
                events.extend(ctx.text(self._string(part["text"], "text")))
            elif "functionCall" in part:
                call = self._object(part["functionCall"], "functionCall")
                events.extend(
                    ctx.tool_call(
                        len(ctx.tool_blocks),
                        call.get("id"),
                        call.get("name", ""),
                        call.get("args") or {},
                    )
                )

        finish_reason = candidate.get("finishReason")
        if finish_reason:
            stop_reason = FINISH_REASONS.get(finish_reason, "end_turn")
            if stop_reason == "end_turn" and ctx.tool_blocks:
                stop_reason = "tool_use"
            ctx.stop_reason = stop_reason
            events.extend(ctx.close_block())

        return events

    @staticmethod
    def _translate_message(
        msg: CanonicalMessage, tool_names: Dict[str, str]
    ) -> Optional[Dict[str, Any]]:
        role = "model" if msg.role == MessageRole.ASSISTANT else "user"

        if isinstance(msg.content, str):
            if not msg.content:
                return None
            return {"role": role, "parts": [{"text": msg.content}]}

        parts: List[Dict[str, Any]] = []
        for block in msg.content:
            if isinstance(block, TextBlock):
                if block.text:
                    parts.append({"text": block.text})
            elif isinstance(block, ImageBlock):
                image = _image_part(block)
                if image:
                    parts.append(image)
            elif isinstance(block, ToolUseBlock):
                tool_names[block.id] = block.name
                parts.append({"functionCall": {"name": block.name, "args": block.input}})
            elif isinstance(block, ToolResultBlock):
                key = "error" if block.is_error else "content"
                parts.append(
                    {
                        "functionResponse": {
                            "name": tool_names.get(block.tool_use_id, block.tool_use_id),
                            "response": {key: block.get_text_content()},
                        }
                    }
                )

        if not parts:
            return None
        return {"role": role, "parts": parts}

    @staticmethod
    def _translate_tool_choice(tool_choice: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if not tool_choice:
            return None
        tc_type = tool_choice.get("type")
        if tc_type == "auto":
            return {"functionCallingConfig": {"mode": "AUTO"}}
        if tc_type == "any":
            return {"functionCallingConfig": {"mode": "ANY"}}
        if tc_type == "none":
            return {"functionCallingConfig": {"mode": "NONE"}}
        if tc_type == "tool":
            return {
                "functionCallingConfig": {
                    "mode": "ANY",
                    "allowedFunctionNames": [tool_choice.get("name", "")],
                }
            }
        return None


def clean_schema(schema: Any) -> Any:
    """Strip JSON-schema keywords Gemini rejects, recursively."""
    if isinstance(schema, list):
        return [clean_schema(item) for item in schema]
    if not isinstance(schema, dict):
        return schema

    cleaned: Dict[str, Any] = {}
    for key, value in schema.items():
        if key in UNSUPPORTED_SCHEMA_KEYS:
            continue
        if key == "format" and value not in SUPPORTED_STRING_FORMATS:
            continue
        if key == "properties" and isinstance(value, dict):
            # Keys here are property names, not keywords
            cleaned[key] = {name: clean_schema(sub) for name, sub in value.items()}
        else:
            cleaned[key] = clean_schema(value)
    return cleaned


def _image_part(block: ImageBlock) -> Optional[Dict[str, Any]]:
    source = block.source
    if source.get("type") == "base64":
        return {
            "inlineData": {
                "mimeType": source.get("media_type", "image/png"),
                "data": source.get("data", ""),
            }
        }
    if source.get("type") == "url":
        return {"fileData": {"fileUri": source.get("url", ""), "mimeType": "image/jpeg"}}
    return None
