############################################################
#
# switchyard - Messages API Translation Gateway
#
# passthrough.py: Native Messages API passthrough (Anthropic, GLM)
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Native passthrough for upstreams that already speak the Messages API.

Requests go out as received (only ``model`` is replaced by the resolved name
and streaming is always requested). Upstream events are validated and
forwarded unchanged; the decode context only tracks block and terminal state
so the relay can still guarantee a well-formed terminus.
"""

import json
from typing import Dict, List

from pydantic import ValidationError

from backend.app.core.canonical_schemas import (
    STREAM_EVENT_TYPES,
    CanonicalRequest,
    Provider,
    StreamEventBase,
    parse_stream_event,
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

# Inbound headers worth forwarding to a native upstream
FORWARDED_HEADERS = ("anthropic-beta",)


class PassthroughTranslator(Translator):
    """Identity translator for Messages API compatible upstreams."""

    framing = "sse"

    def __init__(self, provider: Provider, auth_scheme: str = "x-api-key"):
        self.provider = provider
        self.auth_scheme = auth_scheme

    def encode_request(self, request: CanonicalRequest, target: UpstreamTarget) -> UpstreamRequest:
        body = request.to_wire()
        body["model"] = target.model
        body["stream"] = True

        headers: Dict[str, str] = {
            "Content-Type": "application/json",
            "anthropic-version": target.anthropic_version,
        }
        if self.auth_scheme == "bearer":
            headers["Authorization"] = f"Bearer {target.credential.secret}"
        else:
            headers["x-api-key"] = target.credential.secret or ""

        for name, value in target.forward_headers.items():
            if name.lower() in FORWARDED_HEADERS:
                headers[name.lower()] = value

        return UpstreamRequest(
            url=f"{target.credential.base_url}/v1/messages",
            headers=headers,
            body=body,
        )

    def decode_chunk(self, chunk: bytes, ctx: DecodeContext) -> List[StreamEventBase]:
        events: List[StreamEventBase] = []

        for frame in self._frames(chunk, ctx):
            if ctx.finished:
                break
            try:
                data = frame.json()
            except json.JSONDecodeError as e:
                raise UpstreamProtocolError(
                    f"Malformed event data from {self.provider.value}: {e}",
                    provider=self.provider.value,
                )

            event_type = data.get("type") if isinstance(data, dict) else None
            if event_type not in STREAM_EVENT_TYPES:
                # Newer event kinds the canonical set does not model
                logger.debug("passthrough_event_skipped", event=frame.event, type=event_type)
                continue

            if event_type == "error":
                error = data.get("error")
                if not isinstance(error, dict):
                    # e.g. {"type": "error", "error": "overloaded"}
                    error = {"message": str(error) if error else "upstream error"}
                raise UpstreamStatusError(
                    error.get("message", "upstream error"),
                    status_code=_status_for_error_type(error.get("type")),
                    provider=self.provider.value,
                )

            try:
                event = parse_stream_event(data)
            except ValidationError as e:
                raise UpstreamProtocolError(
                    f"Unexpected {event_type} payload from {self.provider.value}: {e.error_count()} errors",
                    provider=self.provider.value,
                )

            ctx.track(event)
            events.append(event)

        return events


_ERROR_TYPE_STATUS = {
    "invalid_request_error": 400,
    "authentication_error": 401,
    "billing_error": 402,
    "permission_error": 403,
    "not_found_error": 404,
    "request_too_large": 413,
    "rate_limit_error": 429,
    "overloaded_error": 529,
}


def _status_for_error_type(error_type) -> int:
    return _ERROR_TYPE_STATUS.get(error_type, 500)
