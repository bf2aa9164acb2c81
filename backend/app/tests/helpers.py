############################################################
#
# switchyard - Messages API Translation Gateway
#
# helpers.py: Fake upstreams and wire encoders shared by tests
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Fake upstreams and wire encoders shared by tests."""

import json
from typing import Any, Dict, List, Optional

import httpx

from backend.app.core.translators.framing import parse_sse_text
from backend.app.settings import Settings

# Every credential field, so host environment variables never leak in
_NO_CREDENTIALS: Dict[str, Any] = {
    "anthropic_api_key": None,
    "anthropic_upstream_url": None,
    "glm_api_key": None,
    "glm_upstream_url": None,
    "openai_api_key": None,
    "openrouter_api_key": None,
    "gemini_api_key": None,
    "ollama_api_key": None,
    "ollama_base_url": None,
}


def make_settings(**overrides: Any) -> Settings:
    values = dict(_NO_CREDENTIALS)
    values.update(
        openai_base_url="https://openai.test/v1",
        openrouter_base_url="https://openrouter.test/api/v1",
        gemini_base_url="https://gemini.test/v1beta",
        log_format="console",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


class RecordingStream(httpx.AsyncByteStream):
    """Upstream body that yields fixed chunks and records being closed."""

    def __init__(self, chunks: List[bytes]):
        self.chunks = chunks
        self.yielded = 0
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            self.yielded += 1
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


class FakeUpstream:
    """httpx.MockTransport handler serving one canned response per request."""

    def __init__(
        self,
        chunks: Optional[List[bytes]] = None,
        status_code: int = 200,
        content_type: str = "text/event-stream",
        error: Optional[Exception] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.chunks = chunks or []
        self.headers = headers or {}
        self.status_code = status_code
        self.content_type = content_type
        self.error = error
        self.requests: List[httpx.Request] = []
        self.streams: List[RecordingStream] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        stream = RecordingStream(list(self.chunks))
        self.streams.append(stream)
        return httpx.Response(
            self.status_code,
            headers={"content-type": self.content_type, **self.headers},
            stream=stream,
        )

    @property
    def last_json(self) -> Dict[str, Any]:
        return json.loads(self.requests[-1].content)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport())


def sse(*payloads: Any, event_names: bool = False) -> List[bytes]:
    """Encode payloads as SSE ``data:`` frames, one chunk per frame."""
    frames = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        prefix = ""
        if event_names and isinstance(payload, dict):
            prefix = f"event: {payload['type']}\n"
        frames.append(f"{prefix}data: {data}\n\n".encode())
    return frames


def ndjson(*payloads: Dict[str, Any]) -> List[bytes]:
    return [json.dumps(p).encode() + b"\n" for p in payloads]


def sse_payloads(body: bytes) -> List[Dict[str, Any]]:
    """Decode a downstream SSE body into its JSON payloads."""
    return [frame.json() for frame in parse_sse_text(body.decode("utf-8"))]


async def collect_events(relay) -> List[Any]:
    """Drain a relay's canonical events."""
    events = []
    async for event in relay.events():
        events.append(event)
    return events
