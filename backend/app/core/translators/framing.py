############################################################
#
# switchyard - Messages API Translation Gateway
#
# framing.py: Incremental SSE and NDJSON frame decoders
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Incremental stream framing.

Upstream bodies arrive as arbitrary byte chunks: a chunk may hold several
frames, half a frame, or split a multi-byte UTF-8 character. The decoders here
buffer just enough to hand back complete frames in arrival order.

SSE (OpenAI, OpenRouter, Gemini, Anthropic):
    event: content_block_delta
    data: {"type": "content_block_delta", ...}
    <blank line>

NDJSON (Ollama):
    {"model":"llama3.2","message":{"role":"assistant","content":"Hi"},"done":false}
"""

import codecs
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass
class SSEFrame:
    """One dispatched server-sent event."""
    event: Optional[str]
    data: str

    def json(self) -> Dict[str, Any]:
        return json.loads(self.data)


class SSEFrameDecoder:
    """Reassemble SSE frames from a byte stream."""

    def __init__(self):
        self._text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._event: Optional[str] = None
        self._data: List[str] = []

    def feed(self, chunk: bytes, final: bool = False) -> List[SSEFrame]:
        """Consume bytes, return every frame completed by them.

        With ``final`` the trailing partial frame (no blank-line terminator)
        is dispatched as well.
        """
        self._buffer += self._text.decode(chunk, final=final)
        frames: List[SSEFrame] = []

        while True:
            line, sep, rest = self._split_line(self._buffer)
            if sep is None:
                break
            self._buffer = rest
            frame = self._consume_line(line)
            if frame is not None:
                frames.append(frame)

        if final:
            if self._buffer.rstrip("\r"):
                self._consume_line(self._buffer.rstrip("\r"))
                self._buffer = ""
            frame = self._dispatch()
            if frame is not None:
                frames.append(frame)

        return frames

    @staticmethod
    def _split_line(buffer: str):
        # A lone trailing "\r" may be the first half of "\r\n"; wait for more
        for i, ch in enumerate(buffer):
            if ch == "\n":
                return buffer[:i], "\n", buffer[i + 1:]
            if ch == "\r":
                if i + 1 == len(buffer):
                    return buffer, None, ""
                if buffer[i + 1] == "\n":
                    return buffer[:i], "\r\n", buffer[i + 2:]
                return buffer[:i], "\r", buffer[i + 1:]
        return buffer, None, ""

    def _consume_line(self, line: str) -> Optional[SSEFrame]:
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            # Comment / keep-alive (": OPENROUTER PROCESSING")
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        # id / retry are irrelevant for a single-response stream
        return None

    def _dispatch(self) -> Optional[SSEFrame]:
        if not self._data:
            self._event = None
            return None
        frame = SSEFrame(event=self._event, data="\n".join(self._data))
        self._event = None
        self._data = []
        return frame


class NDJSONDecoder:
    """Split a byte stream into complete JSON lines."""

    def __init__(self):
        self._text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes, final: bool = False) -> List[str]:
        self._buffer += self._text.decode(chunk, final=final)
        lines: List[str] = []

        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            line = line.strip()
            if line:
                lines.append(line)

        if final:
            tail = self._buffer.strip()
            self._buffer = ""
            if tail:
                lines.append(tail)

        return lines


def parse_sse_text(text: str) -> List[SSEFrame]:
    """Parse a complete SSE document into frames."""
    return SSEFrameDecoder().feed(text.encode("utf-8"), final=True)
