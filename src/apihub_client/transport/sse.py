"""Server-sent event decoding for streamed gateway responses."""
from __future__ import annotations
import codecs
import json
import logging
from typing import Any, AsyncIterator

import httpx

from apihub_client.transport.http import body_read_error

LOGGER = logging.getLogger("apihub.sse")

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


class SSEDecoder:
    """
    Incremental decoder: bytes in, parsed `data:` payloads out.

    Partial lines are buffered until their newline arrives, so the events
    produced never depend on where the byte stream was split.
    """

    def __init__(self) -> None:
        self._text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.finished = False

    def feed(self, chunk: bytes) -> list[Any]:
        """
        Decode one chunk and return the events completed by it.

        After `[DONE]` is seen the decoder is finished; the rest of the chunk
        and any later chunks are ignored.
        """
        if self.finished:
            return []
        self._buffer += self._text.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")

        events: list[Any] = []
        for line in lines:
            line = line.strip()
            if not line.startswith(DATA_PREFIX):
                continue
            payload = line[len(DATA_PREFIX):]
            if payload == DONE_SENTINEL:
                self.finished = True
                self._buffer = ""
                break
            try:
                events.append(json.loads(payload))
            except json.JSONDecodeError:
                LOGGER.debug("Skipping non-JSON data line: %.80s", payload)
        return events

    def close(self) -> None:
        """Mark natural end-of-stream. An unterminated trailing line is dropped."""
        if self._buffer.strip():
            LOGGER.debug("Dropping unterminated trailing line at end of stream")
        self._buffer = ""
        self.finished = True


def decode_all(chunks: list[bytes]) -> list[Any]:
    """Decode a complete, already-buffered byte sequence."""
    decoder = SSEDecoder()
    events: list[Any] = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
        if decoder.finished:
            break
    decoder.close()
    return events


class EventStream:
    """
    Lazy, single-pass async iterator of decoded stream events.

    Wraps a byte iterator (normally `response.aiter_bytes()`) and, when given,
    closes the owning response once the stream ends, hits `[DONE]`, fails, or
    is closed early by the consumer. A read failure mid-stream surfaces as
    TransportError. Not restartable.
    """

    def __init__(self, chunks: AsyncIterator[bytes], response: httpx.Response | None = None) -> None:
        self._chunks = chunks
        self._response = response
        self._decoder = SSEDecoder()
        self._pending: list[Any] = []
        self._closed = False

    @classmethod
    def from_response(cls, response: httpx.Response) -> "EventStream":
        return cls(response.aiter_bytes(), response)

    def __aiter__(self) -> "EventStream":
        return self

    async def __anext__(self) -> Any:
        while not self._pending:
            if self._decoder.finished or self._closed:
                await self.aclose()
                raise StopAsyncIteration
            try:
                chunk = await self._chunks.__anext__()
            except StopAsyncIteration:
                self._decoder.close()
                continue
            except httpx.HTTPError as e:
                status_code = self._response.status_code if self._response is not None else None
                await self.aclose()
                raise body_read_error(e, status_code) from e
            self._pending.extend(self._decoder.feed(chunk))
        return self._pending.pop(0)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._pending.clear()
        if self._response is not None:
            await self._response.aclose()

    async def __aenter__(self) -> "EventStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.aclose()


def extract_text(event: Any) -> str:
    """Pull display text out of the common streaming chunk shapes, or ''."""
    if not isinstance(event, dict):
        return ""
    choices = event.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        delta = choices[0].get("delta") or {}
        if isinstance(delta, dict) and isinstance(delta.get("content"), str):
            return delta["content"]
    delta = event.get("delta")
    if isinstance(delta, dict) and isinstance(delta.get("text"), str):
        return delta["text"]
    content = event.get("content")
    if isinstance(content, list) and content and isinstance(content[0], dict):
        text = content[0].get("text")
        if isinstance(text, str):
            return text
    return ""
