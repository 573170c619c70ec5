"""
sse_decoder.py: Server-Sent Events decoding for Dify streaming responses

Turns an httpx response body of "data: <json>\\n\\n" frames into decoded
events. Each event is appended to an output list and handed to an optional
callback the moment its frame completes; the full list is returned when the
stream ends.

Handles: frames split across TCP chunks, multi-byte UTF-8 split across
chunks, keep-alive / comment frames, guaranteed response release.
"""

import codecs
import json
import logging
from typing import Any, AsyncIterator, Callable, List, Optional

import httpx

from dify_errors import EmptyBodyError, MalformedFrameError, StreamReadError

logger = logging.getLogger("dify.sse_decoder")

# Frame delimiter (blank line)
SPLIT_MARK = "\n\n"

DATA_PREFIX = "data:"

# Returned by parse_sse_chunk for frames that carry no payload. Distinct
# from None, which is what a "data: null" frame decodes to.
NOT_DATA = object()

ChunkCallback = Callable[[Any], None]


def parse_sse_chunk(chunk_data: str) -> Any:
    """Decode one delimiter-terminated frame.

    Returns the JSON value after the "data:" prefix, or NOT_DATA when the
    frame is not a data frame (": comment", "event: ping", blank).
    Raises MalformedFrameError if the payload is not valid JSON.
    """
    text = chunk_data.strip()
    if not text.startswith(DATA_PREFIX):
        return NOT_DATA

    payload = text[len(DATA_PREFIX):]
    if payload.startswith(" "):
        payload = payload[1:]  # Strip single leading space

    try:
        return json.loads(payload)
    except json.JSONDecodeError as e:
        logger.error("Failed to parse chunk: %r", chunk_data[:200])
        raise MalformedFrameError(chunk_data) from e


def process_sse_buffer(
    buffer: str,
    chunks: List[Any],
    on_chunk: Optional[ChunkCallback] = None,
) -> str:
    """Extract every complete frame from buffer.

    Decoded events are appended to chunks, then passed to on_chunk before
    the next frame is looked at. Returns the unterminated remainder.
    """
    remaining = buffer

    while True:
        chunk_end = remaining.find(SPLIT_MARK)
        if chunk_end == -1:
            break

        frame_end = chunk_end + len(SPLIT_MARK)
        chunk_data = remaining[:frame_end]
        remaining = remaining[frame_end:]

        event = parse_sse_chunk(chunk_data)
        if event is NOT_DATA:
            continue

        chunks.append(event)
        if on_chunk is not None:
            on_chunk(event)

    return remaining


async def handle_stream_response(
    response: httpx.Response,
    on_chunk: Optional[ChunkCallback] = None,
) -> List[Any]:
    """Drain a streaming response into a list of decoded events.

    on_chunk, if given, sees every event in order as soon as its frame is
    complete. On MalformedFrameError or StreamReadError the callback may
    already have seen a prefix of the events, but no list is returned.
    The response is closed on every exit path.
    """
    if not isinstance(getattr(response, "stream", None), httpx.AsyncByteStream):
        raise EmptyBodyError("Response body is empty")

    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    chunks: List[Any] = []
    buffer = ""

    try:
        reader = response.aiter_bytes()
        while True:
            value = await _read_next(reader)
            if value is None:
                # Process any remaining data in buffer
                buffer += decoder.decode(b"", final=True)
                buffer = process_sse_buffer(buffer, chunks, on_chunk)
                break

            buffer += decoder.decode(value)
            buffer = process_sse_buffer(buffer, chunks, on_chunk)
    finally:
        await response.aclose()

    if buffer.strip():
        logger.debug("Dropping %d chars of unterminated trailing frame", len(buffer))

    logger.debug("Stream complete: %d events", len(chunks))
    return chunks


async def _read_next(reader: AsyncIterator[bytes]) -> Optional[bytes]:
    """One read from the body. None means end of stream."""
    try:
        return await reader.__anext__()
    except StopAsyncIteration:
        return None
    except (httpx.HTTPError, httpx.StreamError, OSError) as e:
        raise StreamReadError(f"Stream read failed: {e}") from e
