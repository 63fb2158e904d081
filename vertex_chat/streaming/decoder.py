"""
Line-oriented event stream decoder with partial-frame buffering.

Bytes arrive in arbitrary chunks. The decoder turns them into complete
`data: ` frames, carrying unterminated text (and split multi-byte characters)
over to the next chunk. Malformed input never raises; it is counted and
dropped.
"""

from __future__ import annotations

import codecs
from collections.abc import AsyncGenerator, AsyncIterable

from pydantic import ValidationError

from .models import (
    DONE_SENTINEL,
    EVENT_PREFIX,
    DecoderStats,
    Frame,
    FrameKind,
    FramePayload,
)


class FrameDecoder:
    """Incremental decoder for one response body."""

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._done = False
        self.stats = DecoderStats()

    @property
    def done(self) -> bool:
        """True once the end-of-stream sentinel has been decoded."""
        return self._done

    @property
    def pending(self) -> str:
        """Text received but not yet terminated by a newline."""
        return self._buffer

    def feed(self, chunk: bytes) -> list[Frame]:
        """Decode one chunk and return the frames it completes."""
        if self._done or not chunk:
            return []
        self.stats.bytes_received += len(chunk)
        self._buffer += self._decoder.decode(chunk)
        return self._drain_lines()

    def finish(self) -> list[Frame]:
        """
        Signal the true end of the body.

        Only newline-terminated lines are frames, so whatever is left in the
        carry-over buffer is discarded.
        """
        frames: list[Frame] = []
        if not self._done:
            self._buffer += self._decoder.decode(b"", final=True)
            frames = self._drain_lines()
        self._buffer = ""
        self._decoder.reset()
        return frames

    def _drain_lines(self) -> list[Frame]:
        frames: list[Frame] = []
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            frame = self._parse_line(line)
            if frame is None:
                continue
            frames.append(frame)
            if frame.kind is FrameKind.DONE:
                self._done = True
                self._buffer = ""
                break
        return frames

    def _parse_line(self, line: str) -> Frame | None:
        self.stats.lines += 1
        line = line.removesuffix("\r")

        if not line.startswith(EVENT_PREFIX):
            self.stats.ignored_lines += 1
            return None

        self.stats.frames += 1
        payload = line[len(EVENT_PREFIX):]

        if payload == DONE_SENTINEL:
            return Frame(kind=FrameKind.DONE, payload=payload)

        return self._parse_payload(payload)

    def _parse_payload(self, payload: str) -> Frame:
        try:
            parsed = FramePayload.model_validate_json(payload)
        except ValidationError:
            self.stats.malformed += 1
            return Frame(kind=FrameKind.MALFORMED, payload=payload)

        if parsed.error:
            self.stats.errors += 1
            return Frame(kind=FrameKind.ERROR, payload=payload, text=parsed.error)
        if parsed.chunk:
            self.stats.deltas += 1
            return Frame(kind=FrameKind.DELTA, payload=payload, text=parsed.chunk)

        self.stats.malformed += 1
        return Frame(kind=FrameKind.MALFORMED, payload=payload)

    def get_stats(self) -> dict[str, int]:
        """Get decoding statistics for monitoring."""
        return self.stats.as_dict()

    def reset_stats(self) -> None:
        """Reset statistics counters."""
        self.stats = DecoderStats()


async def aiter_frames(
    chunks: AsyncIterable[bytes],
    decoder: FrameDecoder | None = None,
) -> AsyncGenerator[Frame]:
    """
    Drive a decoder over an async byte iterator.

    Stops reading as soon as the sentinel has been decoded; bytes after it
    are never pulled from the transport.
    """
    decoder = decoder or FrameDecoder()
    async for chunk in chunks:
        for frame in decoder.feed(chunk):
            yield frame
        if decoder.done:
            return
    for frame in decoder.finish():
        yield frame
