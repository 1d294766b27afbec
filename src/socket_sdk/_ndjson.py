"""Incremental newline-delimited JSON decoder."""
from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator
from dataclasses import dataclass
from typing import Any, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NdjsonLineError:
    """Inline marker for a line that was not valid JSON.

    Emitted in place of the value so the rest of the stream keeps flowing.
    """

    line_number: int
    line: str
    message: str


@dataclass(frozen=True)
class NdjsonStreamError:
    """Final item of a stream whose connection dropped before the end."""

    message: str
    cause: BaseException | None = None


NdjsonItem = Union[Any, NdjsonLineError, NdjsonStreamError]


class NdjsonDecoder:
    """Splits a chunked text or byte stream into parsed JSON values.

    One decoder serves exactly one stream.  ``buffer`` only ever holds the
    start of a line whose terminating newline has not arrived yet.
    """

    def __init__(self) -> None:
        self.buffer = ""
        self._line_number = 0
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._finished = False

    def feed(self, chunk: str | bytes) -> list[NdjsonItem]:
        """Consume *chunk* and return the values for every line it completed."""
        if self._finished:
            raise RuntimeError("NdjsonDecoder.feed() called after finish()")
        text = self._utf8.decode(chunk) if isinstance(chunk, bytes) else chunk
        if not text:
            return []
        pieces = (self.buffer + text).split("\n")
        self.buffer = pieces.pop()
        return [item for item in map(self._parse_line, pieces) if item is not _SKIP]

    def finish(self) -> list[NdjsonItem]:
        """Flush the trailing unterminated line, if any."""
        if self._finished:
            return []
        self._finished = True
        tail = self.buffer + self._utf8.decode(b"", final=True)
        self.buffer = ""
        item = self._parse_line(tail)
        return [] if item is _SKIP else [item]

    def _parse_line(self, line: str) -> Any:
        self._line_number += 1
        stripped = line.strip()
        if not stripped:
            return _SKIP
        try:
            return json.loads(stripped)
        except (ValueError, RecursionError) as exc:
            logger.debug("NDJSON line %d is not valid JSON: %s", self._line_number, exc)
            return NdjsonLineError(
                line_number=self._line_number,
                line=stripped,
                message=str(exc),
            )


# Sentinel for blank lines; distinct from a JSON ``null``
_SKIP = object()


async def decode_ndjson(chunks: AsyncIterable[str | bytes]) -> AsyncIterator[NdjsonItem]:
    """Yield parsed values from an async chunk stream as lines complete."""
    decoder = NdjsonDecoder()
    async for chunk in chunks:
        for item in decoder.feed(chunk):
            yield item
    for item in decoder.finish():
        yield item


def iter_ndjson(chunks: Iterable[str | bytes]) -> Iterator[NdjsonItem]:
    """Synchronous counterpart of :func:`decode_ndjson`."""
    decoder = NdjsonDecoder()
    for chunk in chunks:
        yield from decoder.feed(chunk)
    yield from decoder.finish()
