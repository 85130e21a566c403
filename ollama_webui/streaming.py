"""
Incremental decoding of Ollama's newline-delimited JSON streams.

Ollama answers a streaming ``/api/generate`` call with one JSON object per
line, for example ``{"response": "Hel", "done": false}``. The transport hands
us those bytes in arbitrary pieces, so a line (or a multi-byte character) can
be split across reads. The pieces here rebuild line boundaries, decode each
line, and push the text fragments downstream as soon as they are known:

    LineFramer      bytes -> complete, trimmed text lines
    decode_record   one line -> fragment text or None
    iter_fragments  chunks -> fragments, in arrival order
    relay           chunks -> sink.write(...) ... sink.close()
"""
from __future__ import annotations

import codecs
import json
import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol

import requests


logger = logging.getLogger("webui.stream")

FRAGMENT_FIELD = "response"
DONE_FIELD = "done"


class LineTooLongError(ValueError):
    """Raised when the pending partial line grows past the configured limit."""

    def __init__(self, length: int, limit: int) -> None:
        super().__init__(f"Line too long: {length} characters pending, limit is {limit}.")
        self.length = length
        self.limit = limit


class LineFramer:
    """
    Turns successive byte chunks into complete text lines.

    Bytes go through a stateful UTF-8 decoder so a character split across two
    chunks still decodes. Whatever follows the last newline stays in the
    buffer until more data arrives or :meth:`finish` is called.
    """

    def __init__(self, max_line_length: Optional[int] = None, encoding: str = "utf-8") -> None:
        self.max_line_length = max_line_length
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        # Pieces of the unfinished line; none of them contains a newline.
        self._parts: List[str] = []
        self._pending_length = 0

    @property
    def pending(self) -> str:
        return "".join(self._parts)

    def feed(self, chunk: bytes) -> List[str]:
        lines = self._take_lines(self._decoder.decode(chunk))
        if self.max_line_length is not None and self._pending_length > self.max_line_length:
            raise LineTooLongError(self._pending_length, self.max_line_length)
        return lines

    def finish(self) -> List[str]:
        lines = self._take_lines(self._decoder.decode(b"", final=True))
        tail = self.pending.strip()
        self._parts = []
        self._pending_length = 0
        if tail:
            lines.append(tail)
        return lines

    def _take_lines(self, text: str) -> List[str]:
        # Only the newly decoded text is searched for newlines.
        pieces = text.split("\n")
        if len(pieces) == 1:
            if text:
                self._parts.append(text)
                self._pending_length += len(text)
            return []
        self._parts.append(pieces[0])
        candidates = ["".join(self._parts)] + pieces[1:-1]
        remainder = pieces[-1]
        self._parts = [remainder] if remainder else []
        self._pending_length = len(remainder)
        lines: List[str] = []
        for candidate in candidates:
            line = candidate.strip()
            if line:
                lines.append(line)
        return lines


def parse_record(line: str) -> Optional[Dict[str, Any]]:
    try:
        record = json.loads(line)
    except ValueError:
        return None
    if not isinstance(record, dict):
        return None
    return record


def extract_fragment(record: Dict[str, Any], field: str = FRAGMENT_FIELD) -> Optional[str]:
    value = record.get(field)
    if isinstance(value, str):
        return value
    return None


def decode_record(line: str, field: str = FRAGMENT_FIELD) -> Optional[str]:
    """
    Parse one trimmed line and return its text fragment, if any.

    Malformed lines and records without a string fragment yield ``None``;
    they are never an error for the caller.
    """
    record = parse_record(line)
    if record is None:
        logger.debug("Skipping malformed stream line (%d chars).", len(line))
        return None
    return extract_fragment(record, field)


def iter_fragments(
    chunks: Iterable[bytes],
    *,
    max_line_length: Optional[int] = None,
    stop_on_done: bool = False,
    field: str = FRAGMENT_FIELD,
) -> Iterator[str]:
    """
    Yield text fragments from an upstream byte stream as they become complete.

    Each fragment is yielded before the next chunk is pulled. When the chunks
    run out, or the transport fails part way, the pending partial line is
    flushed and the generator ends without raising. With ``stop_on_done`` a
    record carrying ``"done": true`` ends the pulling once the data already
    received has been decoded.

    Closing the generator early stops pulling and skips the final flush.
    """
    framer = LineFramer(max_line_length=max_line_length)
    done = False
    try:
        for chunk in chunks:
            if not chunk:
                continue
            for line in framer.feed(chunk):
                record = parse_record(line)
                if record is None:
                    logger.debug("Skipping malformed stream line (%d chars).", len(line))
                    continue
                fragment = extract_fragment(record, field)
                if fragment is not None:
                    yield fragment
                if stop_on_done and record.get(DONE_FIELD) is True:
                    done = True
            if done:
                logger.debug("Upstream reported done, no further reads.")
                break
    except (requests.RequestException, OSError) as exc:
        logger.warning("Upstream stream ended abruptly: %s", exc)

    for line in framer.finish():
        fragment = decode_record(line, field)
        if fragment is not None:
            yield fragment


class FragmentSink(Protocol):
    def write(self, text: str) -> Any:
        ...

    def close(self) -> Any:
        ...


class TextStreamSink:
    """Writes fragments to a text stream and flushes after each one."""

    def __init__(self, stream: Any, trailer: str = "\n") -> None:
        self.stream = stream
        self.trailer = trailer
        self.closed = False

    def write(self, text: str) -> None:
        self.stream.write(text)
        self.stream.flush()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.trailer:
            self.stream.write(self.trailer)
        self.stream.flush()


def relay(
    chunks: Iterable[bytes],
    sink: FragmentSink,
    *,
    max_line_length: Optional[int] = None,
    stop_on_done: bool = False,
    field: str = FRAGMENT_FIELD,
) -> int:
    """
    Push every fragment of ``chunks`` to ``sink`` and close it exactly once.

    Returns the number of fragments written. ``LineTooLongError`` and errors
    raised by the sink itself propagate after the sink has been closed.
    """
    written = 0
    fragments = iter_fragments(
        chunks,
        max_line_length=max_line_length,
        stop_on_done=stop_on_done,
        field=field,
    )
    try:
        for fragment in fragments:
            sink.write(fragment)
            written += 1
    finally:
        fragments.close()
        sink.close()
    return written
