"""Newline framing of the decompressed archive stream."""

from collections.abc import Iterator
from typing import Protocol


class LineSource(Protocol):
    """Anything that can hand out newline-terminated chunks."""

    def readline(self) -> bytes: ...


class LineFramer:
    """Yields one whitespace-trimmed record per newline-delimited chunk.

    Blank lines are yielded as b"" so callers can still account for them.
    End of stream ends iteration, including when the last line has no
    trailing newline. The sequence is lazy and can only be consumed once.
    """

    def __init__(self, source: LineSource) -> None:
        self._source = source
        self._exhausted = False
        self.lines_read = 0

    def __iter__(self) -> Iterator[bytes]:
        while not self._exhausted:
            chunk = self._source.readline()
            if not chunk:
                self._exhausted = True
                return
            self.lines_read += 1
            yield chunk.strip()
