import io
from contextlib import contextmanager
from functools import partial
from typing import IO, Iterator


class ReachedEOFBeforeNewlineError(EOFError):
    def __init__(self) -> None:
        super().__init__('Expected newline termination but reached EOF')


@contextmanager
def temporary_seek(stream: IO[bytes]) -> Iterator[int]:
    pos = stream.tell()
    try:
        yield pos
    finally:
        stream.seek(pos, io.SEEK_SET)


def line_length(stream: IO[bytes], terminator: bytes = b'\n') -> int:
    """
    Count the bytes before the next `terminator` without consuming them.

    Raises ReachedEOFBeforeNewlineError when the stream ends first.
    """
    with temporary_seek(stream):
        for size, char in enumerate(iter(partial(stream.read, 1), b'')):
            if char == terminator:
                return size
    raise ReachedEOFBeforeNewlineError
