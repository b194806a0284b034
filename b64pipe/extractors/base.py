"""
Shared plumbing for extractors.

Every extractor is a generator function with the signature of
``ExtractorFunc``: it reads the stream once, front to back, and yields
``PayloadSpan`` objects in discovery order.
"""

from typing import Any, Callable, Iterator, TextIO, Tuple

from b64pipe.codec.alphabet import Alphabet
from b64pipe.models import PayloadSpan

ExtractorFunc = Callable[[TextIO, Any, str, Alphabet], Iterator[PayloadSpan]]


def iter_lines(stream: TextIO) -> Iterator[Tuple[int, str, str]]:
    """
    Iterate over lines with their offsets.

    Yields:
        (offset of the line, line including its terminator, line content
        without the terminator)
    """
    offset = 0
    for line in stream:
        yield offset, line, line.rstrip("\r\n")
        offset += len(line)


def is_blank(content: str) -> bool:
    return not content.strip()
