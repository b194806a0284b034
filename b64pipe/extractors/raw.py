"""
Whole-input extraction: the entire source is one Base64 payload.

The span is never materialized. Its chunk reader hands the source text to
the validator and decoder one chunk at a time, which keeps memory flat for
arbitrarily large encoded files.
"""

from typing import Iterator, TextIO

from b64pipe.codec.alphabet import WHITESPACE, Alphabet
from b64pipe.config import get_settings
from b64pipe.models import ExtractorKind, PayloadSpan, RawSpec
from b64pipe.utils.logging import get_logger

logger = get_logger(__name__)


def extract_raw(
    stream: TextIO,
    spec: RawSpec,
    source_id: str,
    alphabet: Alphabet,
) -> Iterator[PayloadSpan]:
    """
    Yield a single streamed span covering the input.

    Leading whitespace is skipped and the span starts at the first other
    character. Whitespace-only input yields nothing.
    """
    chunk_size = spec.chunk_size or get_settings().chunk_size
    skipped = 0
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            logger.info(f"{source_id} contains only whitespace")
            return
        first = chunk.lstrip(WHITESPACE)
        skipped += len(chunk) - len(first)
        if first:
            break

    def read_chunks() -> Iterator[str]:
        yield first
        while True:
            data = stream.read(chunk_size)
            if not data:
                return
            yield data

    yield PayloadSpan(
        source_id=source_id,
        kind=ExtractorKind.RAW,
        start=skipped,
        end=None,
        chunk_reader=read_chunks,
        metadata={"chunk_size": chunk_size},
    )
