"""
Delimited block extraction.

Finds payloads written between marker lines, the way PEM blocks or
``BEGIN BASE64`` / ``END BASE64`` sections appear in logs and config dumps.
"""

import re
from typing import Callable, Iterator, List, Optional, TextIO

from b64pipe.codec.alphabet import Alphabet
from b64pipe.extractors.base import is_blank, iter_lines
from b64pipe.models import DelimitedBlockSpec, ExtractorKind, PayloadSpan
from b64pipe.utils.logging import get_logger

logger = get_logger(__name__)


def _matcher(marker: str, regex: bool) -> Callable[[str], bool]:
    if regex:
        pattern = re.compile(marker)
        return lambda line: pattern.search(line) is not None
    return lambda line: marker in line


def extract_delimited_blocks(
    stream: TextIO,
    spec: DelimitedBlockSpec,
    source_id: str,
    alphabet: Alphabet,
) -> Iterator[PayloadSpan]:
    """
    Yield the interior of every start/end marker pair.

    The marker lines themselves are excluded. Without an end marker a blank
    line closes the block. A block still open at EOF is closed there.
    """
    is_start = _matcher(spec.start_marker, spec.regex)
    is_end: Optional[Callable[[str], bool]] = (
        _matcher(spec.end_marker, spec.regex) if spec.end_marker is not None else None
    )

    lines: List[str] = []
    block_start = 0
    block_end = 0
    start_line = ""
    in_block = False

    def make_span(end_line: Optional[str]) -> PayloadSpan:
        return PayloadSpan(
            source_id=source_id,
            kind=ExtractorKind.DELIMITED,
            start=block_start,
            end=block_end,
            raw_text="".join(lines),
            metadata={
                "start_line": start_line,
                "end_line": end_line,
                "line_count": len(lines),
            },
        )

    for offset, line, content in iter_lines(stream):
        if not in_block:
            if is_start(content):
                in_block = True
                lines = []
                start_line = content.strip()
                block_start = block_end = offset + len(line)
            continue

        closes = is_end(content) if is_end is not None else is_blank(content)
        if closes:
            yield make_span(content.strip() if is_end is not None else None)
            in_block = False
            continue

        lines.append(line)
        block_end = offset + len(line)

    if in_block:
        logger.warning(
            f"Unterminated block starting at offset {block_start} in {source_id}; "
            "closing it at end of input"
        )
        yield make_span(None)
