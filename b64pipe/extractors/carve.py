"""
Carving of Base64 runs from free-form text.

Any maximal run of alphabet symbols at least ``min_length`` long, followed
by up to two ``=``, is reported as a candidate. Carving is a heuristic:
identifiers and paths can look like Base64, and the validator decides.
"""

import re
from typing import Iterator, TextIO

from b64pipe.codec.alphabet import Alphabet
from b64pipe.extractors.base import iter_lines
from b64pipe.models import CarveSpec, ExtractorKind, PayloadSpan


def carve_pattern(alphabet: Alphabet, min_length: int) -> "re.Pattern[str]":
    symbols = alphabet.symbol_class
    return re.compile(f"(?<![{symbols}])[{symbols}]{{{min_length},}}={{0,2}}")


def extract_carved_runs(
    stream: TextIO,
    spec: CarveSpec,
    source_id: str,
    alphabet: Alphabet,
) -> Iterator[PayloadSpan]:
    """Yield every long enough run of alphabet characters, line by line."""
    pattern = carve_pattern(alphabet, spec.min_length)
    for line_number, (offset, line, content) in enumerate(iter_lines(stream), start=1):
        for match in pattern.finditer(content):
            yield PayloadSpan(
                source_id=source_id,
                kind=ExtractorKind.CARVE,
                start=offset + match.start(),
                end=offset + match.end(),
                raw_text=match.group(0),
                metadata={"line": line_number},
            )
