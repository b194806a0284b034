"""
Data URI extraction (``data:<mime>;base64,<payload>``) from HTML, CSS,
Markdown or any other text.
"""

import re
from typing import Iterator, Optional, TextIO

from b64pipe.codec.alphabet import Alphabet
from b64pipe.extractors.base import iter_lines
from b64pipe.models import DataURISpec, ExtractorKind, PayloadSpan
from b64pipe.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MIME_TYPE = "text/plain"

# The payload runs to the next quote, whitespace or end of input
DATA_URI_RE = re.compile(
    r"""data:
        (?P<mime>[A-Za-z0-9!#$&^_.+-]+/[A-Za-z0-9!#$&^_.+-]+)?
        (?P<params>(?:;[A-Za-z0-9!#$&^_.+-]+=[^;,\s"']*)*)
        ;base64,
        (?P<payload>[^"'\s]*)""",
    re.VERBOSE | re.IGNORECASE,
)


def mime_matches(mime_type: str, mime_filter: Optional[str]) -> bool:
    """Check a mime type against ``type/subtype`` or ``type/*``."""
    if not mime_filter:
        return True
    wanted_major, _, wanted_minor = mime_filter.partition("/")
    major, _, minor = mime_type.lower().partition("/")
    return wanted_major in ("*", major) and wanted_minor in ("*", minor)


def extract_data_uris(
    stream: TextIO,
    spec: DataURISpec,
    source_id: str,
    alphabet: Alphabet,
) -> Iterator[PayloadSpan]:
    """Yield the payload of every Base64 data URI, in order of appearance."""
    skipped = 0
    for offset, line, _ in iter_lines(stream):
        if "data:" not in line.lower():
            continue

        for match in DATA_URI_RE.finditer(line):
            mime_type = (match.group("mime") or DEFAULT_MIME_TYPE).lower()
            if not mime_matches(mime_type, spec.mime_filter):
                skipped += 1
                continue

            params = {}
            for param in filter(None, match.group("params").split(";")):
                name, _, value = param.partition("=")
                params[name.lower()] = value

            yield PayloadSpan(
                source_id=source_id,
                kind=ExtractorKind.DATA_URI,
                start=offset + match.start("payload"),
                end=offset + match.end("payload"),
                raw_text=match.group("payload"),
                metadata={"mime_type": mime_type, "params": params},
            )

    if skipped:
        logger.info(f"Skipped {skipped} data URI(s) not matching {spec.mime_filter}")
