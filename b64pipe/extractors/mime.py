"""
MIME part extraction.

Finds message parts declared with ``Content-Transfer-Encoding: base64`` and
takes their bodies as payloads. This is a line scanner, not a MIME parser:
multipart structure is not tracked, boundaries are only recognised as lines
starting with ``--``.
"""

import re
from typing import Dict, Iterator, List, Optional, TextIO

from b64pipe.codec.alphabet import Alphabet
from b64pipe.extractors.base import is_blank, iter_lines
from b64pipe.models import ExtractorKind, MimeHeaderSpec, PayloadSpan
from b64pipe.utils.logging import get_logger

logger = get_logger(__name__)

HEADER_RE = re.compile(r"^(?P<name>[A-Za-z0-9][A-Za-z0-9-]*)\s*:\s*(?P<value>.*)$")
BASE64_ENCODING_RE = re.compile(r"^\s*base64\s*$", re.IGNORECASE)
_PARAM_RE = re.compile(r"""(?P<name>[\w-]+)\*?\s*=\s*(?:"(?P<quoted>[^"]*)"|(?P<token>[^;\s]+))""")

_SEARCH, _HEADERS, _BODY = "search", "headers", "body"


def header_params(value: str) -> Dict[str, str]:
    """Parse ``; name=value`` parameters of a header value."""
    _, _, rest = value.partition(";")
    params = {}
    for match in _PARAM_RE.finditer(rest):
        params[match.group("name").lower()] = match.group("quoted") or match.group("token") or ""
    return params


def _part_metadata(headers: Dict[str, str]) -> Dict[str, Optional[str]]:
    content_type = headers.get("content-type", "")
    disposition = headers.get("content-disposition", "")
    filename = header_params(disposition).get("filename") or header_params(content_type).get("name")
    return {
        "content_type": content_type.split(";", 1)[0].strip().lower() or None,
        "filename": filename,
        "headers": dict(headers),
    }


def _is_boundary(content: str) -> bool:
    return content.startswith("--")


def extract_mime_parts(
    stream: TextIO,
    spec: MimeHeaderSpec,
    source_id: str,
    alphabet: Alphabet,
) -> Iterator[PayloadSpan]:
    """
    Yield the body of every base64-encoded part.

    After the ``Content-Transfer-Encoding: base64`` header, the rest of the
    part's headers and the blank separator line are skipped; the body then
    runs to the next blank line, boundary line or end of input. A body line
    directly after the header block (no separator) is taken as body.
    """
    state = _SEARCH
    headers: Dict[str, str] = {}
    last_header: Optional[str] = None
    lines: List[str] = []
    body_start = body_end = 0
    metadata: Dict[str, Optional[str]] = {}

    def make_span() -> PayloadSpan:
        return PayloadSpan(
            source_id=source_id,
            kind=ExtractorKind.MIME,
            start=body_start,
            end=body_end,
            raw_text="".join(lines),
            metadata=metadata,
        )

    for offset, line, content in iter_lines(stream):
        if state == _SEARCH:
            if is_blank(content) or _is_boundary(content):
                headers, last_header = {}, None
                continue
            match = HEADER_RE.match(content)
            if match:
                last_header = match.group("name").lower()
                headers[last_header] = match.group("value").strip()
                if last_header == "content-transfer-encoding" and BASE64_ENCODING_RE.match(
                    headers[last_header]
                ):
                    state = _HEADERS
            elif content[:1] in (" ", "\t") and last_header:
                headers[last_header] += " " + content.strip()
            else:
                headers, last_header = {}, None
            continue

        if state == _HEADERS:
            if is_blank(content):
                state = _BODY
                metadata = _part_metadata(headers)
                lines = []
                body_start = body_end = offset + len(line)
                continue
            match = HEADER_RE.match(content)
            if match:
                last_header = match.group("name").lower()
                headers[last_header] = match.group("value").strip()
                continue
            if content[:1] in (" ", "\t") and last_header:
                headers[last_header] += " " + content.strip()
                continue
            # Body starts right after the headers
            state = _BODY
            metadata = _part_metadata(headers)
            lines = []
            body_start = body_end = offset

        # state == _BODY
        if is_blank(content) or _is_boundary(content):
            yield make_span()
            state = _SEARCH
            headers, last_header = {}, None
            continue
        lines.append(line)
        body_end = offset + len(line)

    if state == _BODY:
        yield make_span()
    elif state == _HEADERS:
        logger.warning(f"Base64 part in {source_id} ends before its body")
