"""
Structured field extraction from JSON documents.

A small incremental JSON scanner walks the document once and captures only
the string values whose path matches a field selector. Everything else is
skipped character by character, so large documents are never materialized.
This is deliberately not a JSON parser: numbers and literals are checked
only loosely and no document object is built.

Selector syntax (jq-like):
    data.attachment            object keys separated by dots
    items[0].blob              array index
    items[*].blob, items[].blob, items.*.blob
                               any index or key
    ["key.with.dots"]          quoted key
    $.a.b or .a.b              optional root prefix
"""

import re
from typing import Iterator, List, Optional, TextIO, Tuple, Union

from b64pipe.codec.alphabet import Alphabet
from b64pipe.models import ExtractorKind, PayloadSpan, StructuredFieldSpec
from b64pipe.utils.errors import MalformedDocumentError
from b64pipe.utils.logging import get_logger

logger = get_logger(__name__)

MAX_DEPTH = 512

_JSON_WHITESPACE = " \t\r\n"
_LITERAL_CHARS = set("0123456789+-.eEtruefalsn")
_NUMBER_RE = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?\Z")
_LONE_SURROGATE = re.compile("[\ud800-\udfff]")
_SIMPLE_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}


class _Wildcard:
    def __repr__(self) -> str:
        return "*"


WILDCARD = _Wildcard()

PathComponent = Union[str, int, _Wildcard]
FieldPath = Tuple[PathComponent, ...]

_SELECTOR_TOKEN = re.compile(
    r"""\.?(?:
        \[(?:
            (?P<index>\d+)
          | (?P<star>\*)
          | (?P<empty>)
          | "(?P<dq>(?:[^"\\]|\\.)*)"
          | '(?P<sq>[^']*)'
        )\]
      | (?P<name>[^.\[\]]+)
    )""",
    re.VERBOSE,
)


def parse_field_path(selector: str) -> FieldPath:
    """
    Parse a field selector into path components.

    Args:
        selector: Selector such as ``data.items[*].content``

    Returns:
        Tuple of keys (str), indexes (int) and ``WILDCARD``

    Raises:
        ValueError: If the selector cannot be parsed
    """
    text = selector.strip()
    if text.startswith("$"):
        text = text[1:]
    if text in ("", "."):
        return ()

    parts = []
    pos = 0
    while pos < len(text):
        match = _SELECTOR_TOKEN.match(text, pos)
        if not match or match.end() == pos:
            raise ValueError(f"Invalid field selector {selector!r} at position {pos}")
        if match.group("index") is not None:
            parts.append(int(match.group("index")))
        elif match.group("star") is not None or match.group("empty") is not None:
            parts.append(WILDCARD)
        elif match.group("dq") is not None:
            parts.append(re.sub(r"\\(.)", r"\1", match.group("dq")))
        elif match.group("sq") is not None:
            parts.append(match.group("sq"))
        else:
            name = match.group("name").strip()
            parts.append(WILDCARD if name == "*" else name)
        pos = match.end()
    return tuple(parts)


def format_field_path(path: Tuple[Union[str, int], ...]) -> str:
    """Render a concrete path as ``a.b[0].c``."""
    out = []
    for part in path:
        if isinstance(part, int):
            out.append(f"[{part}]")
        elif re.fullmatch(r"[A-Za-z_][\w-]*", part):
            out.append(f".{part}" if out else part)
        else:
            out.append(f'["{part}"]')
    return "".join(out) or "."


class _Reader:
    """Buffered character reader tracking the absolute offset."""

    def __init__(self, stream: TextIO, chunk_size: int = 64 * 1024) -> None:
        self._stream = stream
        self._chunk_size = chunk_size
        self._buf = ""
        self._pos = 0
        self.offset = 0

    def _fill(self) -> bool:
        if self._pos < len(self._buf):
            return True
        self._buf = self._stream.read(self._chunk_size)
        self._pos = 0
        return bool(self._buf)

    def peek(self) -> str:
        return self._buf[self._pos] if self._fill() else ""

    def advance(self) -> str:
        if not self._fill():
            return ""
        ch = self._buf[self._pos]
        self._pos += 1
        self.offset += 1
        return ch

    def skip_ws(self) -> str:
        while True:
            ch = self.peek()
            if ch == "" or ch not in _JSON_WHITESPACE:
                return ch
            self._pos += 1
            self.offset += 1

    def read_string(self, capture: bool) -> Optional[Tuple[str, Tuple[Tuple[int, int], ...]]]:
        """
        Read the rest of a string whose opening quote was consumed.

        Returns:
            When capturing, the unescaped value and its escape breakpoints:
            ``(value index, source offset)`` of the character following each
            escape sequence.
        """
        parts: List[str] = []
        breakpoints: List[Tuple[int, int]] = []
        length = 0
        high_surrogate_at = -1
        while True:
            if not self._fill():
                raise MalformedDocumentError(self.offset, "unterminated string")
            buf, pos = self._buf, self._pos
            quote = buf.find('"', pos)
            backslash = buf.find("\\", pos)
            stops = [i for i in (quote, backslash) if i != -1]
            stop = min(stops) if stops else len(buf)

            if capture and stop > pos:
                parts.append(buf[pos:stop])
                length += stop - pos
            self.offset += stop - pos
            self._pos = stop
            if stop == len(buf):
                continue

            ch = self.advance()
            if ch == '"':
                break

            escape = self.advance()
            if escape in _SIMPLE_ESCAPES:
                if capture:
                    parts.append(_SIMPLE_ESCAPES[escape])
                    length += 1
            elif escape == "u":
                digits = "".join(self.advance() for _ in range(4))
                if not re.fullmatch(r"[0-9a-fA-F]{4}", digits):
                    raise MalformedDocumentError(self.offset, "invalid \\u escape")
                if capture:
                    code = int(digits, 16)
                    if 0xDC00 <= code <= 0xDFFF and high_surrogate_at == length:
                        # Join a UTF-16 surrogate pair written as two \u escapes
                        high = ord(parts[-1])
                        parts[-1] = chr(0x10000 + ((high - 0xD800) << 10) + (code - 0xDC00))
                    else:
                        parts.append(chr(code))
                        length += 1
                    high_surrogate_at = length if 0xD800 <= code <= 0xDBFF else -1
            else:
                raise MalformedDocumentError(self.offset - 1, f"invalid escape {escape!r}")
            if capture:
                breakpoints.append((length, self.offset))

        if not capture:
            return None
        # Lone surrogates become U+FFFD, one character for one
        value = _LONE_SURROGATE.sub("\ufffd", "".join(parts))
        return value, tuple(breakpoints)


class JSONFieldScanner:
    """
    Stream a JSON document and yield the string values at a selector.

    Concatenated documents and JSON Lines input are scanned one after the
    other, with array indexes restarting per document.
    """

    def __init__(
        self,
        selector: Union[str, FieldPath],
        source_id: str = "<json>",
        chunk_size: int = 64 * 1024,
    ) -> None:
        self.selector: FieldPath = (
            parse_field_path(selector) if isinstance(selector, str) else tuple(selector)
        )
        self.source_id = source_id
        self.chunk_size = chunk_size
        self._reader: Optional[_Reader] = None

    def scan(self, stream: TextIO) -> Iterator[PayloadSpan]:
        self._reader = _Reader(stream, self.chunk_size)
        documents = 0
        while self._reader.skip_ws() != "":
            yield from self._value((), 0)
            documents += 1
        logger.debug(f"Scanned {documents} JSON document(s) in {self.source_id}")

    # ------------------------------------------------------------------
    # Path matching
    # ------------------------------------------------------------------

    def _component_matches(self, wanted: PathComponent, actual: Union[str, int]) -> bool:
        if wanted is WILDCARD:
            return True
        if isinstance(wanted, int):
            return isinstance(actual, int) and wanted == actual
        return isinstance(actual, str) and wanted == actual

    def _child(self, path: Optional[tuple], part: Union[str, int]) -> Optional[tuple]:
        """Extend ``path`` if the child can still lead to a match, else None."""
        if path is None or len(path) >= len(self.selector):
            return None
        if not self._component_matches(self.selector[len(path)], part):
            return None
        return path + (part,)

    # ------------------------------------------------------------------
    # Grammar
    # ------------------------------------------------------------------

    def _value(self, path: Optional[tuple], depth: int) -> Iterator[PayloadSpan]:
        r = self._reader
        if depth > MAX_DEPTH:
            raise MalformedDocumentError(r.offset, "nesting too deep")

        ch = r.skip_ws()
        if ch == "":
            raise MalformedDocumentError(r.offset, "unexpected end of input")
        matched = path is not None and len(path) == len(self.selector)

        if ch == '"':
            r.advance()
            start = r.offset
            if matched:
                value, offset_map = r.read_string(capture=True)
                yield PayloadSpan(
                    source_id=self.source_id,
                    kind=ExtractorKind.JSON,
                    start=start,
                    end=r.offset - 1,
                    raw_text=value,
                    metadata={"path": format_field_path(path)},
                    offset_map=offset_map,
                )
            else:
                r.read_string(capture=False)
            return

        if matched:
            logger.debug(
                f"Value at {format_field_path(path)} in {self.source_id} is not a string; skipped"
            )
            path = None

        if ch == "{":
            yield from self._object(path, depth)
        elif ch == "[":
            yield from self._array(path, depth)
        else:
            self._literal()

    def _object(self, path: Optional[tuple], depth: int) -> Iterator[PayloadSpan]:
        r = self._reader
        r.advance()
        if r.skip_ws() == "}":
            r.advance()
            return

        while True:
            if r.skip_ws() != '"':
                raise MalformedDocumentError(r.offset, "expected object key")
            r.advance()
            captured = r.read_string(capture=path is not None)
            key = captured[0] if captured is not None else None
            if r.skip_ws() != ":":
                raise MalformedDocumentError(r.offset, "expected ':' after object key")
            r.advance()

            child = self._child(path, key) if key is not None else None
            yield from self._value(child, depth + 1)

            ch = r.skip_ws()
            r.advance()
            if ch == ",":
                continue
            if ch == "}":
                return
            raise MalformedDocumentError(r.offset - 1, "expected ',' or '}'")

    def _array(self, path: Optional[tuple], depth: int) -> Iterator[PayloadSpan]:
        r = self._reader
        r.advance()
        if r.skip_ws() == "]":
            r.advance()
            return

        index = 0
        while True:
            yield from self._value(self._child(path, index), depth + 1)
            index += 1

            ch = r.skip_ws()
            r.advance()
            if ch == ",":
                continue
            if ch == "]":
                return
            raise MalformedDocumentError(r.offset - 1, "expected ',' or ']'")

    def _literal(self) -> None:
        r = self._reader
        start = r.offset
        token = []
        while True:
            ch = r.peek()
            if ch == "" or ch not in _LITERAL_CHARS:
                break
            token.append(r.advance())

        text = "".join(token)
        if text in ("true", "false", "null") or _NUMBER_RE.match(text):
            return
        bad = text or r.peek()
        raise MalformedDocumentError(start, f"unexpected token {bad[:20]!r}")


def extract_structured_fields(
    stream: TextIO,
    spec: StructuredFieldSpec,
    source_id: str,
    alphabet: Alphabet,
) -> Iterator[PayloadSpan]:
    """Yield every string value at ``spec.field_path``."""
    scanner = JSONFieldScanner(spec.field_path, source_id=source_id)
    yield from scanner.scan(stream)
