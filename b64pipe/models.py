"""
Core data models for b64pipe.

This module defines the enums, payload spans, extractor specifications and
per-payload results passed between the extractors, the validator, the
decoder and the pipeline orchestrator.
"""

import bisect
import re
from enum import Enum
from typing import Annotated, Any, Callable, Dict, Iterator, List, Literal, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    computed_field,
    field_validator,
    model_validator,
)


# =============================================================================
# Enums
# =============================================================================


class AlphabetName(str, Enum):
    """Supported Base64 alphabets."""

    STANDARD = "standard"
    URLSAFE = "urlsafe"


class ExtractorKind(str, Enum):
    """Source formats a payload can be extracted from."""

    DELIMITED = "delimited"
    JSON = "json"
    DATA_URI = "data-uri"
    MIME = "mime"
    RAW = "raw"
    CARVE = "carve"


class ErrorKind(str, Enum):
    """Failure taxonomy reported in payload results."""

    INVALID_CHARACTER = "invalid_character"
    INVALID_LENGTH = "invalid_length"
    NO_PAYLOAD_FOUND = "no_payload_found"
    SOURCE_READ_ERROR = "source_read_error"
    SINK_WRITE_ERROR = "sink_write_error"
    MALFORMED_DOCUMENT = "malformed_document"


class RunStatus(str, Enum):
    """Overall outcome of one pipeline run."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    TOTAL_FAILURE = "total_failure"


EXIT_CODES = {
    RunStatus.SUCCESS: 0,
    RunStatus.PARTIAL_FAILURE: 1,
    RunStatus.TOTAL_FAILURE: 2,
}


# =============================================================================
# Payload Models
# =============================================================================


class PayloadSpan(BaseModel):
    """
    A located candidate Base64 payload within a larger document.

    Offsets are character offsets into the source text. Spans over a whole
    input (``ExtractorKind.RAW``) carry no ``raw_text``; their content is
    read lazily through ``chunk_reader`` and their ``end`` is unknown.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    source_id: str = Field(..., description="Identifier of the input source")
    kind: ExtractorKind = Field(..., description="Extractor that produced the span")
    start: int = Field(..., ge=0, description="Offset of the first payload character")
    end: Optional[int] = Field(None, ge=0, description="Offset just past the payload")
    raw_text: Optional[str] = Field(None, description="Payload text as found in the source")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Variant-specific facts")
    chunk_reader: Optional[Callable[[], Iterator[str]]] = Field(
        None,
        exclude=True,
        repr=False,
        description="Lazy chunk iterator for streamed spans",
    )
    offset_map: Tuple[Tuple[int, int], ...] = Field(
        default=(),
        exclude=True,
        repr=False,
        description="(raw_text index, source offset) after each escape sequence",
    )

    @model_validator(mode="after")
    def check_content(self) -> "PayloadSpan":
        """Exactly one of raw_text and chunk_reader must be set."""
        if (self.raw_text is None) == (self.chunk_reader is None):
            raise ValueError("PayloadSpan needs either raw_text or chunk_reader")
        if self.end is not None and self.end < self.start:
            raise ValueError("PayloadSpan end must not precede start")
        return self

    @property
    def streamed(self) -> bool:
        return self.raw_text is None

    def iter_chunks(self, chunk_size: int) -> Iterator[str]:
        """Yield the payload text in pieces of at most ``chunk_size`` characters."""
        if self.raw_text is None:
            yield from self.chunk_reader()
            return
        for pos in range(0, len(self.raw_text), chunk_size):
            yield self.raw_text[pos:pos + chunk_size]

    def source_offset(self, offset: int) -> int:
        """
        Translate an offset into ``raw_text`` to an offset into the source.

        The two only differ for values whose escape sequences were decoded
        (JSON strings); an offset at an escaped character maps to the start
        of its escape sequence.
        """
        pos = bisect.bisect_right(self.offset_map, (offset, float("inf"))) - 1
        if pos < 0:
            return self.start + offset
        index, source = self.offset_map[pos]
        return source + (offset - index)

    def describe(self) -> str:
        end = "EOF" if self.end is None else str(self.end)
        return f"{self.source_id}[{self.start}:{end}]"


class DecodeFailure(BaseModel):
    """Failure descriptor for one payload."""

    kind: ErrorKind = Field(..., description="Failure category")
    message: str = Field(..., description="Human readable description")
    offset: Optional[int] = Field(
        None, description="Offset of the first invalid character within the payload text"
    )
    source_offset: Optional[int] = Field(
        None, description="Offset of the first invalid character within the source"
    )


class PayloadResult(BaseModel):
    """Terminal outcome for one discovered payload."""

    index: int = Field(..., ge=0, description="Discovery order")
    source_id: str = Field(..., description="Identifier of the input source")
    kind: Optional[ExtractorKind] = Field(None, description="Extractor that found the payload")
    start: Optional[int] = Field(None, description="Span start offset")
    end: Optional[int] = Field(None, description="Span end offset")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Span metadata")
    bytes_written: int = Field(0, ge=0, description="Decoded bytes delivered to the sink")
    destination: Optional[str] = Field(None, description="Where the bytes went")
    failure: Optional[DecodeFailure] = Field(None, description="Set when decoding failed")

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def for_span(cls, index: int, span: PayloadSpan, **kwargs: Any) -> "PayloadResult":
        """Build a result carrying the span's location."""
        return cls(
            index=index,
            source_id=span.source_id,
            kind=span.kind,
            start=span.start,
            end=span.end,
            metadata=dict(span.metadata),
            **kwargs,
        )


class RunReport(BaseModel):
    """Ordered results of one pipeline run."""

    source_id: str
    extractor: ExtractorKind
    results: List[PayloadResult] = Field(default_factory=list)
    duration_seconds: float = Field(0.0, ge=0.0)

    @property
    def succeeded(self) -> List[PayloadResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> List[PayloadResult]:
        return [r for r in self.results if not r.ok]

    @computed_field
    @property
    def status(self) -> RunStatus:
        """Success when every payload decoded, total failure when none did."""
        if not self.results or not self.succeeded:
            return RunStatus.TOTAL_FAILURE
        if self.failed:
            return RunStatus.PARTIAL_FAILURE
        return RunStatus.SUCCESS

    @computed_field
    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.status]


# =============================================================================
# Extractor Specifications
# =============================================================================


class DelimitedBlockSpec(BaseModel):
    """Blocks between a start marker line and an end marker line."""

    kind: Literal[ExtractorKind.DELIMITED] = ExtractorKind.DELIMITED
    start_marker: str = Field("BEGIN BASE64", min_length=1, description="Token or pattern")
    end_marker: Optional[str] = Field(
        "END BASE64",
        description="Token or pattern; None ends blocks at a blank line",
    )
    regex: bool = Field(False, description="Treat markers as regular expressions")

    @model_validator(mode="after")
    def compile_markers(self) -> "DelimitedBlockSpec":
        if self.regex:
            for marker in (self.start_marker, self.end_marker):
                if marker is None:
                    continue
                try:
                    re.compile(marker)
                except re.error as e:
                    raise ValueError(f"Invalid marker pattern {marker!r}: {e}")
        return self


class StructuredFieldSpec(BaseModel):
    """String values at a field path inside JSON documents."""

    kind: Literal[ExtractorKind.JSON] = ExtractorKind.JSON
    field_path: str = Field(..., min_length=1, description="e.g. 'data.items[*].content'")


class DataURISpec(BaseModel):
    """``data:<mime>;base64,`` URIs embedded in HTML, CSS or Markdown."""

    kind: Literal[ExtractorKind.DATA_URI] = ExtractorKind.DATA_URI
    mime_filter: Optional[str] = Field(None, description="Exact type or 'major/*' wildcard")

    @field_validator("mime_filter")
    @classmethod
    def normalize_mime_filter(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().lower()
        if "/" not in v:
            raise ValueError("mime_filter must look like 'type/subtype' or 'type/*'")
        return v


class MimeHeaderSpec(BaseModel):
    """Message parts declared with ``Content-Transfer-Encoding: base64``."""

    kind: Literal[ExtractorKind.MIME] = ExtractorKind.MIME


class RawSpec(BaseModel):
    """The whole input is a single Base64 payload."""

    kind: Literal[ExtractorKind.RAW] = ExtractorKind.RAW
    chunk_size: Optional[int] = Field(
        None, gt=0, description="Characters read per chunk (defaults to settings)"
    )


class CarveSpec(BaseModel):
    """Runs of alphabet characters found anywhere in free text."""

    kind: Literal[ExtractorKind.CARVE] = ExtractorKind.CARVE
    min_length: int = Field(16, ge=4, description="Shortest run reported")


ExtractorSpec = Annotated[
    Union[
        DelimitedBlockSpec,
        StructuredFieldSpec,
        DataURISpec,
        MimeHeaderSpec,
        RawSpec,
        CarveSpec,
    ],
    Field(discriminator="kind"),
]

_spec_adapter: TypeAdapter = TypeAdapter(ExtractorSpec)


def parse_extractor_spec(data: Dict[str, Any]) -> ExtractorSpec:
    """Validate a plain mapping (e.g. from JSON) into an extractor spec."""
    return _spec_adapter.validate_python(data)
