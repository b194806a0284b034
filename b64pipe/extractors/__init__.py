"""
Extractors locating Base64 payloads inside host documents.

Each extractor kind maps to a generator function; ``iter_spans`` dispatches
on the extractor spec's ``kind``.
"""

from typing import Any, Dict, Iterator, TextIO, Union

from pydantic import ValidationError

from b64pipe.codec.alphabet import STANDARD, Alphabet
from b64pipe.config import get_settings
from b64pipe.extractors.base import ExtractorFunc
from b64pipe.extractors.carve import extract_carved_runs
from b64pipe.extractors.data_uri import extract_data_uris
from b64pipe.extractors.delimited import extract_delimited_blocks
from b64pipe.extractors.mime import extract_mime_parts
from b64pipe.extractors.raw import extract_raw
from b64pipe.extractors.structured import extract_structured_fields, parse_field_path
from b64pipe.models import ExtractorKind, ExtractorSpec, PayloadSpan, parse_extractor_spec
from b64pipe.utils.errors import ConfigurationError, UnsupportedExtractorError
from b64pipe.utils.logging import get_logger

logger = get_logger(__name__)

EXTRACTORS: Dict[ExtractorKind, ExtractorFunc] = {
    ExtractorKind.DELIMITED: extract_delimited_blocks,
    ExtractorKind.JSON: extract_structured_fields,
    ExtractorKind.DATA_URI: extract_data_uris,
    ExtractorKind.MIME: extract_mime_parts,
    ExtractorKind.RAW: extract_raw,
    ExtractorKind.CARVE: extract_carved_runs,
}


def get_extractor(kind: Union[str, ExtractorKind]) -> ExtractorFunc:
    """
    Look up the extractor function for a kind.

    Raises:
        UnsupportedExtractorError: If no extractor is registered for ``kind``
    """
    try:
        return EXTRACTORS[ExtractorKind(kind)]
    except (ValueError, KeyError):
        raise UnsupportedExtractorError(str(kind), [k.value for k in EXTRACTORS])


def iter_spans(
    stream: TextIO,
    spec: ExtractorSpec,
    source_id: str,
    alphabet: Alphabet = STANDARD,
) -> Iterator[PayloadSpan]:
    """Yield the payload spans ``spec`` finds in ``stream``, in discovery order."""
    extractor = get_extractor(spec.kind)
    logger.debug(f"Scanning {source_id} with the {spec.kind.value} extractor")
    yield from extractor(stream, spec, source_id, alphabet)


def build_extractor_spec(kind: Union[str, ExtractorKind], **options: Any) -> ExtractorSpec:
    """
    Build an extractor spec from loose options, filling in configured defaults.

    ``None`` options are dropped so model defaults apply; an empty
    ``end_marker`` means blocks end at a blank line.

    Args:
        kind: Extractor kind name
        **options: start_marker, end_marker, regex, field_path, mime_filter,
            min_length

    Returns:
        Validated extractor spec

    Raises:
        UnsupportedExtractorError: If the kind is unknown
        ConfigurationError: If the options are invalid for the kind
    """
    get_extractor(kind)
    kind = ExtractorKind(kind)
    settings = get_settings()

    data: Dict[str, Any] = {k: v for k, v in options.items() if v is not None}
    data["kind"] = kind

    if kind == ExtractorKind.DELIMITED:
        data.setdefault("start_marker", settings.delimited_start)
        data.setdefault("end_marker", settings.delimited_end)
        if data["end_marker"] == "":
            data["end_marker"] = None
    elif kind == ExtractorKind.CARVE:
        data.setdefault("min_length", settings.carve_min_length)
    elif kind == ExtractorKind.JSON:
        if "field_path" not in data:
            raise ConfigurationError("The json extractor needs a field path")
        try:
            parse_field_path(data["field_path"])
        except ValueError as e:
            raise ConfigurationError(str(e), {"field_path": data["field_path"]})

    try:
        return parse_extractor_spec(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid options for the {kind.value} extractor",
            {"errors": [err["msg"] for err in e.errors()]},
        )


__all__ = [
    "EXTRACTORS",
    "get_extractor",
    "iter_spans",
    "build_extractor_spec",
    "parse_field_path",
]
