"""
b64pipe - locate, validate and stream-decode Base64 payloads embedded in
larger text documents.
"""

from b64pipe.codec import STANDARD, URLSAFE, PayloadValidator, StreamingDecoder, decode
from b64pipe.extractors import build_extractor_spec, iter_spans
from b64pipe.models import ExtractorKind, PayloadResult, PayloadSpan, RunReport
from b64pipe.pipeline import DecodePipeline

__version__ = "0.1.0"

__all__ = [
    "STANDARD",
    "URLSAFE",
    "PayloadValidator",
    "StreamingDecoder",
    "decode",
    "build_extractor_spec",
    "iter_spans",
    "ExtractorKind",
    "PayloadResult",
    "PayloadSpan",
    "RunReport",
    "DecodePipeline",
]
