"""
Pipeline orchestration.

This module wires extraction, validation, decoding and output together:
every payload span an extractor finds is validated, stream-decoded and
written to its own sink, and the outcome of each is collected, in discovery
order, into a ``RunReport``.
"""

import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Deque, Iterator, List, Optional, TextIO, Union

from b64pipe.codec.alphabet import Alphabet, get_alphabet
from b64pipe.codec.decoder import StreamingDecoder, decode
from b64pipe.codec.validator import PayloadValidator
from b64pipe.config import get_settings
from b64pipe.extractors import iter_spans
from b64pipe.io.sinks import SinkFactory
from b64pipe.io.sources import InputSource
from b64pipe.models import (
    AlphabetName,
    DecodeFailure,
    ErrorKind,
    ExtractorSpec,
    PayloadResult,
    PayloadSpan,
    RawSpec,
    RunReport,
)
from b64pipe.utils.errors import (
    B64PipeError,
    ConfigurationError,
    MalformedDocumentError,
    NoPayloadFoundError,
    PayloadValidationError,
    SinkWriteError,
    SourceReadError,
)
from b64pipe.utils.logging import LogContext, get_logger, log_performance

logger = get_logger(__name__)


def _failure(index: int, span: PayloadSpan, error: B64PipeError) -> PayloadResult:
    offset = error.offset
    return PayloadResult.for_span(
        index,
        span,
        failure=DecodeFailure(
            kind=error.kind,
            message=error.message,
            offset=offset,
            source_offset=None if offset is None else span.source_offset(offset),
        ),
    )


class DecodePipeline:
    """
    Extract, validate and decode every Base64 payload in a source.

    Payloads are independent: a payload that fails validation, decoding or
    writing is reported and the run moves on to the next one. Only a source
    that cannot be read ends the run early.
    """

    def __init__(
        self,
        alphabet: Optional[Union[str, AlphabetName, Alphabet]] = None,
        repair_padding: Optional[bool] = None,
        chunk_size: Optional[int] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        """
        Initialize the pipeline.

        Unset arguments fall back to the configured settings.

        Args:
            alphabet: Alphabet payloads are expected to use
            repair_padding: Pad short final groups instead of rejecting them
            chunk_size: Characters handed to the decoder at a time
            max_workers: Payloads decoded concurrently
        """
        self.settings = get_settings()

        try:
            self.alphabet = get_alphabet(alphabet or self.settings.alphabet)
        except ValueError as e:
            raise ConfigurationError(str(e))
        self.repair_padding = (
            self.settings.repair_padding if repair_padding is None else repair_padding
        )
        self.chunk_size = chunk_size or self.settings.chunk_size
        self.max_workers = max_workers or self.settings.max_workers
        if self.chunk_size <= 0:
            raise ConfigurationError("chunk_size must be positive", {"chunk_size": chunk_size})
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1", {"max_workers": max_workers})

        self.validator = PayloadValidator(self.alphabet, repair_padding=self.repair_padding)

    @log_performance
    def run(
        self,
        source: InputSource,
        extractor_spec: ExtractorSpec,
        sink_factory: SinkFactory,
    ) -> RunReport:
        """
        Decode every payload the extractor finds in ``source``.

        Args:
            source: Input to scan
            extractor_spec: Which extractor to use and its options
            sink_factory: Provides the output sink of each payload

        Returns:
            RunReport with one result per payload, in discovery order

        Raises:
            SourceReadError: If the source cannot be opened or read
        """
        started = time.perf_counter()
        source_id = source.source_id
        results: List[PayloadResult] = []
        malformed: List[MalformedDocumentError] = []

        logger.info(f"Scanning {source_id} for {extractor_spec.kind.value} payloads")

        with LogContext(source_id=source_id):
            try:
                with source.open() as stream:
                    spans = self._discover(stream, extractor_spec, source_id, malformed)
                    if self.max_workers > 1 and not sink_factory.shared:
                        results = self._decode_concurrently(spans, sink_factory)
                    else:
                        results = [
                            self.decode_span(index, span, sink_factory)
                            for index, span in enumerate(spans)
                        ]
            finally:
                sink_factory.finalize()

        if malformed:
            error = malformed[0]
            logger.error(f"Stopped scanning {source_id}: {error.message}")
            results.append(
                PayloadResult(
                    index=len(results),
                    source_id=source_id,
                    kind=extractor_spec.kind,
                    start=error.offset,
                    failure=DecodeFailure(
                        kind=ErrorKind.MALFORMED_DOCUMENT,
                        message=error.message,
                        offset=error.offset,
                        source_offset=error.offset,
                    ),
                )
            )
        elif not results:
            error = NoPayloadFoundError(source_id)
            logger.warning(error.message)
            results.append(
                PayloadResult(
                    index=0,
                    source_id=source_id,
                    kind=extractor_spec.kind,
                    failure=DecodeFailure(kind=error.kind, message=error.message),
                )
            )

        report = RunReport(
            source_id=source_id,
            extractor=extractor_spec.kind,
            results=results,
            duration_seconds=time.perf_counter() - started,
        )
        logger.info(
            f"{source_id}: {len(report.succeeded)}/{len(results)} payload(s) decoded "
            f"({report.status.value})"
        )
        return report

    def _discover(
        self,
        stream: TextIO,
        spec: ExtractorSpec,
        source_id: str,
        malformed: List[MalformedDocumentError],
    ) -> Iterator[PayloadSpan]:
        """Yield spans, turning read failures into ``SourceReadError``."""
        if isinstance(spec, RawSpec) and spec.chunk_size is None:
            spec = spec.model_copy(update={"chunk_size": self.chunk_size})
        try:
            yield from iter_spans(stream, spec, source_id, self.alphabet)
        except MalformedDocumentError as e:
            malformed.append(e)
        except (OSError, UnicodeDecodeError) as e:
            raise SourceReadError(source_id, str(e)) from e

    def _decode_concurrently(
        self,
        spans: Iterator[PayloadSpan],
        sink_factory: SinkFactory,
    ) -> List[PayloadResult]:
        """Decode spans on a thread pool, keeping at most two per worker in flight."""
        results: List[PayloadResult] = []
        in_flight: Deque[Future] = deque()
        limit = self.max_workers * 2

        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="b64pipe"
        ) as executor:
            for index, span in enumerate(spans):
                in_flight.append(executor.submit(self.decode_span, index, span, sink_factory))
                if len(in_flight) >= limit:
                    results.append(in_flight.popleft().result())
            while in_flight:
                results.append(in_flight.popleft().result())

        return results

    def decode_span(
        self,
        index: int,
        span: PayloadSpan,
        sink_factory: SinkFactory,
    ) -> PayloadResult:
        """
        Validate, decode and write one payload.

        A materialized span is validated before its sink is opened, so an
        invalid payload produces no output at all. A streamed span is
        validated as it is decoded and its sink is aborted on failure.

        Args:
            index: Discovery index of the span
            span: Payload span to decode
            sink_factory: Provides the output sink

        Returns:
            PayloadResult describing the outcome

        Raises:
            SourceReadError: If a streamed span cannot be read
        """
        extra = {"payload_index": index}
        label = f"payload {index} at {span.describe()}"

        try:
            if span.streamed:
                chunks = self.validator.iter_clean(span.iter_chunks(self.chunk_size))
            else:
                clean = self.validator.validate(span.raw_text)
                chunks = clean.iter_chunks(self.chunk_size)
        except PayloadValidationError as e:
            logger.warning(f"Rejected {label}: {e.message}", extra=extra)
            return _failure(index, span, e)

        try:
            sink = sink_factory(index, span)
        except SinkWriteError as e:
            logger.error(f"Could not open output for {label}: {e.message}", extra=extra)
            return _failure(index, span, e)

        decoder = StreamingDecoder(self.alphabet)
        try:
            for chunk in chunks:
                data = decoder.feed(chunk)
                if data:
                    sink.write(data)
            tail = decoder.finish()
            if tail:
                sink.write(tail)
            sink.close()
        except PayloadValidationError as e:
            sink.abort()
            logger.warning(f"Rejected {label}: {e.message}", extra=extra)
            return _failure(index, span, e)
        except SinkWriteError as e:
            sink.abort()
            logger.error(f"Output failed for {label}: {e.message}", extra=extra)
            return _failure(index, span, e)
        except (OSError, UnicodeDecodeError) as e:
            sink.abort()
            raise SourceReadError(span.source_id, str(e)) from e
        except Exception:
            sink.abort()
            raise

        logger.info(
            f"Decoded {label}: {sink.bytes_written} bytes -> {sink.destination}", extra=extra
        )
        return PayloadResult.for_span(
            index,
            span,
            bytes_written=sink.bytes_written,
            destination=sink.destination,
        )

    def decode_text(self, text: str) -> bytes:
        """
        Decode one inline Base64 string.

        Raises:
            InvalidCharacterError: For a character that is not allowed
            InvalidLengthError: If the length cannot be made a multiple of 4
        """
        clean = self.validator.validate(text)
        return decode(clean.text, self.alphabet)
