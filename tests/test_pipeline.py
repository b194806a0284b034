"""
Tests for the decode pipeline orchestrator.
"""

import base64
from typing import List

import pytest

from b64pipe.codec import URLSAFE
from b64pipe.io.sinks import DirectorySinkFactory, MemorySinkFactory, NullSinkFactory, OutputSink
from b64pipe.io.sources import FileSource, StreamSource, TextSource
from b64pipe.models import (
    DataURISpec,
    DelimitedBlockSpec,
    ErrorKind,
    ExtractorKind,
    MimeHeaderSpec,
    PayloadSpan,
    RawSpec,
    RunStatus,
    StructuredFieldSpec,
)
from b64pipe.pipeline import DecodePipeline
from b64pipe.utils.errors import ConfigurationError, InvalidCharacterError, SourceReadError


class FailingSink(OutputSink):
    """Sink whose writes always fail."""

    def __init__(self) -> None:
        super().__init__("<failing>")
        self.aborted = False

    def _write(self, data: bytes) -> None:
        raise OSError("disk full")

    def _abort(self) -> None:
        self.aborted = True


class FailFirstSinkFactory(MemorySinkFactory):
    """Memory sinks, except the first payload's sink fails."""

    def __init__(self) -> None:
        super().__init__()
        self.failing: List[FailingSink] = []

    def __call__(self, index, span):
        if index == 0:
            sink = FailingSink()
            self.failing.append(sink)
            return sink
        return super().__call__(index, span)


class LazyBase64Stream:
    """Text stream producing a large Base64 payload on demand."""

    def __init__(self, groups: int) -> None:
        self.remaining = groups * 4
        self.max_request = 0
        self.closed = False

    def read(self, size: int = -1) -> str:
        self.max_request = max(self.max_request, size)
        n = self.remaining if size < 0 else min(size - size % 4, self.remaining)
        self.remaining -= n
        return "QUFB" * (n // 4)


class TestDecodePipeline:
    """Test end-to-end runs over in-memory sources."""

    @pytest.fixture
    def pipeline(self):
        return DecodePipeline()

    def test_delimited_block(self, pipeline):
        sinks = MemorySinkFactory()
        report = pipeline.run(
            TextSource("BEGIN BASE64\nVGVzdA==\nEND BASE64\n"), DelimitedBlockSpec(), sinks
        )

        assert sinks.outputs() == [b"Test"]
        assert report.status == RunStatus.SUCCESS
        assert report.exit_code == 0
        result = report.results[0]
        assert result.ok
        assert result.bytes_written == 4
        assert (result.start, result.end) == (13, 22)

    def test_data_uri(self, pipeline):
        sinks = MemorySinkFactory()
        report = pipeline.run(
            TextSource('<img src="data:image/png;base64,iVBORw0KGgo=">'), DataURISpec(), sinks
        )

        assert report.results[0].metadata["mime_type"] == "image/png"
        assert sinks.outputs() == [b"\x89PNG\r\n\x1a\n"]

    def test_no_payload_found(self, pipeline):
        report = pipeline.run(TextSource("nothing to see\n"), DelimitedBlockSpec(), MemorySinkFactory())

        assert len(report.results) == 1
        result = report.results[0]
        assert result.index == 0
        assert result.failure.kind == ErrorKind.NO_PAYLOAD_FOUND
        assert report.status == RunStatus.TOTAL_FAILURE
        assert report.exit_code == 2

    def test_failures_are_isolated(self, pipeline):
        text = (
            "BEGIN BASE64\nVG*z\nEND BASE64\n"
            "BEGIN BASE64\nVGVzdA==\nEND BASE64\n"
            "BEGIN BASE64\nVGVzdA\nEND BASE64\n"
        )
        sinks = MemorySinkFactory()
        report = pipeline.run(TextSource(text), DelimitedBlockSpec(), sinks)

        assert [r.index for r in report.results] == [0, 1, 2]
        first, second, third = report.results
        assert first.failure.kind == ErrorKind.INVALID_CHARACTER
        assert first.failure.offset == 2
        assert second.ok
        assert third.failure.kind == ErrorKind.INVALID_LENGTH
        # Invalid payloads are rejected before a sink is opened
        assert sinks.outputs() == [b"Test"]
        assert report.status == RunStatus.PARTIAL_FAILURE
        assert report.exit_code == 1

    def test_every_payload_failing_is_total_failure(self, pipeline):
        text = "BEGIN BASE64\n!!!!\nEND BASE64\n"
        report = pipeline.run(TextSource(text), DelimitedBlockSpec(), MemorySinkFactory())

        assert report.status == RunStatus.TOTAL_FAILURE

    def test_repair_mode(self):
        sinks = MemorySinkFactory()
        DecodePipeline(repair_padding=True).run(
            TextSource("BEGIN BASE64\nVGVzdA\nEND BASE64\n"), DelimitedBlockSpec(), sinks
        )

        assert sinks.outputs() == [b"Test"]

    def test_urlsafe_alphabet(self):
        sinks = MemorySinkFactory()
        DecodePipeline(alphabet=URLSAFE).run(
            TextSource('{"blob": "-__-"}'), StructuredFieldSpec(field_path="blob"), sinks
        )

        assert sinks.outputs() == [b"\xfb\xff\xfe"]

    def test_malformed_document_keeps_earlier_results(self, pipeline):
        text = '{"a": "QQ=="}\n{"a": '
        report = pipeline.run(TextSource(text), StructuredFieldSpec(field_path="a"), MemorySinkFactory())

        assert len(report.results) == 2
        assert report.results[0].ok
        assert report.results[1].failure.kind == ErrorKind.MALFORMED_DOCUMENT
        assert report.results[1].index == 1
        assert report.status == RunStatus.PARTIAL_FAILURE

    def test_sink_failure_aborts_only_that_payload(self, pipeline):
        text = "BEGIN BASE64\nQUJD\nEND BASE64\nBEGIN BASE64\nREVG\nEND BASE64\n"
        sinks = FailFirstSinkFactory()
        report = pipeline.run(TextSource(text), DelimitedBlockSpec(), sinks)

        assert report.results[0].failure.kind == ErrorKind.SINK_WRITE_ERROR
        assert sinks.failing[0].aborted
        assert report.results[1].ok
        assert sinks.outputs() == [b"DEF"]

    def test_mime_attachment_to_directory(self, pipeline, temp_dir):
        text = (
            "Content-Type: text/plain\n"
            "Content-Transfer-Encoding: base64\n"
            'Content-Disposition: attachment; filename="../../notes.txt"\n'
            "\n"
            "aGVsbG8=\n"
        )
        sinks = DirectorySinkFactory(temp_dir / "out")
        report = pipeline.run(TextSource(text), MimeHeaderSpec(), sinks)

        target = temp_dir / "out" / "000_notes.txt"
        assert report.results[0].destination == str(target)
        assert target.read_bytes() == b"hello"
        assert not list((temp_dir / "out").glob("*.part"))

    def test_concurrent_workers_keep_discovery_order(self):
        payloads = [f"payload number {i}".encode() for i in range(20)]
        blocks = "".join(
            f"BEGIN BASE64\n{base64.b64encode(p).decode()}\nEND BASE64\n"
            for p in payloads
        )
        sinks = MemorySinkFactory()
        report = DecodePipeline(max_workers=4).run(TextSource(blocks), DelimitedBlockSpec(), sinks)

        assert [r.index for r in report.results] == list(range(20))
        by_destination = {sink.destination: sink.getvalue() for sink in sinks.sinks}
        for i, result in enumerate(report.results):
            assert result.ok
            assert by_destination[result.destination] == payloads[i]

    def test_raw_input_streams_in_bounded_chunks(self, monkeypatch):
        monkeypatch.setenv("B64PIPE_CHUNK_SIZE", "4096")
        stream = LazyBase64Stream(groups=250_000)
        report = DecodePipeline().run(StreamSource(stream, "<lazy>"), RawSpec(), NullSinkFactory())

        assert report.status == RunStatus.SUCCESS
        assert report.results[0].bytes_written == 750_000
        assert stream.max_request <= 4096

    def test_raw_input_failure_aborts_sink(self, pipeline):
        sinks = MemorySinkFactory()
        report = pipeline.run(TextSource("VGVz\nd*=="), RawSpec(), sinks)

        failure = report.results[0].failure
        assert failure.kind == ErrorKind.INVALID_CHARACTER
        assert failure.offset == 6
        assert sinks.sinks[0].aborted

    def test_raw_input_uses_pipeline_chunk_size(self):
        stream = LazyBase64Stream(groups=10_000)
        report = DecodePipeline(chunk_size=1024).run(
            StreamSource(stream, "<lazy>"), RawSpec(), NullSinkFactory()
        )

        assert report.results[0].bytes_written == 30_000
        assert report.results[0].metadata["chunk_size"] == 1024
        assert stream.max_request <= 1024

    def test_json_failure_offset_points_into_source(self, pipeline):
        text = r'{"a": "\/\/\/*"}'
        report = pipeline.run(TextSource(text), StructuredFieldSpec(field_path="a"), MemorySinkFactory())

        failure = report.results[0].failure
        assert failure.kind == ErrorKind.INVALID_CHARACTER
        assert failure.offset == 3
        assert text[failure.source_offset] == "*"

    def test_delimited_failure_source_offset(self, pipeline):
        text = "BEGIN BASE64\nVGVz\nd*==\nEND BASE64\n"
        report = pipeline.run(TextSource(text), DelimitedBlockSpec(), MemorySinkFactory())

        failure = report.results[0].failure
        assert text[failure.source_offset] == "*"

    def test_failed_rename_leaves_no_part_file(self, pipeline, temp_dir):
        out = temp_dir / "out"
        (out / "payload_000.bin").mkdir(parents=True)

        report = pipeline.run(
            TextSource("BEGIN BASE64\nQUJD\nEND BASE64\n"), DelimitedBlockSpec(), DirectorySinkFactory(out)
        )

        assert report.results[0].failure.kind == ErrorKind.SINK_WRITE_ERROR
        assert not list(out.glob("*.part"))

    def test_missing_file_is_fatal(self, pipeline, temp_dir):
        with pytest.raises(SourceReadError):
            pipeline.run(FileSource(temp_dir / "missing.txt"), DelimitedBlockSpec(), MemorySinkFactory())

    def test_decode_span_directly(self, pipeline):
        span = PayloadSpan(source_id="<api>", kind=ExtractorKind.RAW, start=0, raw_text="QUJD")
        sinks = MemorySinkFactory()
        result = pipeline.decode_span(5, span, sinks)

        assert result.index == 5
        assert sinks.outputs() == [b"ABC"]

    def test_decode_text(self, pipeline):
        assert pipeline.decode_text("VGhpcyBpcyBhIHRlc3Qu") == b"This is a test."
        with pytest.raises(InvalidCharacterError):
            pipeline.decode_text("VG*z")

    def test_invalid_configuration(self):
        with pytest.raises(ConfigurationError):
            DecodePipeline(alphabet="base32")
        with pytest.raises(ConfigurationError):
            DecodePipeline(max_workers=-1)

    def test_settings_defaults(self, monkeypatch):
        monkeypatch.setenv("B64PIPE_REPAIR_PADDING", "true")
        monkeypatch.setenv("B64PIPE_ALPHABET", "urlsafe")
        pipeline = DecodePipeline()

        assert pipeline.repair_padding is True
        assert pipeline.alphabet is URLSAFE
        assert pipeline.decode_text("-__-") == b"\xfb\xff\xfe"
