"""
Tests for input sources and output sinks.
"""

import io
import threading

import pytest

from b64pipe.io.sinks import (
    DirectorySinkFactory,
    FileSink,
    MemorySink,
    MemorySinkFactory,
    NullSinkFactory,
    SharedSinkFactory,
    StreamSink,
)
from b64pipe.io.sources import FileSource, StreamSource, TextSource, open_source
from b64pipe.models import ExtractorKind, PayloadSpan
from b64pipe.utils.errors import ConfigurationError, SinkWriteError, SourceReadError


def make_span(**metadata) -> PayloadSpan:
    return PayloadSpan(
        source_id="<test>",
        kind=ExtractorKind.DATA_URI,
        start=0,
        raw_text="",
        metadata=metadata,
    )


class TestSources:
    """Test input sources."""

    def test_file_source_keeps_line_endings(self, temp_dir):
        path = temp_dir / "crlf.txt"
        path.write_bytes(b"line one\r\nline two\r\n")

        with FileSource(path).open() as stream:
            assert stream.read() == "line one\r\nline two\r\n"

    def test_file_source_replaces_undecodable_bytes(self, temp_dir):
        path = temp_dir / "latin1.txt"
        path.write_bytes(b"caf\xe9\n")

        with FileSource(path).open() as stream:
            assert stream.read() == "caf\ufffd\n"

    def test_missing_file(self, temp_dir):
        source = FileSource(temp_dir / "nope.txt")

        with pytest.raises(SourceReadError, match="no such file"):
            with source.open():
                pass

    def test_text_source(self):
        source = TextSource("abc", name="inline")

        assert source.source_id == "inline"
        with source.open() as stream:
            assert stream.read() == "abc"

    def test_stream_source_leaves_stream_open(self):
        stream = io.StringIO("data")
        with StreamSource(stream).open() as opened:
            assert opened.read() == "data"

        assert not stream.closed

    def test_open_source(self, temp_dir, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.TextIOWrapper(io.BytesIO(b"QUJD\r\n")))

        assert isinstance(open_source(temp_dir / "x.txt"), FileSource)
        stdin_source = open_source("-")
        assert isinstance(stdin_source, StreamSource)
        with stdin_source.open() as stream:
            assert stream.read() == "QUJD\r\n"


class TestFileSink:
    """Test atomic file output."""

    def test_close_renames_part_file(self, temp_dir):
        sink = FileSink(temp_dir / "sub" / "out.bin")
        sink.write(b"abc")

        assert sink.part_path.exists()
        assert not sink.path.exists()

        sink.close()

        assert sink.path.read_bytes() == b"abc"
        assert not sink.part_path.exists()
        assert sink.bytes_written == 3

    def test_abort_removes_partial_output(self, temp_dir):
        sink = FileSink(temp_dir / "out.bin")
        sink.write(b"partial")
        sink.abort()

        assert not sink.path.exists()
        assert not sink.part_path.exists()

    def test_failed_close_discards_part_file(self, temp_dir):
        sink = FileSink(temp_dir / "out.bin")
        sink.write(b"abc")
        # A directory in the way makes the final rename fail
        sink.path.mkdir()

        with pytest.raises(SinkWriteError):
            sink.close()

        assert not sink.part_path.exists()
        assert sink.path.is_dir()
        sink.abort()

    def test_write_after_close(self, temp_dir):
        sink = FileSink(temp_dir / "out.bin")
        sink.close()

        with pytest.raises(SinkWriteError):
            sink.write(b"late")

    def test_unwritable_location(self, temp_dir):
        blocker = temp_dir / "file"
        blocker.write_text("not a directory")

        with pytest.raises(SinkWriteError):
            FileSink(blocker / "out.bin")


class TestSinkFactories:
    """Test the per-payload sink factories."""

    def test_directory_names_from_mime_type(self, temp_dir):
        factory = DirectorySinkFactory(temp_dir)

        assert factory.path_for(3, make_span(mime_type="image/png")) == temp_dir / "payload_003.png"
        assert factory.path_for(4, make_span()) == temp_dir / "payload_004.bin"

    def test_directory_sanitizes_filenames(self, temp_dir):
        factory = DirectorySinkFactory(temp_dir)

        assert factory.path_for(0, make_span(filename="../../etc/passwd")) == temp_dir / "000_passwd"
        assert factory.path_for(1, make_span(filename="..")) == temp_dir / "payload_001.bin"

    def test_directory_template(self, temp_dir):
        factory = DirectorySinkFactory(temp_dir, template="blob-{index}{ext}", use_filenames=False)

        assert factory.path_for(7, make_span(filename="a.txt")) == temp_dir / "blob-7.bin"

    def test_directory_defaults_from_settings(self, monkeypatch, temp_dir):
        monkeypatch.setenv("B64PIPE_OUTPUT_DIR", str(temp_dir / "configured"))

        factory = DirectorySinkFactory()

        assert factory.directory == temp_dir / "configured"

    def test_directory_rejects_unknown_placeholder(self, temp_dir):
        with pytest.raises(ConfigurationError):
            DirectorySinkFactory(temp_dir, template="{index}_{name}{ext}")

    def test_shared_sink_serializes_payloads(self):
        target = MemorySink()
        factory = SharedSinkFactory(target)

        first = factory(0, make_span())
        acquired = []
        worker = threading.Thread(target=lambda: acquired.append(factory(1, make_span())))
        worker.start()
        worker.join(timeout=0.2)
        # The second payload waits until the first one is finished
        assert not acquired

        first.write(b"one")
        first.close()
        worker.join(timeout=5)
        second = acquired[0]
        second.write(b"two")
        second.close()
        factory.finalize()

        assert target.getvalue() == b"onetwo"
        assert target.closed

    def test_memory_and_null_factories(self):
        memory = MemorySinkFactory()
        sink = memory(0, make_span())
        sink.write(b"x")
        sink.close()

        assert memory.outputs() == [b"x"]

        null_sink = NullSinkFactory()(0, make_span())
        null_sink.write(b"12345")
        assert null_sink.bytes_written == 5

    def test_stream_sink(self):
        buffer = io.BytesIO()
        sink = StreamSink(buffer)
        sink.write(b"data")
        sink.close()

        assert buffer.getvalue() == b"data"
        assert not buffer.closed
