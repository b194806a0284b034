"""
Output sinks for decoded payloads.

Every payload is written to a sink obtained from a sink factory. A sink is
finished with ``close()`` when the payload decoded completely, or with
``abort()`` when it failed part way, which discards whatever can be
discarded (a partially written file is removed).
"""

import io
import mimetypes
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, List, Optional, Protocol, Union

from b64pipe.config import check_output_template, get_settings
from b64pipe.models import PayloadSpan
from b64pipe.utils.errors import ConfigurationError, SinkWriteError
from b64pipe.utils.logging import get_logger

logger = get_logger(__name__)


class OutputSink(ABC):
    """Abstract byte sink for one payload."""

    def __init__(self, destination: str) -> None:
        self.destination = destination
        self.bytes_written = 0
        self.closed = False

    def write(self, data: bytes) -> None:
        """
        Append decoded bytes.

        Raises:
            SinkWriteError: If the underlying write fails
        """
        if self.closed:
            raise SinkWriteError(self.destination, "sink already closed")
        try:
            self._write(data)
        except OSError as e:
            raise SinkWriteError(self.destination, str(e)) from e
        self.bytes_written += len(data)

    def close(self) -> None:
        """
        Flush and mark the output complete.

        Raises:
            SinkWriteError: If the output cannot be finished; it is discarded
        """
        if self.closed:
            return
        self.closed = True
        try:
            self._close()
        except OSError as e:
            # A sink that could not be finished is discarded like an aborted one
            try:
                self._abort()
            except OSError as cleanup_error:
                logger.warning(
                    f"Could not discard partial output at {self.destination}: {cleanup_error}"
                )
            raise SinkWriteError(self.destination, str(e)) from e

    def abort(self) -> None:
        """Discard partial output. Never raises."""
        if self.closed:
            return
        self.closed = True
        try:
            self._abort()
        except OSError as e:
            logger.warning(f"Could not discard partial output at {self.destination}: {e}")

    @abstractmethod
    def _write(self, data: bytes) -> None:
        pass

    def _close(self) -> None:
        pass

    def _abort(self) -> None:
        pass


class FileSink(OutputSink):
    """
    Write to a file through a ``.part`` temporary that is renamed on close.

    The final path therefore only ever holds complete output.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        super().__init__(str(self.path))
        self.part_path = self.path.with_name(self.path.name + ".part")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._handle: BinaryIO = open(self.part_path, "wb")
        except OSError as e:
            raise SinkWriteError(self.destination, str(e)) from e

    def _write(self, data: bytes) -> None:
        self._handle.write(data)

    def _close(self) -> None:
        self._handle.close()
        os.replace(self.part_path, self.path)

    def _abort(self) -> None:
        self._handle.close()
        self.part_path.unlink(missing_ok=True)


class MemorySink(OutputSink):
    """Collect bytes in memory."""

    def __init__(self, destination: str = "<memory>") -> None:
        super().__init__(destination)
        self._buffer = io.BytesIO()
        self.aborted = False

    def _write(self, data: bytes) -> None:
        self._buffer.write(data)

    def _abort(self) -> None:
        self.aborted = True

    def getvalue(self) -> bytes:
        return self._buffer.getvalue()


class StreamSink(OutputSink):
    """Write to an open binary stream (e.g. stdout); the stream stays open."""

    def __init__(self, stream: BinaryIO, destination: str = "<stdout>") -> None:
        super().__init__(destination)
        self.stream = stream

    def _write(self, data: bytes) -> None:
        self.stream.write(data)

    def _close(self) -> None:
        self.stream.flush()

    def _abort(self) -> None:
        # Bytes already handed to a stream cannot be withdrawn
        self.stream.flush()


class NullSink(OutputSink):
    """Count bytes and drop them."""

    def __init__(self) -> None:
        super().__init__("<null>")

    def _write(self, data: bytes) -> None:
        pass


# =============================================================================
# Sink Factories
# =============================================================================


class SinkFactory(Protocol):
    """Produces the sink for each payload of a run."""

    shared: bool

    def __call__(self, index: int, span: PayloadSpan) -> OutputSink:
        ...

    def finalize(self) -> None:
        ...


class DirectorySinkFactory:
    """
    One file per payload inside a directory.

    File names come from ``template`` (formatted with ``index`` and ``ext``),
    where ``ext`` is guessed from a ``mime_type``/``content_type`` in the
    span metadata. A ``filename`` in the metadata (MIME attachments) wins,
    reduced to its base name and prefixed with the index.
    """

    shared = False

    def __init__(
        self,
        directory: Optional[Union[str, Path]] = None,
        template: Optional[str] = None,
        use_filenames: bool = True,
    ) -> None:
        settings = get_settings()
        self.directory = Path(directory or settings.output_dir)
        self.template = template or settings.output_template
        try:
            check_output_template(self.template)
        except ValueError as e:
            raise ConfigurationError(str(e), {"template": self.template}) from e
        self.use_filenames = use_filenames
        self.paths: List[Path] = []

    def path_for(self, index: int, span: PayloadSpan) -> Path:
        filename = os.path.basename(str(span.metadata.get("filename") or ""))
        if self.use_filenames and filename and filename not in (".", ".."):
            return self.directory / f"{index:03d}_{filename}"

        mime = span.metadata.get("mime_type") or span.metadata.get("content_type")
        ext = (mimetypes.guess_extension(mime) if mime else None) or ".bin"
        return self.directory / self.template.format(index=index, ext=ext)

    def __call__(self, index: int, span: PayloadSpan) -> OutputSink:
        path = self.path_for(index, span)
        self.paths.append(path)
        return FileSink(path)

    def finalize(self) -> None:
        pass


class _SharedSinkView(OutputSink):
    """Per-payload handle on a shared sink, holding the write lock until finished."""

    def __init__(self, target: OutputSink, lock: threading.Lock) -> None:
        super().__init__(target.destination)
        self._target = target
        self._lock = lock
        self._lock.acquire()

    def _write(self, data: bytes) -> None:
        self._target.write(data)

    def _close(self) -> None:
        self._lock.release()

    def _abort(self) -> None:
        self._lock.release()


class SharedSinkFactory:
    """All payloads go to one sink, one payload at a time."""

    shared = True

    def __init__(self, sink: OutputSink) -> None:
        self.sink = sink
        self._lock = threading.Lock()

    def __call__(self, index: int, span: PayloadSpan) -> OutputSink:
        return _SharedSinkView(self.sink, self._lock)

    def finalize(self) -> None:
        self.sink.close()


class MemorySinkFactory:
    """A fresh ``MemorySink`` per payload, kept for inspection."""

    shared = False

    def __init__(self) -> None:
        self.sinks: List[MemorySink] = []

    def __call__(self, index: int, span: PayloadSpan) -> OutputSink:
        sink = MemorySink(f"<memory:{index}>")
        self.sinks.append(sink)
        return sink

    def finalize(self) -> None:
        pass

    def outputs(self) -> List[bytes]:
        return [sink.getvalue() for sink in self.sinks]


class NullSinkFactory:
    """Discard all output; used to check payloads without writing."""

    shared = False

    def __call__(self, index: int, span: PayloadSpan) -> OutputSink:
        return NullSink()

    def finalize(self) -> None:
        pass
