"""
Input sources for the pipeline.

A source only has to provide sequential text reads. Files are opened with
newline translation disabled so span offsets match the characters on disk.
"""

import io
import sys
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, TextIO, Union

from b64pipe.config import get_settings
from b64pipe.utils.errors import SourceReadError
from b64pipe.utils.logging import get_logger

logger = get_logger(__name__)


class InputSource(ABC):
    """Abstract readable text source."""

    def __init__(self, source_id: str) -> None:
        self.source_id = source_id

    @abstractmethod
    def open(self) -> Iterator[TextIO]:
        """
        Open the source for sequential reading.

        Used as a context manager; the stream is released on exit.

        Raises:
            SourceReadError: If the source is missing or unreadable
        """
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.source_id!r})"


class FileSource(InputSource):
    """Text file on the local file system."""

    def __init__(
        self,
        path: Union[str, Path],
        encoding: Optional[str] = None,
        errors: Optional[str] = None,
    ) -> None:
        self.path = Path(path)
        super().__init__(str(self.path))
        settings = get_settings()
        self.encoding = encoding or settings.encoding
        self.errors = errors or settings.encoding_errors

    @contextmanager
    def open(self) -> Iterator[TextIO]:
        if not self.path.is_file():
            raise SourceReadError(self.source_id, "no such file")
        try:
            stream = open(self.path, "r", encoding=self.encoding, errors=self.errors, newline="")
        except (OSError, LookupError) as e:
            raise SourceReadError(self.source_id, str(e)) from e

        logger.debug(f"Opened {self.path} ({self.path.stat().st_size} bytes)")
        with stream:
            yield stream


class TextSource(InputSource):
    """In-memory text, mainly for the API and tests."""

    def __init__(self, text: str, name: str = "<text>") -> None:
        super().__init__(name)
        self.text = text

    @contextmanager
    def open(self) -> Iterator[TextIO]:
        with io.StringIO(self.text, newline="") as stream:
            yield stream


class StreamSource(InputSource):
    """An already open text stream such as stdin; it is not closed on exit."""

    def __init__(self, stream: TextIO, name: str = "<stdin>") -> None:
        super().__init__(name)
        self.stream = stream

    @contextmanager
    def open(self) -> Iterator[TextIO]:
        if self.stream.closed:
            raise SourceReadError(self.source_id, "stream is closed")
        yield self.stream


def open_source(spec: Union[str, Path], encoding: Optional[str] = None) -> InputSource:
    """
    Build a source from a command-line style specification.

    Args:
        spec: File path, or ``-`` for standard input
        encoding: Optional text encoding override

    Returns:
        InputSource for the specification
    """
    if str(spec) == "-":
        settings = get_settings()
        stdin = sys.stdin
        buffer = getattr(stdin, "buffer", None)
        if buffer is not None:
            stdin = io.TextIOWrapper(
                buffer,
                encoding=encoding or settings.encoding,
                errors=settings.encoding_errors,
                newline="",
            )
        return StreamSource(stdin)
    return FileSource(spec, encoding=encoding)
