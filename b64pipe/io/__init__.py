"""
Input sources and output sinks used by the pipeline.
"""

from b64pipe.io.sinks import (
    DirectorySinkFactory,
    FileSink,
    MemorySink,
    MemorySinkFactory,
    NullSink,
    NullSinkFactory,
    OutputSink,
    SharedSinkFactory,
    SinkFactory,
    StreamSink,
)
from b64pipe.io.sources import FileSource, InputSource, StreamSource, TextSource, open_source

__all__ = [
    "InputSource",
    "FileSource",
    "TextSource",
    "StreamSource",
    "open_source",
    "OutputSink",
    "FileSink",
    "MemorySink",
    "StreamSink",
    "NullSink",
    "SinkFactory",
    "DirectorySinkFactory",
    "SharedSinkFactory",
    "MemorySinkFactory",
    "NullSinkFactory",
]
