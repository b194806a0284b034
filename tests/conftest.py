"""
Shared fixtures for b64pipe tests.
"""

import io
import os
from pathlib import Path
from typing import List

import pytest

from b64pipe.config import reset_settings
from b64pipe.extractors import iter_spans
from b64pipe.models import PayloadSpan


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Isolate every test from B64PIPE_* variables and cached settings."""
    for key in list(os.environ):
        if key.startswith("B64PIPE_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def temp_dir(tmp_path) -> Path:
    """Temporary directory for files written by a test."""
    return tmp_path


@pytest.fixture
def delimited_file(temp_dir) -> Path:
    """Text file with two delimited blocks, the second one invalid."""
    path = temp_dir / "dump.log"
    path.write_text(
        "2024-01-01 INFO starting\n"
        "BEGIN BASE64\n"
        "VGhpcyBpcyBh\n"
        "IHRlc3Qu\n"
        "END BASE64\n"
        "some noise\n"
        "BEGIN BASE64\n"
        "VG*z\n"
        "END BASE64\n",
        encoding="utf-8",
    )
    return path


def _scan_text(text: str, spec, source_id: str = "<test>") -> List[PayloadSpan]:
    return list(iter_spans(io.StringIO(text, newline=""), spec, source_id))


@pytest.fixture
def scan_text():
    """Run an extractor over in-memory text and collect the spans."""
    return _scan_text
