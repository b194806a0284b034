"""
Tests for the command-line interface.
"""

import json

import pytest
from typer.testing import CliRunner

from b64pipe.cli import app


@pytest.fixture
def runner(monkeypatch):
    """CLI runner with logging quiet enough to keep stdout clean."""
    monkeypatch.setenv("B64PIPE_LOG_LEVEL", "ERROR")
    return CliRunner()


class TestDecodeCommand:
    """Test the decode command."""

    def test_decode_to_directory(self, runner, delimited_file, temp_dir):
        out_dir = temp_dir / "out"
        result = runner.invoke(app, ["decode", str(delimited_file), "-o", str(out_dir)])

        # One valid and one invalid block
        assert result.exit_code == 1
        assert (out_dir / "payload_000.bin").read_bytes() == b"This is a test."
        assert not (out_dir / "payload_001.bin").exists()

    def test_json_report(self, runner, temp_dir):
        source = temp_dir / "page.html"
        source.write_text('<img src="data:image/png;base64,iVBORw0KGgo=">\n')
        out_dir = temp_dir / "out"

        result = runner.invoke(
            app, ["decode", str(source), "-k", "data-uri", "-o", str(out_dir), "--json"]
        )

        assert result.exit_code == 0
        report = json.loads(result.stdout)
        assert report["status"] == "success"
        assert report["results"][0]["metadata"]["mime_type"] == "image/png"
        assert report["results"][0]["bytes_written"] == 8
        assert (out_dir / "payload_000.png").exists()

    def test_decode_to_stdout(self, runner, temp_dir):
        source = temp_dir / "doc.json"
        source.write_text('{"files": [{"body": "QUJD"}, {"body": "REVG"}]}')

        result = runner.invoke(
            app, ["decode", str(source), "--kind", "json", "--field", "files[*].body", "--stdout"]
        )

        assert result.exit_code == 0
        assert b"ABCDEF" in result.stdout_bytes

    def test_no_payload_exit_code(self, runner, temp_dir):
        source = temp_dir / "empty.txt"
        source.write_text("no payloads here\n")

        result = runner.invoke(app, ["decode", str(source), "-o", str(temp_dir / "out"), "--json"])

        assert result.exit_code == 2
        report = json.loads(result.stdout)
        assert len(report["results"]) == 1
        assert report["results"][0]["failure"]["kind"] == "no_payload_found"

    def test_missing_source(self, runner, temp_dir):
        result = runner.invoke(app, ["decode", str(temp_dir / "missing.txt")])

        assert result.exit_code == 2

    def test_bad_field_selector(self, runner, temp_dir):
        source = temp_dir / "doc.json"
        source.write_text("{}")

        result = runner.invoke(app, ["decode", str(source), "-k", "json", "--field", "a..b"])

        assert result.exit_code == 2

    def test_custom_markers_and_repair(self, runner, temp_dir):
        source = temp_dir / "key.pem"
        source.write_text("-----BEGIN KEY-----\nVGVzdA\n-----END KEY-----\n")
        out_dir = temp_dir / "out"

        strict = runner.invoke(
            app,
            ["decode", str(source), "--start", "BEGIN KEY", "--end", "END KEY", "-o", str(out_dir)],
        )
        repaired = runner.invoke(
            app,
            [
                "decode",
                str(source),
                "--start",
                "BEGIN KEY",
                "--end",
                "END KEY",
                "--repair",
                "-o",
                str(out_dir),
            ],
        )

        assert strict.exit_code == 2
        assert repaired.exit_code == 0
        assert (out_dir / "payload_000.bin").read_bytes() == b"Test"


class TestInlineCommand:
    """Test the inline command."""

    def test_inline(self, runner):
        result = runner.invoke(app, ["inline", "VGhpcyBpcyBhIHRlc3Qu"])

        assert result.exit_code == 0
        assert result.stdout_bytes == b"This is a test."

    def test_inline_from_stdin(self, runner):
        result = runner.invoke(app, ["inline", "-"], input="VGVz\ndA==\n")

        assert result.exit_code == 0
        assert result.stdout_bytes == b"Test"

    def test_inline_urlsafe(self, runner):
        result = runner.invoke(app, ["inline", "--alphabet", "urlsafe", "--", "-__-"])

        assert result.exit_code == 0
        assert result.stdout_bytes == b"\xfb\xff\xfe"

    def test_inline_invalid(self, runner):
        result = runner.invoke(app, ["inline", "VG*z"])

        assert result.exit_code == 2

    def test_debug_flag(self, runner):
        result = runner.invoke(app, ["--debug", "inline", "QUJD"])

        assert result.exit_code == 0
        assert b"ABC" in result.stdout_bytes


class TestScanCommand:
    """Test the scan command."""

    def test_scan_writes_nothing(self, runner, delimited_file, temp_dir, monkeypatch):
        monkeypatch.chdir(temp_dir)

        result = runner.invoke(app, ["scan", str(delimited_file), "--json"])

        assert result.exit_code == 1
        report = json.loads(result.stdout)
        kinds = [r["failure"]["kind"] if r["failure"] else "ok" for r in report["results"]]
        assert kinds == ["ok", "invalid_character"]
        assert not (temp_dir / "decoded").exists()

    def test_scan_table(self, runner, delimited_file):
        result = runner.invoke(app, ["scan", str(delimited_file)])

        assert result.exit_code == 1
        assert "Invalid character" in result.output
