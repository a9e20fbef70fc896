"""Unit tests for archive stream wrappers."""

from __future__ import annotations

import io

import pytest

from archive.streams import ClosingStream, PipeArchiveReader
from core.errors import StrataExportError, StrataIDMappingError


def test_pipe_reader_returns_produced_bytes() -> None:
    """Bytes written by the producer should be readable in order."""

    def _produce(writer) -> None:
        writer.write(b"abc")
        writer.write(b"def")

    reader = PipeArchiveReader(_produce, name="test")

    payload = reader.read()
    reader.close()

    assert payload == b"abcdef"


def test_pipe_reader_raises_producer_failure_at_end_of_stream() -> None:
    """A producer exception should surface as an export error."""

    def _produce(writer) -> None:
        writer.write(b"abc")
        raise RuntimeError("disk vanished")

    reader = PipeArchiveReader(_produce, name="test")

    with pytest.raises(StrataExportError, match="disk vanished"):
        reader.read()
    reader.close()


def test_pipe_reader_keeps_domain_errors_unwrapped() -> None:
    """Strata errors raised by the producer should pass through unchanged."""

    def _produce(writer) -> None:
        raise StrataIDMappingError("uid 7 is unmapped")

    reader = PipeArchiveReader(_produce, name="test")

    with pytest.raises(StrataIDMappingError):
        reader.read()
    reader.close()


def test_closing_stream_runs_hook_once() -> None:
    """Closing twice should run the close hook a single time."""
    calls: list[str] = []
    stream = ClosingStream(io.BytesIO(b"data"), lambda: calls.append("closed"))

    stream.close()
    stream.close()

    assert calls == ["closed"]


def test_closing_stream_rejects_reads_after_close() -> None:
    """Reading a closed stream should fail like a closed file."""
    stream = ClosingStream(io.BytesIO(b"data"), lambda: None)
    stream.close()

    with pytest.raises(ValueError):
        stream.read()


def test_closing_stream_closes_on_context_exit() -> None:
    """The context manager should close the stream and run the hook."""
    calls: list[str] = []

    with ClosingStream(io.BytesIO(b"data"), lambda: calls.append("closed")) as stream:
        payload = stream.read()

    assert payload == b"data" and calls == ["closed"] and stream.closed
