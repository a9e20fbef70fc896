"""Readable archive streams.

This module exposes the pipe-backed reader that archive producers write
into, and the close-hook wrapper that ties a stream's lifetime to a layer
mount held by the caller.
"""

from __future__ import annotations

import io
import os
import threading
from typing import BinaryIO, Callable

from core.constants import ARCHIVE_COPY_CHUNK_SIZE
from core.errors import StrataError, StrataExportError
from core.logging_config import get_logger

_LOGGER = get_logger(__name__)

ArchiveProducer = Callable[[BinaryIO], None]


class PipeArchiveReader(io.RawIOBase):
    """Read end of an OS pipe filled by a producer thread.

    The producer receives the buffered write end and owns it for the rest of
    its run. Closing the reader before end of stream makes the producer's
    next write fail with a broken pipe, which ends the producer quietly.
    A producer failure is raised from ``read`` once the stream is drained.
    """

    def __init__(self, producer: ArchiveProducer, name: str) -> None:
        super().__init__()
        read_fd, write_fd = os.pipe()
        self._name = name
        self._reader = os.fdopen(read_fd, "rb", buffering=0)
        self._error: BaseException | None = None
        self._thread = threading.Thread(
            target=self._produce,
            args=(producer, write_fd),
            name=f"archive-{name}",
            daemon=True,
        )
        self._thread.start()

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: bytearray | memoryview) -> int:  # type: ignore[override]
        if self.closed:
            raise ValueError(f"I/O operation on closed archive stream {self._name}")
        count = self._reader.readinto(buffer)
        if not count:
            self._thread.join()
            self._raise_producer_error()
            return 0
        return count

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._reader.close()
            self._thread.join()
        finally:
            super().close()

    def _produce(self, producer: ArchiveProducer, write_fd: int) -> None:
        try:
            with os.fdopen(write_fd, "wb", buffering=ARCHIVE_COPY_CHUNK_SIZE) as writer:
                producer(writer)
        except BrokenPipeError:
            _LOGGER.debug("archive_reader_closed_early", archive=self._name)
        except Exception as error:
            self._error = error
            _LOGGER.debug("archive_producer_failed", archive=self._name, error=str(error))

    def _raise_producer_error(self) -> None:
        error = self._error
        if error is None:
            return
        self._error = None
        if isinstance(error, StrataError):
            raise error
        raise StrataExportError(
            f"Failed to produce archive {self._name}: {error}. "
            "The layer may have changed while it was being archived."
        ) from error


class ClosingStream:
    """Readable stream that runs a hook exactly once when closed.

    The hook is responsible for closing the wrapped stream and for any
    release that must follow it. A second ``close`` is a no-op.
    """

    def __init__(self, stream: BinaryIO, on_close: Callable[[], None]) -> None:
        self._stream = stream
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        self._check_open()
        return self._stream.read(size)

    def readinto(self, buffer: bytearray | memoryview) -> int:
        self._check_open()
        return self._stream.readinto(buffer)  # type: ignore[attr-defined]

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._on_close()

    def __enter__(self) -> "ClosingStream":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("I/O operation on closed diff stream")
