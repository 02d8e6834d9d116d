"""
Bounded in-memory pipe between a producer thread and a consumer.

The writer blocks while the buffer is full and the reader blocks while it is
empty, so memory stays at the buffer capacity no matter how large the stream
is. The writer ends the stream with close(), optionally passing the error
that stopped it; the reader then raises that error instead of seeing a clean
end of stream.
"""

import threading
from typing import Optional, Tuple


# Size of ring buffer between stream handlers
BUFFER_SIZE = 4 * 1024 * 1024


class StreamClosedError(BrokenPipeError):
    """Raised on write after the reading side went away."""
    pass


class StreamBuffer:
    """
    Fixed-capacity byte buffer shared by exactly one writer and one reader.
    """

    def __init__(self, capacity: int = BUFFER_SIZE):
        if capacity < 1:
            raise ValueError(f"Buffer capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._buffer = bytearray()
        self._cond = threading.Condition()
        self._write_closed = False
        self._read_closed = False
        self._error = None
        self.bytes_written = 0
        self.bytes_read = 0

    def write(self, data) -> int:
        view = memoryview(data).cast('B')
        total = len(view)
        offset = 0

        while offset < total:
            with self._cond:
                while len(self._buffer) >= self.capacity and not self._read_closed:
                    self._cond.wait()
                if self._read_closed:
                    raise StreamClosedError("Reader closed the stream")
                if self._write_closed:
                    raise ValueError("Write to closed stream")

                n = min(self.capacity - len(self._buffer), total - offset)
                self._buffer += view[offset:offset + n]
                offset += n
                self.bytes_written += n
                self._cond.notify_all()

        return total

    def read(self, size: int = -1) -> bytes:
        """
        Read up to size bytes, blocking until that many are available or the
        writer closed the stream. size < 0 reads to end of stream.

        Raises:
            Exception: Whatever error the writer closed the stream with
        """
        out = bytearray()

        while size < 0 or len(out) < size:
            with self._cond:
                while not self._buffer and not self._write_closed and self._error is None:
                    self._cond.wait()
                if self._error is not None:
                    raise self._error
                if not self._buffer:
                    break

                n = len(self._buffer) if size < 0 else min(size - len(out), len(self._buffer))
                out += self._buffer[:n]
                del self._buffer[:n]
                self.bytes_read += n
                self._cond.notify_all()

        return bytes(out)

    def close_write(self, error: Optional[BaseException] = None):
        """End the stream; a non-None error is raised to the reader."""
        with self._cond:
            self._write_closed = True
            if error is not None and self._error is None:
                self._error = error
            self._cond.notify_all()

    def close_read(self):
        """Stop reading; a blocked or later write raises StreamClosedError."""
        with self._cond:
            self._read_closed = True
            self._buffer.clear()
            self._cond.notify_all()


class PipeReader:
    """Readable end of a StreamBuffer, usable wherever a binary file is."""

    def __init__(self, buffer: StreamBuffer):
        self._buffer = buffer

    @property
    def bytes_read(self) -> int:
        return self._buffer.bytes_read

    def read(self, size: int = -1) -> bytes:
        if size is None:
            size = -1
        return self._buffer.read(size)

    def readinto(self, b) -> int:
        data = self._buffer.read(len(b))
        b[:len(data)] = data
        return len(data)

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def writable(self) -> bool:
        return False

    def close(self):
        self._buffer.close_read()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class PipeWriter:
    """Writable end of a StreamBuffer."""

    def __init__(self, buffer: StreamBuffer):
        self._buffer = buffer

    @property
    def bytes_written(self) -> int:
        return self._buffer.bytes_written

    def write(self, data) -> int:
        return self._buffer.write(data)

    def flush(self):
        pass

    def readable(self) -> bool:
        return False

    def seekable(self) -> bool:
        return False

    def writable(self) -> bool:
        return True

    def close(self, error: Optional[BaseException] = None):
        self._buffer.close_write(error)


def pipe(capacity: int = BUFFER_SIZE) -> Tuple[PipeReader, PipeWriter]:
    """
    Create a bounded pipe.

    Args:
        capacity: Maximum number of bytes held between writer and reader

    Returns:
        (reader, writer) tuple sharing one StreamBuffer
    """
    buffer = StreamBuffer(capacity)
    return PipeReader(buffer), PipeWriter(buffer)
