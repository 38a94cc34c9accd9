"""Fixed-size byte buffer with independent read and write positions."""

from __future__ import annotations


class Buffer:
    """A byte buffer that tracks a read and a write position.

    Invariant: ``0 <= read <= write <= capacity``. Bytes are appended at the
    write position and consumed from the read position. When everything
    written has been read, both positions go back to the start.
    """

    def __init__(self, size: int) -> None:
        if size < 0:
            raise ValueError("buffer size must not be negative")
        self._data = bytearray(size)
        self._read = 0
        self._write = 0

    @property
    def capacity(self) -> int:
        """Total number of bytes the buffer can hold."""
        return len(self._data)

    def __len__(self) -> int:
        return self._write - self._read

    def reset(self) -> None:
        """Discard all content and move both positions to the start."""
        self._read = 0
        self._write = 0

    def can_read(self) -> bool:
        """Return True if there are bytes waiting to be read."""
        return self._write > self._read

    def can_write(self) -> bool:
        """Return True if there is room for at least one more byte."""
        return len(self._data) > self._write

    def writable_view(self) -> memoryview:
        """Return a writable view of the free space after the write position.

        After filling part of it, report the amount with :meth:`advance_write`.
        """
        return memoryview(self._data)[self._write:]

    def advance_write(self, count: int) -> None:
        """Mark ``count`` bytes as written. Negative counts are ignored."""
        if count < 0:
            return
        if self._write + count > len(self._data):
            raise ValueError("write past the end of the buffer")
        self._write += count

    def readable(self) -> bytes:
        """Return a copy of the bytes that are waiting to be read."""
        return bytes(self._data[self._read:self._write])

    def advance_read(self, count: int) -> None:
        """Mark ``count`` bytes as consumed. Negative counts are ignored."""
        if count < 0:
            return
        if self._read + count > self._write:
            raise ValueError("read past the write position")
        self._read += count
        if self._read == self._write:
            self.compact()

    def read_byte(self) -> int:
        """Consume and return one byte, or 0 if the buffer is empty."""
        if not self.can_read():
            return 0
        value = self._data[self._read]
        self.advance_read(1)
        return value

    def write_byte(self, value: int) -> None:
        """Append one byte; it is silently dropped when the buffer is full."""
        if self.can_write():
            self._data[self._write] = value
            self.advance_write(1)

    def read_bytes(self, count: int) -> bytes:
        """Consume and return exactly ``count`` bytes.

        Raises ValueError, consuming nothing, if fewer bytes are available.
        """
        if count < 0:
            raise ValueError("count must not be negative")
        if len(self) < count:
            raise ValueError(f"only {len(self)} bytes available, {count} requested")
        chunk = bytes(self._data[self._read:self._read + count])
        self.advance_read(count)
        return chunk

    def write(self, data: bytes) -> int:
        """Append as much of ``data`` as fits and return how many bytes went in."""
        view = self.writable_view()
        amount = min(len(view), len(data))
        view[:amount] = data[:amount]
        view.release()
        self.advance_write(amount)
        return amount

    def compact(self) -> None:
        """Move unread bytes to the start of the buffer."""
        if self._read == 0:
            return
        if self._read == self._write:
            self.reset()
            return
        pending = self._write - self._read
        self._data[:pending] = self._data[self._read:self._write]
        self._read = 0
        self._write = pending