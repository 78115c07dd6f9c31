# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Transform Base - Async byte stream interfaces shared by every layer.

A reader returns b"" at end of stream. A writer's close() flushes the
writer's own trailing bytes; it never closes the writer underneath it.
"""

from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable

# Read size used when moving bytes between layers
CHUNK_SIZE = 64 * 1024


@runtime_checkable
class ByteReader(Protocol):
    async def read(self, size: int = -1) -> bytes: ...


@runtime_checkable
class ByteWriter(Protocol):
    async def write(self, data: bytes) -> None: ...

    async def close(self) -> None: ...


class Transform(ABC):
    """A reversible byte-stream transform."""

    name: str = ""

    @abstractmethod
    def wrap_writer(self, underlying: ByteWriter) -> ByteWriter:
        """Return a writer that encodes into underlying."""

    @abstractmethod
    def wrap_reader(self, underlying: ByteReader) -> ByteReader:
        """Return a reader that decodes from underlying."""


class StreamingReader(ABC):
    """
    Reader producing decoded output one block at a time.

    Subclasses implement _next_block(), returning the next decoded block
    or None at end of stream. Blocks may be empty.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._eof = False

    @abstractmethod
    async def _next_block(self) -> bytes | None:
        """Decode and return the next block, or None when exhausted."""

    async def read(self, size: int = -1) -> bytes:
        while not self._buffer and not self._eof:
            block = await self._next_block()
            if block is None:
                self._eof = True
            else:
                self._buffer += block

        if size < 0 or size >= len(self._buffer):
            data = bytes(self._buffer)
            self._buffer.clear()
            return data

        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data


class BytesReader:
    """Reader over an in-memory buffer."""

    def __init__(self, data: bytes) -> None:
        self._view = memoryview(bytes(data))
        self._pos = 0

    async def read(self, size: int = -1) -> bytes:
        if size < 0:
            size = len(self._view) - self._pos
        chunk = self._view[self._pos:self._pos + size].tobytes()
        self._pos += len(chunk)
        return chunk


class BytesWriter:
    """Writer collecting everything written into memory."""

    def __init__(self) -> None:
        self.buffer = bytearray()
        self.closed = False

    async def write(self, data: bytes) -> None:
        self.buffer += data

    async def close(self) -> None:
        self.closed = True

    def getvalue(self) -> bytes:
        return bytes(self.buffer)


async def read_exact(reader: ByteReader, size: int) -> bytes:
    """
    Read up to exactly size bytes, looping over short reads.

    Returns fewer bytes only when the reader hits end of stream.
    """
    parts = bytearray()
    while len(parts) < size:
        chunk = await reader.read(size - len(parts))
        if not chunk:
            break
        parts += chunk
    return bytes(parts)
