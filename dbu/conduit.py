# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Conduit - Unbuffered in-memory pipe between two tasks.

write() hands a buffer to the reader and returns only once the reader
has consumed all of it, so memory use stays bounded by one write.
Either side can tear the pipe down with close_with_error(); the other
side then fails with ConduitClosedError chained to the original error.
"""

import asyncio

from dbu.exceptions import ConduitClosedError


class Conduit:
    """
    Synchronous byte hand-off between one writer task and one reader task.

    close() marks end of stream for the reader. close_reader() tells the
    writer that nobody will consume further bytes.
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._pending = memoryview(b"")
        self._closed = False
        self._reader_closed = False
        self._error: BaseException | None = None

    @property
    def error(self) -> BaseException | None:
        return self._error

    def _broken(self, side: str) -> ConduitClosedError:
        if self._error is not None:
            exc = ConduitClosedError(
                f"conduit closed by peer failure: {self._error}",
                details={"side": side},
            )
            exc.__cause__ = self._error
            return exc
        return ConduitClosedError(f"conduit closed ({side})")

    async def write(self, data: bytes) -> None:
        """Block until the reader has consumed all of data."""
        async with self._cond:
            if self._error is not None or self._reader_closed or self._closed:
                raise self._broken("write")
            if not data:
                return

            self._pending = memoryview(bytes(data))
            self._cond.notify_all()
            await self._cond.wait_for(
                lambda: not self._pending
                or self._error is not None
                or self._reader_closed
            )
            if self._pending:
                self._pending = memoryview(b"")
                raise self._broken("write")

    async def read(self, size: int = -1) -> bytes:
        """Return up to size bytes, or b"" once the writer closed the conduit."""
        async with self._cond:
            await self._cond.wait_for(
                lambda: bool(self._pending)
                or self._closed
                or self._error is not None
                or self._reader_closed
            )
            if self._error is not None or self._reader_closed:
                raise self._broken("read")
            if not self._pending:
                return b""

            n = len(self._pending) if size < 0 else min(size, len(self._pending))
            chunk = self._pending[:n].tobytes()
            self._pending = self._pending[n:]
            if not self._pending:
                self._cond.notify_all()
            return chunk

    async def close(self) -> None:
        """Signal end of stream to the reader."""
        async with self._cond:
            self._closed = True
            self._cond.notify_all()

    async def close_reader(self) -> None:
        """Signal that the reader stopped; pending and future writes fail."""
        async with self._cond:
            self._reader_closed = True
            self._cond.notify_all()

    async def close_with_error(self, error: BaseException) -> None:
        """Tear the conduit down; the first error recorded is kept."""
        async with self._cond:
            if self._error is None:
                self._error = error
            self._cond.notify_all()
