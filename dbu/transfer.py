# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Transfer - Concurrent movement of bytes through the transform chain.

Upload runs two tasks joined by a Conduit:

    encode: producer -> transform chain -> conduit
    sink:   conduit -> storage.put()

Download mirrors it:

    source: opened object -> conduit
    decode: conduit -> transform chain -> consumer

The first failure in either task closes the conduit with that error, so
the other task stops with ConduitClosedError. The operation reports the
first error only. A download receives an already opened object, so a
missing artifact is reported before any consumer exists. Once both tasks have finished, the producer's (or
consumer's) completion is awaited; its failure fails the transfer even
when the pipeline itself succeeded.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Dict, Protocol

import structlog

from dbu.conduit import Conduit
from dbu.exceptions import TransferError
from dbu.transforms.base import CHUNK_SIZE, ByteReader, ByteWriter
from dbu.transforms.chain import TransformChain

logger = structlog.get_logger()


class Producer(Protocol):
    """Byte stream with a completion signal, e.g. a dump process."""

    async def read(self, size: int = -1) -> bytes: ...

    async def wait(self) -> None: ...

    async def aclose(self) -> None: ...


class Consumer(Protocol):
    """Byte sink with a completion signal, e.g. a restore process."""

    async def write(self, data: bytes) -> None: ...

    async def close(self) -> None: ...

    async def wait(self) -> None: ...

    async def aclose(self) -> None: ...


class TransferState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class TransferResult:
    """Byte counts of a completed transfer."""

    # Plaintext bytes read from the producer / written to the consumer
    bytes_in: int
    # Encoded bytes written to / read from storage
    bytes_out: int


class _CountingWriter:
    def __init__(self, underlying: ByteWriter) -> None:
        self._underlying = underlying
        self.count = 0

    async def write(self, data: bytes) -> None:
        await self._underlying.write(data)
        self.count += len(data)

    async def close(self) -> None:
        await self._underlying.close()


class TransferCoordinator:
    """
    Runs one upload or one download.

    A coordinator instance is single use; its state moves from idle to
    running to succeeded or failed.
    """

    def __init__(self, chain: TransformChain, chunk_size: int = CHUNK_SIZE) -> None:
        self.chain = chain
        self.chunk_size = chunk_size
        self.state = TransferState.IDLE
        self._first_error: Exception | None = None

    @property
    def error(self) -> Exception | None:
        return self._first_error

    def _start(self) -> None:
        if self.state != TransferState.IDLE:
            raise TransferError(
                "Transfer coordinator already used",
                details={"state": self.state.value},
            )
        self.state = TransferState.RUNNING

    async def _guard(self, task: str, work: Awaitable[None], conduit: Conduit) -> None:
        """Run one side; record and broadcast its failure."""
        try:
            await work
        except Exception as exc:
            if self._first_error is None:
                self._first_error = exc
                logger.debug("transfer_task_failed", task=task, error=str(exc))
            else:
                logger.debug("transfer_error_discarded", task=task, error=str(exc))
            await conduit.close_with_error(exc)

    async def _run_pair(self, endpoint: Any, *sides: Awaitable[None]) -> None:
        try:
            await asyncio.gather(*sides)
        except BaseException:
            # Cancellation (timeout) or an unexpected escape from a guard
            self.state = TransferState.FAILED
            await endpoint.aclose()
            raise

    async def _fail(self, endpoint: Any, error: Exception) -> None:
        self.state = TransferState.FAILED
        await endpoint.aclose()
        raise error

    async def upload(
        self,
        producer: Producer,
        storage: Any,
        key: str,
        metadata: Dict[str, str] | None = None,
        size_hint: int = -1,
    ) -> TransferResult:
        """
        Stream producer output through the chain into storage at key.

        Args:
            producer: Source of raw bytes with wait()/aclose()
            storage: Storage backend
            key: Destination object key
            metadata: Object metadata passed to storage.put()
            size_hint: Expected encoded size, -1 when unknown

        Returns:
            TransferResult with plaintext and stored byte counts

        Raises:
            The first error from either task, or the producer's failure
        """
        self._start()
        conduit = Conduit()
        sink = _CountingWriter(conduit)
        bytes_in = 0

        async def encode() -> None:
            nonlocal bytes_in
            writer = self.chain.wrap_writer(sink)
            while True:
                chunk = await producer.read(self.chunk_size)
                if not chunk:
                    break
                bytes_in += len(chunk)
                await writer.write(chunk)
            await writer.close()
            await conduit.close()

        async def store() -> None:
            await storage.put(key, conduit, size_hint=size_hint, metadata=metadata)
            await conduit.close_reader()

        logger.debug("upload_started", key=key, layers=self.chain.names)
        await self._run_pair(
            producer,
            self._guard("encode", encode(), conduit),
            self._guard("sink", store(), conduit),
        )

        if self._first_error is not None:
            await self._fail(producer, self._first_error)

        try:
            await producer.wait()
        except Exception as exc:
            self.state = TransferState.FAILED
            self._first_error = exc
            await self._discard(storage, key)
            raise

        self.state = TransferState.SUCCEEDED
        logger.debug("upload_finished", key=key, bytes_in=bytes_in, bytes_out=sink.count)
        return TransferResult(bytes_in=bytes_in, bytes_out=sink.count)

    async def download(
        self,
        body: Any,
        consumer: Consumer,
        key: str = "",
    ) -> TransferResult:
        """
        Stream an opened object through the chain into consumer.

        body is closed on every path, including a coordinator that was
        already used.

        Args:
            body: Object reader returned by storage.get()
            consumer: Destination of decoded bytes with close()/wait()/aclose()
            key: Object key, for logging

        Returns:
            TransferResult with plaintext and stored byte counts

        Raises:
            The first error from either task, or the consumer's failure
        """
        try:
            self._start()
        except TransferError:
            await body.aclose()
            raise
        conduit = Conduit()
        bytes_in = 0
        bytes_out = 0

        async def source() -> None:
            nonlocal bytes_out
            while True:
                chunk = await body.read(self.chunk_size)
                if not chunk:
                    break
                bytes_out += len(chunk)
                await conduit.write(chunk)
            await conduit.close()

        async def decode() -> None:
            nonlocal bytes_in
            reader: ByteReader = self.chain.wrap_reader(conduit)
            while True:
                chunk = await reader.read(self.chunk_size)
                if not chunk:
                    break
                bytes_in += len(chunk)
                await consumer.write(chunk)
            await consumer.close()
            await conduit.close_reader()

        logger.debug("download_started", key=key, layers=self.chain.names)
        try:
            await self._run_pair(
                consumer,
                self._guard("source", source(), conduit),
                self._guard("decode", decode(), conduit),
            )
        finally:
            await body.aclose()

        if self._first_error is not None:
            await self._fail(consumer, self._first_error)

        try:
            await consumer.wait()
        except Exception as exc:
            self.state = TransferState.FAILED
            self._first_error = exc
            raise

        self.state = TransferState.SUCCEEDED
        logger.debug("download_finished", key=key, bytes_in=bytes_in, bytes_out=bytes_out)
        return TransferResult(bytes_in=bytes_in, bytes_out=bytes_out)

    async def _discard(self, storage: Any, key: str) -> None:
        """Remove an artifact whose producer failed after it was stored."""
        try:
            await storage.delete(key)
            logger.warning("artifact_discarded", key=key)
        except Exception as e:
            logger.warning("artifact_discard_failed", key=key, error=str(e))
