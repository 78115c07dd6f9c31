# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Transform Chain - Ordered composition of stream transforms.

Writing applies transforms in order (compress, then encrypt); reading
applies them in reverse (decrypt, then decompress). Closing a chain
writer closes each layer innermost first, so every layer's trailing
bytes reach the layer beneath it before that layer seals its own.
"""

from dataclasses import dataclass, field
from typing import List

import structlog

from dbu.config import Compression
from dbu.transforms.base import ByteReader, ByteWriter, Transform
from dbu.transforms.compressor import create_compression, parse_compression
from dbu.transforms.crypto import ENCRYPTION_NONE, create_encryption

logger = structlog.get_logger()


class ChainWriter:
    """
    Writer at the producer end of a chain.

    Holds the stack of layer writers; close() pops them from the one
    nearest the producer outward. The sink itself is not closed.
    """

    def __init__(self, closers: List[ByteWriter]) -> None:
        self._closers = closers
        self._closed = False

    async def write(self, data: bytes) -> None:
        await self._closers[0].write(data)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for writer in self._closers[:-1]:
            await writer.close()


@dataclass
class TransformChain:
    """Transforms in write order."""

    transforms: List[Transform] = field(default_factory=list)

    @property
    def names(self) -> List[str]:
        return [t.name for t in self.transforms]

    def wrap_writer(self, sink: ByteWriter) -> ChainWriter:
        """
        Wrap sink so that bytes written are encoded by every layer.

        Args:
            sink: Destination for fully encoded bytes

        Returns:
            ChainWriter whose close() flushes every layer into sink
        """
        writer = sink
        closers: List[ByteWriter] = [sink]
        for transform in reversed(self.transforms):
            writer = transform.wrap_writer(writer)
            closers.insert(0, writer)
        return ChainWriter(closers)

    def wrap_reader(self, source: ByteReader) -> ByteReader:
        """
        Wrap source so that reads return fully decoded bytes.

        Args:
            source: Reader of encoded bytes

        Returns:
            Reader of plaintext
        """
        reader = source
        for transform in reversed(self.transforms):
            reader = transform.wrap_reader(reader)
        return reader


def build_chain(
    compression: str | Compression | None = Compression.NONE,
    encryption: str | bool | None = ENCRYPTION_NONE,
    key: bytes | None = None,
) -> TransformChain:
    """
    Build the chain for the given settings.

    Unknown identifiers are rejected here, before any bytes move.

    Args:
        compression: none, gzip or zstd
        encryption: none or aes-gcm (or a bool)
        key: Raw 32-byte key when encrypting

    Returns:
        TransformChain in write order (compression, then encryption)

    Raises:
        ConfigurationError: On unknown identifiers or a missing key
    """
    transforms: List[Transform] = []

    compressor = create_compression(compression)
    if compressor is not None:
        transforms.append(compressor)

    encryptor = create_encryption(encryption, key)
    if encryptor is not None:
        transforms.append(encryptor)

    logger.debug(
        "transform_chain_built",
        compression=parse_compression(compression).value,
        layers=[t.name for t in transforms],
    )
    return TransformChain(transforms)
