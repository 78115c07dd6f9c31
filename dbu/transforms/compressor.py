# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Compressor - Streaming compression layers.

Supported algorithms:
- none: identity (no layer is added to the chain)
- gzip: deflate in a gzip container (zlib, wbits=31)
- zstd: Zstandard frame via python-zstandard
"""

import zlib

import zstandard as zstd

from dbu.config import Compression
from dbu.errors import explain_invalid_compression
from dbu.exceptions import ConfigurationError, TransformError
from dbu.transforms.base import (
    CHUNK_SIZE,
    ByteReader,
    ByteWriter,
    StreamingReader,
    Transform,
)

# Default compression settings
DEFAULT_ZSTD_LEVEL = 3
DEFAULT_GZIP_LEVEL = 6
GZIP_WBITS = 31


def parse_compression(value: str | Compression | None) -> Compression:
    """
    Normalize a compression identifier.

    The empty string and None mean no compression.

    Raises:
        ConfigurationError: If the identifier is unknown
    """
    if isinstance(value, Compression):
        return value
    if not value:
        return Compression.NONE
    try:
        return Compression(value.lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_compression(value)) from exc


class _CompressWriter:
    def __init__(self, underlying: ByteWriter, compressor, algorithm: str) -> None:
        self._underlying = underlying
        self._compressor = compressor
        self._algorithm = algorithm
        self._closed = False

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise TransformError(f"{self._algorithm} writer is closed")
        if not data:
            return
        try:
            out = self._compressor.compress(data)
        except (zlib.error, zstd.ZstdError) as e:
            raise TransformError(f"{self._algorithm} compression failed: {e}") from e
        if out:
            await self._underlying.write(out)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            out = self._compressor.flush()
        except (zlib.error, zstd.ZstdError) as e:
            raise TransformError(f"{self._algorithm} flush failed: {e}") from e
        if out:
            await self._underlying.write(out)


class _DecompressReader(StreamingReader):
    def __init__(self, underlying: ByteReader, decompressor, algorithm: str) -> None:
        super().__init__()
        self._underlying = underlying
        self._decompressor = decompressor
        self._algorithm = algorithm
        self._done = False

    async def _next_block(self) -> bytes | None:
        if self._done:
            return None
        chunk = await self._underlying.read(CHUNK_SIZE)
        if not chunk:
            self._done = True
            if not self._decompressor.eof:
                raise TransformError(
                    f"{self._algorithm} stream is truncated",
                    details={"algorithm": self._algorithm},
                )
            return None
        if self._decompressor.eof:
            raise TransformError(f"unexpected data after end of {self._algorithm} stream")
        try:
            block = self._decompressor.decompress(chunk)
        except (zlib.error, zstd.ZstdError) as e:
            raise TransformError(f"{self._algorithm} decompression failed: {e}") from e
        # Trailing bytes may share a chunk with the end of the stream
        if self._decompressor.eof and self._decompressor.unused_data:
            raise TransformError(f"unexpected data after end of {self._algorithm} stream")
        return block


class GzipTransform(Transform):
    """gzip-container deflate stream."""

    name = "gzip"

    def __init__(self, level: int = DEFAULT_GZIP_LEVEL) -> None:
        self.level = level

    def wrap_writer(self, underlying: ByteWriter) -> ByteWriter:
        compressor = zlib.compressobj(self.level, zlib.DEFLATED, GZIP_WBITS)
        return _CompressWriter(underlying, compressor, self.name)

    def wrap_reader(self, underlying: ByteReader) -> ByteReader:
        return _DecompressReader(underlying, zlib.decompressobj(wbits=GZIP_WBITS), self.name)


class ZstdTransform(Transform):
    """Single Zstandard frame."""

    name = "zstd"

    def __init__(self, level: int = DEFAULT_ZSTD_LEVEL) -> None:
        self.level = level

    def wrap_writer(self, underlying: ByteWriter) -> ByteWriter:
        compressor = zstd.ZstdCompressor(level=self.level).compressobj()
        return _CompressWriter(underlying, compressor, self.name)

    def wrap_reader(self, underlying: ByteReader) -> ByteReader:
        return _DecompressReader(underlying, zstd.ZstdDecompressor().decompressobj(), self.name)


def create_compression(value: str | Compression | None) -> Transform | None:
    """
    Create the compression layer for an identifier.

    Returns:
        The transform, or None for no compression
    """
    compression = parse_compression(value)
    if compression == Compression.GZIP:
        return GzipTransform()
    if compression == Compression.ZSTD:
        return ZstdTransform()
    return None
