# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Transform chain tests.

Covers:
1. Round trips for every compression/encryption pairing
2. Write and read ordering of the layers
3. Tamper, truncation and reordering detection in the encrypted stream
4. Truncation detection in compressed streams
5. Key parsing and config envelopes
"""

import base64
import gzip
import os

import pytest
import zstandard

from dbu.config import Compression
from dbu.exceptions import ConfigurationError, TransformError
from dbu.transforms import BytesReader, BytesWriter, build_chain
from dbu.transforms.crypto import (
    CONFIG_HEADER,
    HEADER,
    PACKAGE_SIZE,
    TAG_SIZE,
    decrypt_config,
    encode_key,
    encrypt_config,
    generate_key,
    parse_key,
)

KEY = bytes(range(32))
OTHER_KEY = bytes(reversed(range(32)))


async def encode(chain, data: bytes, write_size: int = 10_000) -> bytes:
    sink = BytesWriter()
    writer = chain.wrap_writer(sink)
    for i in range(0, len(data), write_size):
        await writer.write(data[i:i + write_size])
    await writer.close()
    assert not sink.closed, "the chain must never close its sink"
    return sink.getvalue()


async def decode(chain, blob: bytes) -> bytes:
    reader = chain.wrap_reader(BytesReader(blob))
    out = bytearray()
    while True:
        chunk = await reader.read(4096)
        if not chunk:
            return bytes(out)
        out += chunk


def package_length(payload: int) -> int:
    return HEADER.size + payload + TAG_SIZE


# ============================================================================
# Round trips
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("compression", ["none", "gzip", "zstd"])
@pytest.mark.parametrize("encrypted", [False, True])
@pytest.mark.parametrize("size", [0, PACKAGE_SIZE - 1, PACKAGE_SIZE, PACKAGE_SIZE + 1, 3 * PACKAGE_SIZE + 17])
async def test_round_trip(compression: str, encrypted: bool, size: int):
    data = os.urandom(size // 2) + b"a" * (size - size // 2)
    chain = build_chain(compression, encrypted, KEY if encrypted else None)

    blob = await encode(chain, data)
    assert await decode(build_chain(compression, encrypted, KEY if encrypted else None), blob) == data


@pytest.mark.asyncio
async def test_empty_chain_is_identity():
    chain = build_chain()
    assert chain.names == []
    assert await encode(chain, b"hello world") == b"hello world"


@pytest.mark.asyncio
async def test_compression_runs_before_encryption():
    chain = build_chain("gzip", True, KEY)
    assert chain.names == ["gzip", "aes-gcm"]

    data = b"compressible " * 20_000
    blob = await encode(chain, data)

    # Compressed before sealing: far smaller than the plaintext
    assert len(blob) < len(data) // 10

    # Decrypting alone yields a valid gzip member
    gzip_blob = await decode(build_chain("none", True, KEY), blob)
    assert gzip.decompress(gzip_blob) == data


@pytest.mark.asyncio
async def test_zstd_output_is_a_standard_frame():
    data = b"row,value\n" * 5000
    blob = await encode(build_chain(Compression.ZSTD), data)
    assert zstandard.ZstdDecompressor().decompressobj().decompress(blob) == data


def test_unknown_identifiers_fail_fast():
    with pytest.raises(ConfigurationError):
        build_chain("brotli")
    with pytest.raises(ConfigurationError):
        build_chain("none", "rot13", KEY)
    with pytest.raises(ConfigurationError):
        build_chain("none", True, None)


# ============================================================================
# Encrypted stream integrity
# ============================================================================

@pytest.mark.asyncio
async def test_empty_input_encrypts_to_single_final_package():
    blob = await encode(build_chain("none", True, KEY), b"")
    assert len(blob) == package_length(0)
    assert await decode(build_chain("none", True, KEY), blob) == b""


@pytest.mark.asyncio
async def test_truncated_encrypted_stream_is_rejected():
    data = os.urandom(2 * PACKAGE_SIZE + 100)
    blob = await encode(build_chain("none", True, KEY), data)

    # Drop the final package entirely
    cut = blob[: 2 * package_length(PACKAGE_SIZE)]
    with pytest.raises(TransformError, match="truncated"):
        await decode(build_chain("none", True, KEY), cut)

    # Cut inside a package
    with pytest.raises(TransformError):
        await decode(build_chain("none", True, KEY), blob[:-5])


@pytest.mark.asyncio
async def test_dropped_first_package_is_rejected():
    data = os.urandom(2 * PACKAGE_SIZE + 100)
    blob = await encode(build_chain("none", True, KEY), data)

    with pytest.raises(TransformError):
        await decode(build_chain("none", True, KEY), blob[package_length(PACKAGE_SIZE):])


@pytest.mark.asyncio
async def test_reordered_packages_are_rejected():
    data = os.urandom(2 * PACKAGE_SIZE + 100)
    blob = await encode(build_chain("none", True, KEY), data)

    n = package_length(PACKAGE_SIZE)
    swapped = blob[n:2 * n] + blob[:n] + blob[2 * n:]
    with pytest.raises(TransformError):
        await decode(build_chain("none", True, KEY), swapped)


@pytest.mark.asyncio
async def test_flipped_bit_fails_authentication():
    blob = bytearray(await encode(build_chain("none", True, KEY), b"secret payload" * 100))
    blob[HEADER.size + 10] ^= 0x01

    with pytest.raises(TransformError, match="authentication"):
        await decode(build_chain("none", True, KEY), bytes(blob))


@pytest.mark.asyncio
async def test_trailing_data_after_final_package_is_rejected():
    blob = await encode(build_chain("none", True, KEY), b"payload")
    with pytest.raises(TransformError, match="after final"):
        await decode(build_chain("none", True, KEY), blob + blob)


@pytest.mark.asyncio
async def test_wrong_key_fails():
    blob = await encode(build_chain("zstd", True, KEY), b"payload" * 1000)
    with pytest.raises(TransformError):
        await decode(build_chain("zstd", True, OTHER_KEY), blob)


# ============================================================================
# Compressed stream integrity
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("compression", ["gzip", "zstd"])
async def test_truncated_compressed_stream_is_rejected(compression: str):
    data = os.urandom(50_000)
    blob = await encode(build_chain(compression), data)

    with pytest.raises(TransformError):
        await decode(build_chain(compression), blob[: len(blob) // 2])


@pytest.mark.asyncio
@pytest.mark.parametrize("compression", ["gzip", "zstd"])
async def test_trailing_data_in_final_chunk_is_rejected(compression: str):
    blob = await encode(build_chain(compression), b"row,value\n" * 100)
    assert len(blob) + 4 < 64 * 1024

    with pytest.raises(TransformError):
        await decode(build_chain(compression), blob + b"junk")


@pytest.mark.asyncio
async def test_trailing_gzip_data_reports_end_of_stream():
    blob = gzip.compress(b"payload")
    with pytest.raises(TransformError, match="after end of gzip stream"):
        await decode(build_chain("gzip"), blob + b"junk")


@pytest.mark.asyncio
async def test_garbage_gzip_input_is_rejected():
    with pytest.raises(TransformError):
        await decode(build_chain("gzip"), b"definitely not gzip data")


# ============================================================================
# Keys and config envelopes
# ============================================================================

def test_parse_key_accepts_all_forms():
    b64 = base64.b64encode(KEY).decode()
    assert parse_key(f"base64:{b64}") == KEY
    assert parse_key(f"hex:{KEY.hex()}") == KEY
    assert parse_key(b64) == KEY
    assert parse_key(KEY.hex()) == KEY
    assert parse_key(f"  {encode_key(KEY)}\n") == KEY


@pytest.mark.parametrize("value", ["", "   ", "base64:AAAA", "hex:zz", "hex:" + "00" * 31, "not a key!"])
def test_parse_key_rejects_bad_input(value: str):
    with pytest.raises(ConfigurationError):
        parse_key(value)


def test_generated_keys_parse_and_differ():
    first, second = generate_key(), generate_key()
    assert len(parse_key(first)) == 32
    assert first != second


def test_config_envelope_round_trip():
    plaintext = b"database:\n  type: postgres\n"
    sealed = encrypt_config(plaintext, KEY)

    assert sealed.startswith(b"DBU1")
    assert plaintext not in sealed
    assert decrypt_config(sealed, KEY) == plaintext


def test_config_envelope_fails_closed():
    sealed = encrypt_config(b"secret: 1", KEY)

    with pytest.raises(ConfigurationError, match="authentication"):
        decrypt_config(sealed, OTHER_KEY)
    with pytest.raises(ConfigurationError, match="too short"):
        decrypt_config(sealed[:20], KEY)
    with pytest.raises(ConfigurationError, match="unknown format"):
        decrypt_config(b"XXXX" + sealed[4:], KEY)
    with pytest.raises(ConfigurationError, match="version"):
        decrypt_config(CONFIG_HEADER.pack(b"DBU1", 2) + sealed[CONFIG_HEADER.size:], KEY)

    tampered = bytearray(sealed)
    tampered[-1] ^= 0xFF
    with pytest.raises(ConfigurationError):
        decrypt_config(bytes(tampered), KEY)
