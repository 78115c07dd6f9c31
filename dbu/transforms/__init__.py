# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Transforms - Compression and encryption layers for artifact streams.
"""

from dbu.transforms.base import (
    CHUNK_SIZE,
    ByteReader,
    ByteWriter,
    BytesReader,
    BytesWriter,
    Transform,
)
from dbu.transforms.chain import TransformChain, build_chain
from dbu.transforms.compressor import GzipTransform, ZstdTransform, parse_compression
from dbu.transforms.crypto import (
    AESGCMTransform,
    decrypt_config,
    encrypt_config,
    encrypt_config_file,
    parse_key,
)

__all__ = [
    "CHUNK_SIZE",
    "ByteReader",
    "ByteWriter",
    "BytesReader",
    "BytesWriter",
    "Transform",
    "TransformChain",
    "build_chain",
    "GzipTransform",
    "ZstdTransform",
    "parse_compression",
    "AESGCMTransform",
    "decrypt_config",
    "encrypt_config",
    "encrypt_config_file",
    "parse_key",
]
