# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Crypto - Authenticated encryption for artifact streams and config files.

Artifact streams are split into packages of at most 64 KiB plaintext.
Each package is sealed with AES-256-GCM:

    header (18 bytes) = version | flags | payload length (uint32 BE) | nonce
    body              = ciphertext || 16-byte tag

The associated data is the header followed by the package sequence
number (uint64 BE), so flags and lengths cannot be altered and a dropped
leading package fails authentication. Nonces are a random per-stream base
with the sequence number XORed into the low 8 bytes; a reordered package
fails the nonce check.
The last package carries the final flag, which makes truncation
detectable. An empty stream is a single empty final package.

Config files use a one-shot envelope: b"DBU1" | version (uint16 BE) |
nonce (12 bytes) | AES-256-GCM ciphertext.
"""

import base64
import binascii
import os
import struct

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from dbu.errors import explain_invalid_encryption, explain_invalid_encryption_key
from dbu.exceptions import ConfigurationError, TransformError
from dbu.transforms.base import (
    ByteReader,
    ByteWriter,
    StreamingReader,
    Transform,
    read_exact,
)

logger = structlog.get_logger()

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
PACKAGE_SIZE = 64 * 1024

STREAM_VERSION = 0x01
FLAG_FINAL = 0x80
HEADER = struct.Struct(">BBI12s")

CONFIG_MAGIC = b"DBU1"
CONFIG_VERSION = 1
CONFIG_HEADER = struct.Struct(">4sH")

ENCRYPTION_NONE = "none"
ENCRYPTION_AES_GCM = "aes-gcm"


def parse_key(value: str) -> bytes:
    """
    Decode a 32-byte key.

    Accepted forms are "base64:<data>", "hex:<data>", or a bare value
    tried as base64 first and hex second.

    Args:
        value: Encoded key

    Returns:
        The raw 32-byte key

    Raises:
        ConfigurationError: If the key is empty, undecodable, or not 32 bytes
    """
    trimmed = (value or "").strip()
    if not trimmed:
        raise ConfigurationError(explain_invalid_encryption_key("key is empty"))

    try:
        if trimmed.startswith("base64:"):
            data = base64.b64decode(trimmed[len("base64:"):], validate=True)
        elif trimmed.startswith("hex:"):
            data = bytes.fromhex(trimmed[len("hex:"):])
        else:
            try:
                data = base64.b64decode(trimmed, validate=True)
            except binascii.Error:
                data = b""
            # 64 hex digits are also valid base64 (48 bytes)
            if len(data) != KEY_SIZE:
                data = bytes.fromhex(trimmed)
    except (binascii.Error, ValueError) as e:
        raise ConfigurationError(explain_invalid_encryption_key(f"cannot decode key ({e})")) from e

    if len(data) != KEY_SIZE:
        raise ConfigurationError(
            explain_invalid_encryption_key(f"decoded to {len(data)} bytes, expected {KEY_SIZE}")
        )
    return data


def encode_key(key: bytes) -> str:
    """Encode a raw key in the "base64:" form accepted by parse_key()."""
    return "base64:" + base64.b64encode(key).decode("ascii")


def generate_key() -> str:
    """Generate a fresh random key, encoded for configuration files."""
    return encode_key(AESGCM.generate_key(bit_length=256))


def _package_nonce(base: bytes, sequence: int) -> bytes:
    counter = int.from_bytes(base[4:], "big") ^ sequence
    return base[:4] + counter.to_bytes(8, "big")


def _package_aad(header: bytes, sequence: int) -> bytes:
    return header + sequence.to_bytes(8, "big")


class _EncryptWriter:
    def __init__(self, underlying: ByteWriter, key: bytes) -> None:
        self._underlying = underlying
        self._aead = AESGCM(key)
        self._base_nonce = os.urandom(NONCE_SIZE)
        self._sequence = 0
        self._buffer = bytearray()
        self._closed = False

    async def _seal(self, payload: bytes, final: bool) -> None:
        nonce = _package_nonce(self._base_nonce, self._sequence)
        header = HEADER.pack(
            STREAM_VERSION, FLAG_FINAL if final else 0, len(payload), nonce
        )
        body = self._aead.encrypt(nonce, payload, _package_aad(header, self._sequence))
        self._sequence += 1
        await self._underlying.write(header + body)

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise TransformError("encryption writer is closed")
        self._buffer += data
        # The tail stays buffered; close() seals it as the final package.
        while len(self._buffer) > PACKAGE_SIZE:
            payload = bytes(self._buffer[:PACKAGE_SIZE])
            del self._buffer[:PACKAGE_SIZE]
            await self._seal(payload, final=False)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        payload = bytes(self._buffer)
        self._buffer.clear()
        await self._seal(payload, final=True)


class _DecryptReader(StreamingReader):
    def __init__(self, underlying: ByteReader, key: bytes) -> None:
        super().__init__()
        self._underlying = underlying
        self._aead = AESGCM(key)
        self._base_nonce: bytes | None = None
        self._sequence = 0
        self._final_seen = False

    async def _next_block(self) -> bytes | None:
        header = await read_exact(self._underlying, HEADER.size)

        if self._final_seen:
            if header:
                raise TransformError("unexpected data after final encrypted package")
            return None
        if not header:
            raise TransformError(
                "encrypted stream is truncated",
                details={"packages_read": self._sequence},
            )
        if len(header) < HEADER.size:
            raise TransformError("encrypted stream ends inside a package header")

        version, flags, length, nonce = HEADER.unpack(header)
        if version != STREAM_VERSION:
            raise TransformError(f"unsupported encrypted stream version: {version}")
        if length > PACKAGE_SIZE:
            raise TransformError(f"encrypted package too large: {length} bytes")

        if self._base_nonce is None:
            self._base_nonce = nonce
        elif nonce != _package_nonce(self._base_nonce, self._sequence):
            raise TransformError(
                "encrypted package out of order",
                details={"sequence": self._sequence},
            )

        body = await read_exact(self._underlying, length + TAG_SIZE)
        if len(body) < length + TAG_SIZE:
            raise TransformError("encrypted stream ends inside a package")

        try:
            plaintext = self._aead.decrypt(nonce, body, _package_aad(header, self._sequence))
        except InvalidTag as e:
            raise TransformError(
                "encrypted package failed authentication",
                details={"sequence": self._sequence},
            ) from e

        self._sequence += 1
        if flags & FLAG_FINAL:
            self._final_seen = True
        return plaintext


class AESGCMTransform(Transform):
    """Chunked AES-256-GCM stream encryption."""

    name = ENCRYPTION_AES_GCM

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_SIZE:
            raise ConfigurationError(
                explain_invalid_encryption_key(f"{len(key)} bytes, expected {KEY_SIZE}")
            )
        self._key = key

    def wrap_writer(self, underlying: ByteWriter) -> ByteWriter:
        return _EncryptWriter(underlying, self._key)

    def wrap_reader(self, underlying: ByteReader) -> ByteReader:
        return _DecryptReader(underlying, self._key)


def create_encryption(value: str | bool | None, key: bytes | None) -> Transform | None:
    """
    Create the encryption layer.

    Args:
        value: "none"/"aes-gcm", or a bool from configuration
        key: Raw 32-byte key (required unless value means no encryption)

    Returns:
        The transform, or None for no encryption

    Raises:
        ConfigurationError: On an unknown identifier or a missing key
    """
    if isinstance(value, bool):
        value = ENCRYPTION_AES_GCM if value else ENCRYPTION_NONE
    identifier = (value or ENCRYPTION_NONE).lower()
    if identifier == ENCRYPTION_NONE:
        return None
    if identifier != ENCRYPTION_AES_GCM:
        raise ConfigurationError(explain_invalid_encryption(value))
    if key is None:
        raise ConfigurationError(explain_invalid_encryption_key("no key provided"))
    return AESGCMTransform(key)


def encrypt_config(plaintext: bytes, key: bytes) -> bytes:
    """
    Seal a configuration payload.

    Args:
        plaintext: Raw config file bytes
        key: Raw 32-byte key

    Returns:
        Envelope bytes
    """
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
    return CONFIG_HEADER.pack(CONFIG_MAGIC, CONFIG_VERSION) + nonce + ciphertext


def decrypt_config(data: bytes, key: bytes) -> bytes:
    """
    Open a configuration envelope.

    Fails closed: any malformed or unauthenticated input raises.

    Raises:
        ConfigurationError: On short input, wrong magic, unsupported
            version, or authentication failure
    """
    minimum = CONFIG_HEADER.size + NONCE_SIZE + TAG_SIZE
    if len(data) < minimum:
        raise ConfigurationError(
            "Encrypted config is too short",
            details={"size": len(data), "minimum": minimum},
        )

    magic, version = CONFIG_HEADER.unpack_from(data)
    if magic != CONFIG_MAGIC:
        raise ConfigurationError("Encrypted config has an unknown format")
    if version != CONFIG_VERSION:
        raise ConfigurationError(
            "Unsupported encrypted config version",
            details={"version": version},
        )

    nonce = data[CONFIG_HEADER.size:CONFIG_HEADER.size + NONCE_SIZE]
    ciphertext = data[CONFIG_HEADER.size + NONCE_SIZE:]
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as e:
        raise ConfigurationError("Encrypted config failed authentication (wrong key?)") from e


def encrypt_config_file(input_path: str, output_path: str, key: str) -> None:
    """
    Encrypt a plaintext config file into an envelope file with mode 0600.

    Args:
        input_path: Plaintext config file
        output_path: Destination for the envelope
        key: Encoded key (see parse_key)
    """
    with open(input_path, "rb") as f:
        plaintext = f.read()

    sealed = encrypt_config(plaintext, parse_key(key))

    fd = os.open(output_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(sealed)

    logger.info("config_encrypted", input=input_path, output=output_path)
