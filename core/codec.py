"""
Reversible transform between a plaintext snapshot and the stored artifact.

Artifact layout: IV (16 bytes) || AES-256-GCM ciphertext of gzip(plaintext) || tag (16 bytes).
"""
from __future__ import annotations

import binascii
import gzip
import os
import zlib

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from core.errors import (
    ConfigError,
    DecompressionError,
    InvalidInput,
    MalformedArtifact,
    TagMismatch,
)

IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32

_BYTES_LIKE = (bytes, bytearray, memoryview)


def parse_key(raw_hex: str | None) -> bytes:
    """Decode BACKUP_ENCRYPTION_KEY. Anything but 64 hex characters is a ConfigError."""
    if not raw_hex:
        raise ConfigError("BACKUP_ENCRYPTION_KEY is not configured")
    try:
        key = bytes.fromhex(raw_hex.strip())
    except ValueError as exc:
        raise ConfigError("BACKUP_ENCRYPTION_KEY must be hex encoded") from exc
    if len(key) != KEY_LENGTH:
        raise ConfigError(
            f"BACKUP_ENCRYPTION_KEY must decode to {KEY_LENGTH} bytes, got {len(key)}"
        )
    return key


def _check_key(key: object) -> bytes:
    if not isinstance(key, _BYTES_LIKE) or len(key) != KEY_LENGTH:
        raise InvalidInput(f"Encryption key must be {KEY_LENGTH} bytes")
    return bytes(key)


def compress(data: bytes) -> bytes:
    if not isinstance(data, _BYTES_LIKE):
        raise InvalidInput(f"Expected bytes, got {type(data).__name__}")
    return gzip.compress(bytes(data))


def decompress(data: bytes) -> bytes:
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as exc:
        raise DecompressionError(f"Snapshot stream is corrupted: {exc}") from exc


def encode(plaintext: bytes, key: bytes) -> bytes:
    """Compress then encrypt with a fresh IV."""
    if not isinstance(plaintext, _BYTES_LIKE):
        raise InvalidInput(f"Expected bytes, got {type(plaintext).__name__}")
    aesgcm = AESGCM(_check_key(key))

    iv = os.urandom(IV_LENGTH)
    # AESGCM appends the 16-byte tag to the ciphertext
    sealed = aesgcm.encrypt(iv, compress(plaintext), None)
    return iv + sealed


def decode(artifact: bytes, key: bytes) -> bytes:
    """Verify, decrypt and decompress. The tag is checked before gunzip runs."""
    if not isinstance(artifact, _BYTES_LIKE):
        raise InvalidInput(f"Expected bytes, got {type(artifact).__name__}")
    artifact = bytes(artifact)
    if len(artifact) < IV_LENGTH + TAG_LENGTH:
        raise MalformedArtifact(
            f"Artifact is {len(artifact)} bytes, shorter than IV and tag"
        )
    aesgcm = AESGCM(_check_key(key))

    iv = artifact[:IV_LENGTH]
    sealed = artifact[IV_LENGTH:]
    try:
        compressed = aesgcm.decrypt(iv, sealed, None)
    except InvalidTag as exc:
        raise TagMismatch("Authentication tag mismatch, artifact was corrupted or tampered") from exc

    return decompress(compressed)


def fingerprint(artifact: bytes) -> str:
    """Short CRC32 of the artifact, for log lines."""
    return f"{binascii.crc32(artifact) & 0xFFFFFFFF:08x}"


__all__ = [
    "IV_LENGTH",
    "TAG_LENGTH",
    "KEY_LENGTH",
    "parse_key",
    "compress",
    "decompress",
    "encode",
    "decode",
    "fingerprint",
]
