from __future__ import annotations

from enum import Enum


class BotBackendError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(BotBackendError):
    """Missing or malformed configuration. Fatal at startup."""


class InvalidInput(BotBackendError):
    """The caller passed malformed arguments."""


class AuthenticationError(BotBackendError):
    """Caller failed a shared-secret check (API key, verify token, webhook secret)."""


class StoreErrorKind(str, Enum):
    THROTTLED = "throttled"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


class StoreError(BotBackendError):
    def __init__(self, kind: StoreErrorKind, message: str):
        super().__init__(message)
        self.kind = kind


class ObjectStoreErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"
    UNKNOWN = "unknown"


class ObjectStoreError(BotBackendError):
    def __init__(self, kind: ObjectStoreErrorKind, message: str):
        super().__init__(message)
        self.kind = kind


class CryptoError(BotBackendError):
    """Artifact could not be trusted. Never partially recovered."""


class TagMismatch(CryptoError):
    pass


class MalformedArtifact(CryptoError):
    pass


class DecompressionError(CryptoError):
    pass


class CorruptSnapshot(CryptoError):
    pass


class BackupError(BotBackendError):
    pass


class BackupNotFound(BackupError):
    pass


class SnapshotTooLarge(BackupError):
    pass


class TicketNotFound(BotBackendError):
    pass


__all__ = [
    "BotBackendError",
    "ConfigError",
    "InvalidInput",
    "AuthenticationError",
    "StoreErrorKind",
    "StoreError",
    "ObjectStoreErrorKind",
    "ObjectStoreError",
    "CryptoError",
    "TagMismatch",
    "MalformedArtifact",
    "DecompressionError",
    "CorruptSnapshot",
    "BackupError",
    "BackupNotFound",
    "SnapshotTooLarge",
    "TicketNotFound",
]
