"""Exception types and failure categories used across the sync pipeline."""

from enum import Enum


class FailureKind(str, Enum):
    """Category of a recorded failure, used for failure-log entries and stats."""

    FETCH = "fetch"
    EMBEDDING = "embedding"
    DECODE = "decode"
    RECONCILE = "reconcile"
    INDEX = "index"
    TRANSPORT = "transport"
    CHECKPOINT = "checkpoint"


class SyncError(Exception):
    """Base class for errors raised by the sync pipeline."""


class ConfigError(SyncError):
    """Raised when a required setting is missing or malformed."""


class SourceWriteError(SyncError):
    """Raised when a partial update against the source table fails."""


class EmbeddingError(SyncError):
    """Raised when the embedding provider fails or returns an unusable vector."""


class EmbeddingDecodeError(SyncError):
    """Raised when a serialized embedding string cannot be decoded."""
