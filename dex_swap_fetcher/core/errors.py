"""
Error taxonomy for the ingestion pipeline.

Recoverable errors (`SourceQueryError`, `SinkError`, `CheckpointError`) send
the ingestion loop into backoff without advancing the cursor. Everything else
deriving from `IngestionError` is fatal and terminates the process.
"""

from __future__ import annotations

from typing import Optional


class IngestionError(Exception):
    """Base class for every error raised by dex_swap_fetcher."""


class ConfigError(IngestionError):
    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"Config field {key!r}: {message}")


class MalformedRecordError(IngestionError):
    """A raw swap record is missing a field or carries an unparsable value."""

    def __init__(self, field: str, message: str = ""):
        self.field = field
        detail = message or "malformed value"
        super().__init__(f"Malformed swap field {field!r}: {detail}")


class MalformedPageError(MalformedRecordError):
    """Too many records of a single page failed normalization."""

    def __init__(self, malformed: int, total: int, skip: int, min_timestamp: int):
        self.malformed = malformed
        self.total = total
        self.skip = skip
        self.min_timestamp = min_timestamp
        IngestionError.__init__(
            self,
            f"{malformed}/{total} records malformed in page "
            f"(skip={skip}, minTimestamp={min_timestamp})",
        )
        self.field = "*"


class SourceQueryError(IngestionError):
    """A page request against the indexing service failed."""

    def __init__(
        self,
        message: str,
        first: Optional[int] = None,
        skip: Optional[int] = None,
        min_timestamp: Optional[int] = None,
    ):
        self.first = first
        self.skip = skip
        self.min_timestamp = min_timestamp
        if first is not None:
            message = f"{message} (first={first}, skip={skip}, minTimestamp={min_timestamp})"
        super().__init__(message)


class PaginationStalledError(SourceQueryError):
    """Re-anchoring cannot move past a timestamp that fills the whole offset window."""


class SinkError(IngestionError):
    """Queue or store write failed."""


class CheckpointError(IngestionError):
    """Checkpoint could not be read or written (I/O level)."""


class CheckpointCorruptError(IngestionError):
    """A checkpoint exists but cannot be parsed."""


RECOVERABLE_ERRORS = (SourceQueryError, SinkError, CheckpointError)
