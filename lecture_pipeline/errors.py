"""
Error taxonomy of the lecture file pipeline.

Every failure surfaced by the pipeline is a :class:`PipelineError`.  The
subclass tells the caller what kind of failure occurred, ``step`` names the
pipeline step that was running, and ``cause`` keeps the underlying library
exception so callers can present a message and decide whether to retry.
"""

from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    kind = "pipeline"

    def __init__(
        self,
        message: str,
        *,
        step: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.step = step
        self.cause = cause

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "step": self.step}


class ValidationError(PipelineError):
    """The file was rejected before anything was stored."""

    kind = "validation"


class StorageError(PipelineError):
    """A blob store read, write or delete failed."""

    kind = "storage"


class RecognitionError(PipelineError):
    """The speech recogniser reported an error."""

    kind = "recognition"

    def __init__(self, code: str, **kwargs) -> None:
        super().__init__(f"Speech recognition error: {code}", **kwargs)
        self.code = code


class MediaLoadError(PipelineError):
    """Media could not be decoded or played."""

    kind = "media"


class TranscriptionFailed(PipelineError):
    """Every transcription attempt failed.  ``cause`` holds the last error."""

    kind = "transcription"


class DatabaseError(PipelineError):
    """A metadata insert, update, select or delete failed."""

    kind = "database"


class RecordNotFound(DatabaseError):
    kind = "not_found"
