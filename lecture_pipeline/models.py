"""
Value types shared by the pipeline components.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .errors import PipelineError


class FileKind(str, enum.Enum):
    AUDIO = "audio"
    PDF = "pdf"
    PRESENTATION = "presentation"
    DOCUMENT = "document"
    VIDEO = "video"

    @property
    def is_media(self) -> bool:
        return self in (FileKind.AUDIO, FileKind.VIDEO)


class TranscriptStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class UploadState(str, enum.Enum):
    """Steps of a single upload attempt, in pipeline order."""

    VALIDATING = "validating"
    UPLOADING = "uploading"
    PROBING_DURATION = "probing_duration"
    TRANSCRIBING = "transcribing"
    PERSISTING_METADATA = "persisting_metadata"
    DONE = "done"
    FAILED = "failed"


@dataclass
class UploadedFile:
    """An incoming file as received from the caller."""

    name: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class TranscriptionResult:
    text: Optional[str] = None
    status: TranscriptStatus = TranscriptStatus.PENDING


@dataclass
class UploadedFileRecord:
    lecture_id: str
    file_name: str
    file_type: FileKind
    file_size: int
    file_path: str
    mime_type: str
    duration: Optional[int] = None
    is_primary: bool = False
    transcript: Optional[str] = None
    transcript_status: TranscriptStatus = TranscriptStatus.PENDING
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def attach(self, result: TranscriptionResult) -> None:
        """Copy a transcription outcome onto this record."""
        self.transcript_status = result.status
        self.transcript = result.text if result.status == TranscriptStatus.COMPLETED else None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["file_type"] = self.file_type.value
        data["transcript_status"] = self.transcript_status.value
        for key in ("created_at", "updated_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class UploadResult:
    success: bool
    file_id: Optional[str] = None
    file_path: Optional[str] = None
    error: Optional[PipelineError] = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "file_id": self.file_id,
            "file_path": self.file_path,
            "error": self.error.to_dict() if self.error else None,
        }
