"""
File classification, validation and storage naming.

Uploaded files are classified by their declared MIME type into one of the
:class:`~lecture_pipeline.models.FileKind` values.  Anything not on the
allow-list, or larger than the configured maximum, is rejected before any
bytes reach the blob store.
"""

import re
import time
from typing import Callable, Optional

from .config import PipelineConfig
from .errors import ValidationError
from .models import FileKind

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.\-]")


def base_mime_type(mime_type: str) -> str:
    """Strip parameters such as ``;codecs=opus`` from a MIME type."""
    return (mime_type or "").split(";", 1)[0].strip().lower()


def classify(mime_type: str, config: PipelineConfig) -> Optional[FileKind]:
    """Return the kind for ``mime_type`` or ``None`` if it is not allowed."""
    base = base_mime_type(mime_type)
    for kind, mime_types in config.allowed_types.items():
        if base in mime_types:
            return kind
    return None


def validate(size: int, mime_type: str, config: PipelineConfig) -> FileKind:
    """Check an upload against the size limit and the MIME allow-list.

    Args:
        size: Size of the file in bytes.
        mime_type: Declared MIME type of the file.
        config: Pipeline configuration holding the limits.

    Returns:
        The :class:`FileKind` of the accepted file.

    Raises:
        ValidationError: If the file is too large or of an unsupported type.
    """
    if size > config.max_file_size:
        limit_mb = config.max_file_size // (1024 * 1024)
        raise ValidationError(f"File size must be less than {limit_mb}MB", step="validating")
    kind = classify(mime_type, config)
    if kind is None:
        raise ValidationError(
            "Unsupported file type. Please upload audio, video, PDF, PowerPoint, or Word documents.",
            step="validating",
        )
    return kind


def sanitize_file_name(file_name: str) -> str:
    return _UNSAFE_CHARS.sub("_", file_name)


def generate_file_path(
    lecture_id: str,
    file_name: str,
    *,
    clock: Callable[[], float] = time.time,
) -> str:
    """Build the storage key for a new upload.

    Keys look like ``lectures/<lecture_id>/<epoch millis>_<sanitised name>``.
    """
    timestamp = int(clock() * 1000)
    return f"lectures/{lecture_id}/{timestamp}_{sanitize_file_name(file_name)}"
