"""
Pipeline configuration.

All tunables of the pipeline live in :class:`PipelineConfig`, which is
passed into the orchestrator and the transcription engine when they are
constructed.  :meth:`PipelineConfig.from_env` builds one from environment
variables so deployments can override individual values:

* ``BUCKET_NAME`` – Cloud Storage bucket holding lecture files.
* ``MAX_FILE_SIZE`` – Largest accepted upload in bytes (100 MiB).
* ``LANGUAGE_CODE`` – BCP‑47 tag used for speech recognition.
* ``SETTLE_DELAY`` – Seconds to keep the recogniser running after playback.
* ``PLAYBACK_VOLUME`` – Volume used when playing audio to the recogniser.
* ``RECOGNITION_TIMEOUT`` – Deadline in seconds for a local recognition session.
* ``REMOTE_TIMEOUT`` – Deadline in seconds for a Cloud Speech operation.
* ``REMOTE_LATENCY`` – Artificial delay of the stub transcriber.
* ``TRANSCRIBER_BACKEND`` – ``stub`` or ``google``.
* ``DATABASE_URL`` – SQLAlchemy URL of the metadata database.
* ``SUMMARY_LENGTH`` – Default summary length in characters.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

from .models import FileKind

MAX_FILE_SIZE = 100 * 1024 * 1024

ALLOWED_TYPES: Dict[FileKind, Tuple[str, ...]] = {
    FileKind.AUDIO: ("audio/mpeg", "audio/wav", "audio/mp3", "audio/webm", "audio/ogg"),
    FileKind.PDF: ("application/pdf",),
    FileKind.PRESENTATION: (
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ),
    FileKind.DOCUMENT: (
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ),
    FileKind.VIDEO: ("video/mp4", "video/webm", "video/ogg"),
}


@dataclass(frozen=True)
class PipelineConfig:
    bucket_name: str = "lecture-files"
    max_file_size: int = MAX_FILE_SIZE
    allowed_types: Mapping[FileKind, Tuple[str, ...]] = field(
        default_factory=lambda: dict(ALLOWED_TYPES)
    )
    language_code: str = "en-US"
    settle_delay: float = 1.0
    playback_volume: float = 0.5
    recognition_timeout: Optional[float] = 7200.0
    remote_timeout: float = 900.0
    remote_latency: float = 2.0
    transcriber_backend: str = "stub"
    database_url: str = "sqlite:///./lectures.db"
    summary_length: int = 200

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PipelineConfig":
        """Build a configuration from environment variables.

        Args:
            environ: Mapping to read from.  Defaults to :data:`os.environ`.

        Returns:
            A :class:`PipelineConfig` with every unset variable left at its
            default.

        Raises:
            ValueError: If a numeric variable cannot be parsed.
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        timeout = env.get("RECOGNITION_TIMEOUT")
        return cls(
            bucket_name=env.get("BUCKET_NAME", defaults.bucket_name),
            max_file_size=int(env.get("MAX_FILE_SIZE", defaults.max_file_size)),
            language_code=env.get("LANGUAGE_CODE", defaults.language_code),
            settle_delay=float(env.get("SETTLE_DELAY", defaults.settle_delay)),
            playback_volume=float(env.get("PLAYBACK_VOLUME", defaults.playback_volume)),
            recognition_timeout=(
                defaults.recognition_timeout
                if timeout is None
                else (float(timeout) if timeout.strip() else None)
            ),
            remote_timeout=float(env.get("REMOTE_TIMEOUT", defaults.remote_timeout)),
            remote_latency=float(env.get("REMOTE_LATENCY", defaults.remote_latency)),
            transcriber_backend=env.get("TRANSCRIBER_BACKEND", defaults.transcriber_backend).lower(),
            database_url=env.get("DATABASE_URL", defaults.database_url),
            summary_length=int(env.get("SUMMARY_LENGTH", defaults.summary_length)),
        )
