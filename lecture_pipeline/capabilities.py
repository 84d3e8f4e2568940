"""
Runtime capabilities used by local transcription.

Local transcription needs two things from its host: an in-process speech
recogniser and a way to play audio to it.  Both are injected into the
:class:`~lecture_pipeline.transcription.TranscriptionEngine` through the
protocols below, so the engine never probes its environment itself.

Callbacks may be invoked from any thread; the engine marshals them onto
its event loop.
"""

from __future__ import annotations

import io
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence

from pydub import AudioSegment, playback
from pydub.exceptions import CouldntDecodeError
from pydub.utils import ratio_to_db

from .media_probe import format_for

logger = logging.getLogger(__name__)


@dataclass
class RecognitionResult:
    """Best alternative of one recogniser result."""

    transcript: str
    is_final: bool = True


class RecognitionSession(Protocol):
    on_result: Optional[Callable[[Sequence[RecognitionResult]], None]]
    on_end: Optional[Callable[[], None]]
    on_error: Optional[Callable[[str], None]]

    def start(self) -> None: ...

    def stop(self) -> None: ...


class SpeechRecognitionCapability(Protocol):
    def is_available(self) -> bool: ...

    def create_session(
        self, *, language: str, continuous: bool, interim_results: bool
    ) -> RecognitionSession: ...


class MediaElement(Protocol):
    volume: float
    on_loaded: Optional[Callable[[], None]]
    on_ended: Optional[Callable[[], None]]
    on_error: Optional[Callable[[], None]]

    @property
    def duration(self) -> Optional[float]: ...

    def load(self) -> None: ...

    def play(self) -> None: ...

    def close(self) -> None: ...


class MediaPlayback(Protocol):
    def open(self, data: bytes, mime_type: str) -> MediaElement: ...


class UnavailableSpeechRecognition:
    """Capability for hosts without an in-process recogniser."""

    def is_available(self) -> bool:
        return False

    def create_session(self, *, language: str, continuous: bool, interim_results: bool):
        raise RuntimeError("Speech recognition is not available on this host")


class PydubMediaElement:
    """Plays a blob through the local audio device with pydub.

    Decoding starts on :meth:`load`; ``on_loaded`` or ``on_error`` fires once
    the data is ready.  :meth:`play` plays in a daemon thread and fires
    ``on_ended`` when playback finishes.
    """

    def __init__(self, data: bytes, mime_type: str) -> None:
        self._data = data
        self._mime_type = mime_type
        self._segment: Optional[AudioSegment] = None
        self.volume = 1.0
        self.on_loaded: Optional[Callable[[], None]] = None
        self.on_ended: Optional[Callable[[], None]] = None
        self.on_error: Optional[Callable[[], None]] = None

    @property
    def duration(self) -> Optional[float]:
        return self._segment.duration_seconds if self._segment is not None else None

    def load(self) -> None:
        threading.Thread(target=self._decode, daemon=True).start()

    def _decode(self) -> None:
        try:
            with io.BytesIO(self._data) as buffer:
                self._segment = AudioSegment.from_file(buffer, format=format_for(self._mime_type))
        except (CouldntDecodeError, OSError, ValueError, IndexError) as exc:
            logger.warning("Could not decode audio for playback: %s", exc)
            if self.on_error:
                self.on_error()
            return
        if self.on_loaded:
            self.on_loaded()

    def play(self) -> None:
        if self._segment is None:
            raise RuntimeError("Media element is not loaded")
        segment = self._segment
        if 0 < self.volume < 1:
            segment = segment.apply_gain(ratio_to_db(self.volume))
        threading.Thread(target=self._play, args=(segment,), daemon=True).start()

    def _play(self, segment: AudioSegment) -> None:
        try:
            playback.play(segment)
        except OSError as exc:
            logger.warning("Audio playback failed: %s", exc)
            if self.on_error:
                self.on_error()
            return
        if self.on_ended:
            self.on_ended()

    def close(self) -> None:
        self._segment = None
        self._data = b""


class PydubPlayback:
    """:class:`MediaPlayback` backed by pydub and the host's audio output."""

    def open(self, data: bytes, mime_type: str) -> PydubMediaElement:
        return PydubMediaElement(data, mime_type)
