"""
Remote speech‑to‑text services.

Two remote transcribers are available, selected by the
``TRANSCRIBER_BACKEND`` setting:

* ``google`` – :class:`GoogleSpeechTranscriber` submits the audio inline to
  the Google Cloud Speech API and joins the best alternative of every
  result.
* ``stub`` – :class:`StubTranscriber` is a stand‑in for environments without
  a speech backend.  It waits ``remote_latency`` seconds and returns a
  fixed sentence naming the file.  Its output is not a transcription.

Usage::

    from lecture_pipeline.stt_service import build_remote_transcriber

    transcriber = build_remote_transcriber(config)
    text = await transcriber.transcribe(audio_bytes, "audio/webm", "lecture.webm")
"""

import asyncio
import concurrent.futures
import logging
from typing import Any, Dict, Optional, Protocol

from google.api_core import exceptions as api_exceptions
from google.cloud import speech_v1p1beta1 as speech
from google.protobuf.json_format import MessageToDict

from .config import PipelineConfig
from .errors import RecognitionError
from .files import base_mime_type

logger = logging.getLogger(__name__)

Encoding = speech.RecognitionConfig.AudioEncoding

# Browser recordings and ogg files carry Opus at 48 kHz; WAV headers are read by the API.
MIME_ENCODINGS = {
    "audio/webm": (Encoding.WEBM_OPUS, 48_000),
    "audio/ogg": (Encoding.OGG_OPUS, 48_000),
    "audio/mpeg": (Encoding.MP3, 44_100),
    "audio/mp3": (Encoding.MP3, 44_100),
    "audio/wav": (Encoding.LINEAR16, None),
}


class RemoteTranscriber(Protocol):
    async def transcribe(self, audio: bytes, mime_type: str, file_name: str) -> str: ...


def extract_transcript(response: Dict[str, Any]) -> str:
    """Join the first alternative of every result in a Speech API response."""
    parts = []
    for result in response.get("results", []):
        alternatives = result.get("alternatives", [])
        if alternatives:
            parts.append(alternatives[0].get("transcript", "").strip())
    return " ".join(part for part in parts if part)


class GoogleSpeechTranscriber:
    """Transcribe audio with Google Cloud Speech‑to‑Text.

    Args:
        language_code: BCP‑47 language tag (default: ``en-US``).
        timeout: Seconds to wait for the long‑running operation.
        client: Optional pre‑built ``SpeechClient``.
    """

    def __init__(
        self,
        *,
        language_code: str = "en-US",
        timeout: float = 900.0,
        client: Optional[speech.SpeechClient] = None,
    ) -> None:
        self.language_code = language_code
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> speech.SpeechClient:
        if self._client is None:
            self._client = speech.SpeechClient()
        return self._client

    def build_config(self, mime_type: str) -> speech.RecognitionConfig:
        encoding, sample_rate = MIME_ENCODINGS.get(
            base_mime_type(mime_type), (Encoding.ENCODING_UNSPECIFIED, None)
        )
        kwargs = {}
        if sample_rate:
            kwargs["sample_rate_hertz"] = sample_rate
        return speech.RecognitionConfig(
            encoding=encoding,
            language_code=self.language_code,
            enable_automatic_punctuation=True,
            **kwargs,
        )

    def transcribe_sync(self, audio: bytes, mime_type: str, file_name: str) -> str:
        config = self.build_config(mime_type)
        logger.info("Starting STT job for %s", file_name)
        try:
            operation = self.client.long_running_recognize(
                config=config, audio=speech.RecognitionAudio(content=audio)
            )
            response = operation.result(timeout=self.timeout)
        except api_exceptions.GoogleAPICallError as exc:
            raise RecognitionError(type(exc).__name__, step="transcribing", cause=exc) from exc
        except concurrent.futures.TimeoutError as exc:
            raise RecognitionError("timeout", step="transcribing", cause=exc) from exc
        logger.info("STT job complete for %s", file_name)
        return extract_transcript(MessageToDict(response._pb))

    async def transcribe(self, audio: bytes, mime_type: str, file_name: str) -> str:
        return await asyncio.to_thread(self.transcribe_sync, audio, mime_type, file_name)


class StubTranscriber:
    """Deterministic stand‑in used when no speech backend is configured."""

    def __init__(self, *, latency: float = 2.0) -> None:
        self.latency = latency

    async def transcribe(self, audio: bytes, mime_type: str, file_name: str) -> str:
        logger.info("Using stub transcription for %s", file_name)
        await asyncio.sleep(self.latency)
        return (
            f'This is a placeholder transcription of the audio file "{file_name}". '
            "Configure a speech backend to receive real transcripts."
        )


def build_remote_transcriber(config: PipelineConfig) -> RemoteTranscriber:
    """Create the remote transcriber selected by ``config.transcriber_backend``."""
    if config.transcriber_backend == "google":
        return GoogleSpeechTranscriber(
            language_code=config.language_code, timeout=config.remote_timeout
        )
    if config.transcriber_backend == "stub":
        return StubTranscriber(latency=config.remote_latency)
    raise ValueError(f"Unknown transcriber backend: {config.transcriber_backend}")
