"""
Transcription engine.

Lecture audio is transcribed either locally, by playing it to an in‑process
speech recogniser, or remotely through a speech‑to‑text service (see
:mod:`lecture_pipeline.stt_service`).  :meth:`TranscriptionEngine.transcribe`
applies the selection policy:

1. Use the remote service when the caller prefers it or no local
   recogniser is available.
2. Otherwise transcribe locally, and if that fails while the recogniser is
   still available, fall back to the remote service once.

Whatever goes wrong is reported as a single
:class:`~lecture_pipeline.errors.TranscriptionFailed` wrapping the last
underlying error.  The remote service is never retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Sequence

from .capabilities import (
    MediaElement,
    MediaPlayback,
    PydubPlayback,
    RecognitionResult,
    RecognitionSession,
    SpeechRecognitionCapability,
    UnavailableSpeechRecognition,
)
from .config import PipelineConfig
from .errors import MediaLoadError, RecognitionError, TranscriptionFailed
from .stt_service import RemoteTranscriber

logger = logging.getLogger(__name__)


class TranscriptionEngine:
    """Convert lecture audio into text.

    Args:
        config: Pipeline configuration (language, settle delay, volume and
            recognition deadline).
        remote: Remote speech‑to‑text service.
        speech: In‑process speech recognition capability.  Defaults to one
            that reports itself unavailable.
        playback: Media playback used to feed audio to the recogniser.
    """

    def __init__(
        self,
        config: PipelineConfig,
        remote: RemoteTranscriber,
        *,
        speech: Optional[SpeechRecognitionCapability] = None,
        playback: Optional[MediaPlayback] = None,
    ) -> None:
        self.config = config
        self.remote = remote
        self.speech = speech or UnavailableSpeechRecognition()
        self.playback = playback or PydubPlayback()

    def is_supported(self) -> bool:
        return self.speech.is_available()

    async def transcribe(
        self,
        audio: bytes,
        mime_type: str,
        file_name: str,
        *,
        prefer_remote: bool = False,
    ) -> str:
        if prefer_remote or not self.is_supported():
            try:
                return await self.transcribe_remote(audio, mime_type, file_name)
            except Exception as exc:
                raise TranscriptionFailed(
                    f"Transcription failed: {exc}", step="transcribing", cause=exc
                ) from exc
        try:
            return await self.transcribe_local(audio, mime_type)
        except Exception as exc:
            logger.warning("Local transcription of %s failed: %s", file_name, exc)
            if not self.is_supported():
                raise TranscriptionFailed(
                    f"Transcription failed: {exc}", step="transcribing", cause=exc
                ) from exc
        try:
            return await self.transcribe_remote(audio, mime_type, file_name)
        except Exception as exc:
            raise TranscriptionFailed(
                f"Transcription failed: {exc}", step="transcribing", cause=exc
            ) from exc

    async def transcribe_remote(self, audio: bytes, mime_type: str, file_name: str) -> str:
        logger.info("Using remote transcription for %s", file_name)
        return await self.remote.transcribe(audio, mime_type, file_name)

    async def transcribe_local(self, audio: bytes, mime_type: str) -> str:
        """Play ``audio`` to the local recogniser and return what it heard.

        Raises:
            RecognitionError: If no recogniser is available, the recogniser
                reports an error, or the session exceeds its deadline.
            MediaLoadError: If the audio cannot be loaded for playback.
        """
        if not self.is_supported():
            raise RecognitionError("not-supported", step="transcribing")
        session = self.speech.create_session(
            language=self.config.language_code, continuous=True, interim_results=False
        )
        element = self.playback.open(audio, mime_type)
        element.volume = self.config.playback_volume
        try:
            run = self._run_session(session, element)
            if self.config.recognition_timeout is None:
                return await run
            return await asyncio.wait_for(run, self.config.recognition_timeout)
        except asyncio.TimeoutError as exc:
            raise RecognitionError("timeout", step="transcribing", cause=exc) from exc
        finally:
            element.close()

    async def _run_session(self, session: RecognitionSession, element: MediaElement) -> str:
        loop = asyncio.get_running_loop()
        loaded = loop.create_future()
        ended = loop.create_future()
        # Resolves with the first error raised by either event source.
        failed = loop.create_future()
        fragments: List[str] = []

        def on_loop(callback: Callable, *args) -> None:
            # Events can still arrive from recogniser threads after the run.
            if not loop.is_closed():
                loop.call_soon_threadsafe(callback, *args)

        def settle(future: asyncio.Future) -> None:
            if not future.done():
                future.set_result(None)

        def fail(exc: Exception) -> None:
            if not failed.done():
                failed.set_result(exc)

        def collect(results: Sequence[RecognitionResult]) -> None:
            for result in results:
                if result.is_final and result.transcript.strip():
                    fragments.append(result.transcript.strip())

        session.on_result = lambda results: on_loop(collect, list(results))
        session.on_error = lambda code: on_loop(fail, RecognitionError(code, step="transcribing"))
        session.on_end = lambda: on_loop(logger.debug, "Recognition session ended")
        element.on_loaded = lambda: on_loop(settle, loaded)
        element.on_ended = lambda: on_loop(settle, ended)
        element.on_error = lambda: on_loop(
            fail, MediaLoadError("Failed to load audio file", step="transcribing")
        )

        started = False
        try:
            element.load()
            await self._until(loaded, failed)
            session.start()
            started = True
            element.play()
            await self._until(ended, failed)
            await self._until(asyncio.ensure_future(asyncio.sleep(self.config.settle_delay)), failed)
        finally:
            if started:
                session.stop()
            session.on_result = session.on_error = session.on_end = None
            element.on_loaded = element.on_ended = element.on_error = None
        return " ".join(fragments).strip()

    @staticmethod
    async def _until(step: asyncio.Future, failed: asyncio.Future) -> None:
        try:
            await asyncio.wait({step, failed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not step.done():
                step.cancel()
        if failed.done():
            raise failed.result()
