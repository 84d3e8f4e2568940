"""
Orchestration layer for the lecture file pipeline.

:class:`UploadOrchestrator` coordinates the steps of storing a lecture
file:

1. Validate the declared size and MIME type.
2. Derive a storage key and upload the bytes to the blob store.
3. Probe the duration of audio and video files (best effort).
4. Optionally transcribe audio files and format the transcript.
5. Insert the file record.  Any failure after the bytes are stored
   deletes the stored blob again.

Probe and transcription failures only degrade the record: the duration is
left unset or the transcript is marked ``failed``.  Validation, storage and
database failures end the attempt and are returned as a tagged
:class:`~lecture_pipeline.models.UploadResult`.

The orchestrator also deletes files, moves the primary flag, lists a
lecture's files, re‑transcribes stored audio and produces transcript
previews and summaries.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Callable, List, Optional, Tuple

from . import files
from .config import PipelineConfig
from .database import FileRecordRepository
from .errors import (
    DatabaseError,
    MediaLoadError,
    PipelineError,
    StorageError,
    TranscriptionFailed,
    ValidationError,
)
from .media_probe import MediaDurationProbe
from .models import (
    FileKind,
    TranscriptionResult,
    TranscriptStatus,
    UploadedFile,
    UploadedFileRecord,
    UploadResult,
    UploadState,
)
from .storage import BlobStore, GcsBlobStore
from .stt_service import build_remote_transcriber
from .transcript_formatter import format_transcript, summarize
from .transcription import TranscriptionEngine

logger = logging.getLogger(__name__)

StateCallback = Callable[[UploadState], None]


def _log_event(event: str, **fields) -> None:
    logger.info(json.dumps({"event": event, **fields}, default=str))


class UploadOrchestrator:
    """Store lecture files and keep their records in step with the blob store.

    Args:
        config: Pipeline configuration.
        store: Blob store receiving file bytes.
        repository: Repository of file records.
        engine: Transcription engine for audio files.
        probe: Media duration probe.
        clock: Returns the current time in seconds; used for storage keys.
    """

    def __init__(
        self,
        config: PipelineConfig,
        store: BlobStore,
        repository: FileRecordRepository,
        engine: TranscriptionEngine,
        *,
        probe: Optional[MediaDurationProbe] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.store = store
        self.repository = repository
        self.engine = engine
        self.probe = probe or MediaDurationProbe()
        self.clock = clock

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "UploadOrchestrator":
        """Wire the Cloud Storage, SQLAlchemy and speech backends from ``config``."""
        return cls(
            config,
            GcsBlobStore(config.bucket_name),
            FileRecordRepository.from_url(config.database_url),
            TranscriptionEngine(config, build_remote_transcriber(config)),
        )

    async def upload(
        self,
        file: UploadedFile,
        lecture_id: str,
        *,
        is_primary: bool = False,
        transcribe: bool = False,
        prefer_remote: bool = False,
        on_state: Optional[StateCallback] = None,
    ) -> UploadResult:
        """Run one upload attempt.

        Returns:
            An :class:`UploadResult`.  On success it carries the new record id
            and the storage path; otherwise ``error`` holds the failure, with
            ``error.step`` naming the step that failed.
        """
        state = UploadState.VALIDATING
        stored = False

        def enter(next_state: UploadState) -> None:
            nonlocal state
            state = next_state
            _log_event("upload_state", file=file.name, lecture_id=lecture_id, state=state.value)
            if on_state:
                on_state(state)

        try:
            enter(UploadState.VALIDATING)
            kind = files.validate(file.size, file.mime_type, self.config)
            file_path = files.generate_file_path(lecture_id, file.name, clock=self.clock)

            enter(UploadState.UPLOADING)
            await asyncio.to_thread(self.store.put, file_path, file.data, file.mime_type)
            stored = True
            record = UploadedFileRecord(
                lecture_id=lecture_id,
                file_name=file.name,
                file_type=kind,
                file_size=file.size,
                file_path=file_path,
                mime_type=file.mime_type,
                is_primary=is_primary,
            )

            if kind.is_media:
                enter(UploadState.PROBING_DURATION)
                record.duration = await self._probe_duration(file)

            if transcribe and kind == FileKind.AUDIO:
                enter(UploadState.TRANSCRIBING)
                record.attach(await self._transcribe(file.data, file.mime_type, file.name, prefer_remote))
            else:
                _log_event("transcription_skipped", file=file.name, enabled=transcribe, file_type=kind.value)

            enter(UploadState.PERSISTING_METADATA)
            saved = await self._persist(record)
        except PipelineError as exc:
            if exc.step is None:
                exc.step = state.value
            if stored:
                await self._discard_blob(file_path)
            self._fail(file, exc, on_state)
            return UploadResult(success=False, error=exc)
        except Exception as exc:
            logger.exception("Unexpected error uploading %s", file.name)
            error = PipelineError(f"Unexpected error: {exc}", step=state.value, cause=exc)
            if stored:
                await self._discard_blob(file_path)
            self._fail(file, error, on_state)
            return UploadResult(success=False, error=error)

        enter(UploadState.DONE)
        _log_event("upload_complete", file_id=saved.id, path=file_path)
        return UploadResult(success=True, file_id=saved.id, file_path=file_path)

    @staticmethod
    def _fail(file: UploadedFile, error: PipelineError, on_state: Optional[StateCallback]) -> None:
        _log_event("upload_failed", file=file.name, kind=error.kind, step=error.step, error=error.message)
        if on_state:
            on_state(UploadState.FAILED)

    async def _probe_duration(self, file: UploadedFile) -> Optional[int]:
        try:
            return await self.probe.probe(file.data, file.mime_type)
        except MediaLoadError as exc:
            logger.warning("Could not get media duration for %s: %s", file.name, exc)
            return None

    async def _transcribe(
        self, audio: bytes, mime_type: str, file_name: str, prefer_remote: bool
    ) -> TranscriptionResult:
        result = TranscriptionResult(status=TranscriptStatus.PROCESSING)
        _log_event("transcript_status", file=file_name, status=result.status.value)
        try:
            text = format_transcript(
                await self.engine.transcribe(audio, mime_type, file_name, prefer_remote=prefer_remote)
            )
        except TranscriptionFailed as exc:
            logger.error("Transcription of %s failed: %s", file_name, exc)
            result.status = TranscriptStatus.FAILED
        else:
            if text:
                result.text = text
                result.status = TranscriptStatus.COMPLETED
            else:
                logger.warning("Transcription of %s produced no text", file_name)
                result.status = TranscriptStatus.FAILED
        _log_event("transcript_status", file=file_name, status=result.status.value)
        return result

    async def _persist(self, record: UploadedFileRecord) -> UploadedFileRecord:
        return await asyncio.to_thread(self.repository.insert, record)

    async def _discard_blob(self, file_path: str) -> None:
        try:
            await asyncio.to_thread(self.store.delete, file_path)
        except StorageError as exc:
            _log_event("orphaned_blob", path=file_path, error=exc.message)
        else:
            _log_event("blob_rolled_back", path=file_path)

    async def delete_file(self, file_id: str) -> None:
        """Delete a file's blob and record.

        A failed blob deletion is logged and the record is deleted anyway.

        Raises:
            DatabaseError: If the record cannot be fetched or deleted.
        """
        record = await asyncio.to_thread(self.repository.get, file_id)
        try:
            await asyncio.to_thread(self.store.delete, record.file_path)
        except StorageError as exc:
            logger.warning("Storage deletion failed for %s: %s", record.file_path, exc)
        await asyncio.to_thread(self.repository.delete, file_id)
        _log_event("file_deleted", file_id=file_id, path=record.file_path)

    async def set_primary(self, file_id: str) -> UploadedFileRecord:
        record = await asyncio.to_thread(self.repository.set_primary, file_id)
        _log_event("primary_set", file_id=file_id, lecture_id=record.lecture_id)
        return record

    def file_url(self, file_path: str) -> str:
        return self.store.public_url(file_path)

    async def list_files(self, lecture_id: str) -> List[Tuple[UploadedFileRecord, str]]:
        """Return a lecture's records, primary first, each with its public URL."""
        records = await asyncio.to_thread(self.repository.list_for_lecture, lecture_id)
        return [(record, self.file_url(record.file_path)) for record in records]

    async def download(self, file_id: str) -> Tuple[UploadedFileRecord, bytes]:
        record = await asyncio.to_thread(self.repository.get, file_id)
        data = await asyncio.to_thread(self.store.get, record.file_path)
        return record, data

    async def preview_transcript(
        self, audio: bytes, mime_type: str, file_name: str, *, prefer_remote: bool = False
    ) -> str:
        """Transcribe and format audio without storing anything.

        Raises:
            TranscriptionFailed: If no transcript could be produced.
        """
        text = await self.engine.transcribe(audio, mime_type, file_name, prefer_remote=prefer_remote)
        return format_transcript(text)

    async def retranscribe(self, file_id: str, *, prefer_remote: bool = False) -> UploadedFileRecord:
        """Transcribe an already stored audio file and update its record.

        Raises:
            ValidationError: If the file is not audio.
            StorageError: If the stored audio cannot be read.
            DatabaseError: If the record cannot be read or updated.
        """
        record = await asyncio.to_thread(self.repository.get, file_id)
        if record.file_type != FileKind.AUDIO:
            raise ValidationError("Only audio files can be transcribed", step="transcribing")
        data = await asyncio.to_thread(self.store.get, record.file_path)
        await asyncio.to_thread(
            self.repository.update_transcript, file_id, TranscriptStatus.PROCESSING, None
        )
        result = await self._transcribe(data, record.mime_type, record.file_name, prefer_remote)
        return await asyncio.to_thread(
            self.repository.update_transcript, file_id, result.status, result.text
        )

    async def summarize_file(self, file_id: str, max_length: Optional[int] = None) -> str:
        record = await asyncio.to_thread(self.repository.get, file_id)
        if record.transcript_status != TranscriptStatus.COMPLETED:
            raise ValidationError(f"File {file_id} has no completed transcript", step="summarizing")
        if max_length is None:
            max_length = self.config.summary_length
        if max_length < 1:
            raise ValidationError("max_length must be at least 1", step="summarizing")
        return summarize(record.transcript, max_length)
