"""
Metadata database for uploaded lecture files.

One row per stored file lives in the ``lecture_files`` table.  The
:class:`FileRecordRepository` is the only code that talks to the database;
it returns :class:`~lecture_pipeline.models.UploadedFileRecord` values and
raises :class:`~lecture_pipeline.errors.DatabaseError` for every SQLAlchemy
failure.
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    String,
    Text,
    case,
    create_engine,
    select,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import DatabaseError, RecordNotFound
from .models import FileKind, TranscriptStatus, UploadedFileRecord

logger = logging.getLogger(__name__)

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _in_list(column: str, values) -> str:
    quoted = ", ".join(f"'{value.value}'" for value in values)
    return f"{column} IN ({quoted})"


class LectureFile(Base):
    __tablename__ = "lecture_files"
    __table_args__ = (
        CheckConstraint(_in_list("file_type", FileKind), name="ck_lecture_files_file_type"),
        CheckConstraint(
            _in_list("transcript_status", TranscriptStatus), name="ck_lecture_files_transcript_status"
        ),
        CheckConstraint(
            "transcript_status != 'completed' OR (transcript IS NOT NULL AND transcript != '')",
            name="ck_lecture_files_completed_transcript",
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    lecture_id = Column(String(64), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    file_type = Column(String(16), nullable=False)
    file_size = Column(BigInteger, nullable=False)
    file_path = Column(String(512), nullable=False)
    mime_type = Column(String(255), nullable=False)
    duration = Column(Integer)
    is_primary = Column(Boolean, nullable=False, default=False)
    transcript = Column(Text)
    transcript_status = Column(String(16), nullable=False, default=TranscriptStatus.PENDING.value, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


def _to_record(row: LectureFile) -> UploadedFileRecord:
    return UploadedFileRecord(
        id=row.id,
        lecture_id=row.lecture_id,
        file_name=row.file_name,
        file_type=FileKind(row.file_type),
        file_size=row.file_size,
        file_path=row.file_path,
        mime_type=row.mime_type,
        duration=row.duration,
        is_primary=bool(row.is_primary),
        transcript=row.transcript,
        transcript_status=TranscriptStatus(row.transcript_status),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def create_session_factory(database_url: str) -> sessionmaker:
    """Create a session factory for ``database_url``.

    In‑memory SQLite databases share a single connection so that every
    thread sees the same data.
    """
    kwargs = {}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    engine = create_engine(database_url, **kwargs)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FileRecordRepository:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str) -> "FileRecordRepository":
        repository = cls(create_session_factory(database_url))
        repository.create_tables()
        return repository

    def create_tables(self) -> None:
        Base.metadata.create_all(bind=self._session_factory.kw["bind"])

    @contextmanager
    def _session(self, step: str) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("Database error while %s: %s", step, exc)
            raise DatabaseError(f"Database error: {exc}", step=step, cause=exc) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def _load(session: Session, file_id: str, step: str) -> LectureFile:
        row = session.get(LectureFile, file_id)
        if row is None:
            raise RecordNotFound(f"File {file_id} not found", step=step)
        return row

    def insert(self, record: UploadedFileRecord) -> UploadedFileRecord:
        """Insert ``record`` and return it with its generated id.

        When the record is primary, sibling records of the same lecture lose
        their primary flag in the same transaction.
        """
        with self._session("persisting_metadata") as session:
            if record.is_primary:
                session.execute(
                    update(LectureFile)
                    .where(LectureFile.lecture_id == record.lecture_id)
                    .values(is_primary=False)
                )
            row = LectureFile(
                lecture_id=record.lecture_id,
                file_name=record.file_name,
                file_type=record.file_type.value,
                file_size=record.file_size,
                file_path=record.file_path,
                mime_type=record.mime_type,
                duration=record.duration,
                is_primary=record.is_primary,
                transcript=record.transcript,
                transcript_status=record.transcript_status.value,
            )
            session.add(row)
            session.flush()
            return _to_record(row)

    def get(self, file_id: str) -> UploadedFileRecord:
        with self._session("fetching") as session:
            return _to_record(self._load(session, file_id, "fetching"))

    def update_transcript(
        self, file_id: str, status: TranscriptStatus, transcript: Optional[str] = None
    ) -> UploadedFileRecord:
        with self._session("updating_transcript") as session:
            row = self._load(session, file_id, "updating_transcript")
            row.transcript_status = status.value
            row.transcript = transcript
            session.flush()
            return _to_record(row)

    def delete(self, file_id: str) -> None:
        with self._session("deleting") as session:
            session.delete(self._load(session, file_id, "deleting"))

    def list_for_lecture(self, lecture_id: str) -> List[UploadedFileRecord]:
        with self._session("listing") as session:
            rows = session.scalars(
                select(LectureFile)
                .where(LectureFile.lecture_id == lecture_id)
                .order_by(LectureFile.is_primary.desc(), LectureFile.created_at.asc())
            ).all()
            return [_to_record(row) for row in rows]

    def set_primary(self, file_id: str) -> UploadedFileRecord:
        """Make ``file_id`` the only primary file of its lecture.

        A single UPDATE sets the flag on the target and clears it on every
        sibling.
        """
        with self._session("setting_primary") as session:
            row = self._load(session, file_id, "setting_primary")
            session.execute(
                update(LectureFile)
                .where(LectureFile.lecture_id == row.lecture_id)
                .values(is_primary=case((LectureFile.id == file_id, True), else_=False))
                .execution_options(synchronize_session=False)
            )
            session.refresh(row)
            return _to_record(row)
