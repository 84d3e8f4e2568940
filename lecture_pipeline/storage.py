"""
Blob store for lecture files.

Lecture files live in a Google Cloud Storage bucket under keys produced by
:func:`lecture_pipeline.files.generate_file_path`.  :class:`GcsBlobStore`
wraps the bucket and turns client errors into
:class:`~lecture_pipeline.errors.StorageError`.  Writes never overwrite an
existing object.
"""

import logging
from typing import Optional, Protocol

from google.api_core import exceptions as api_exceptions
from google.cloud import storage
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import StorageError

logger = logging.getLogger(__name__)

CACHE_CONTROL = "max-age=3600"

TRANSIENT_ERRORS = (
    api_exceptions.TooManyRequests,
    api_exceptions.InternalServerError,
    api_exceptions.ServiceUnavailable,
)


class BlobStore(Protocol):
    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None: ...

    def get(self, key: str) -> bytes: ...

    def delete(self, key: str) -> None: ...

    def exists(self, key: str) -> bool: ...

    def public_url(self, key: str) -> str: ...


class GcsBlobStore:
    """Cloud Storage bucket holding uploaded lecture files."""

    def __init__(self, bucket_name: str, client: Optional[storage.Client] = None) -> None:
        self.bucket_name = bucket_name
        self._client = client or storage.Client()
        self.bucket = self._client.bucket(bucket_name)

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        """Upload ``data`` to ``key``.

        Raises:
            StorageError: If the key already exists or the upload fails.
        """
        blob = self.bucket.blob(key)
        blob.cache_control = CACHE_CONTROL
        try:
            # Generation 0 means "only if no live object exists".
            blob.upload_from_string(data, content_type=content_type, if_generation_match=0)
        except api_exceptions.PreconditionFailed as exc:
            raise StorageError(f"Object already exists: {key}", step="uploading", cause=exc) from exc
        except api_exceptions.GoogleAPIError as exc:
            raise StorageError(f"Upload failed: {exc}", step="uploading", cause=exc) from exc
        logger.info("Stored gs://%s/%s (%d bytes)", self.bucket_name, key, len(data))

    def get(self, key: str) -> bytes:
        try:
            return self.bucket.blob(key).download_as_bytes()
        except api_exceptions.GoogleAPIError as exc:
            raise StorageError(f"Download failed: {exc}", step="downloading", cause=exc) from exc

    def delete(self, key: str) -> None:
        """Delete ``key``.  A key that is already gone counts as deleted.

        Raises:
            StorageError: If the object could not be deleted.
        """
        try:
            self._delete_blob(key)
        except api_exceptions.NotFound:
            logger.info("gs://%s/%s already deleted", self.bucket_name, key)
        except api_exceptions.GoogleAPIError as exc:
            raise StorageError(f"Delete failed: {exc}", step="deleting", cause=exc) from exc

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        wait=wait_exponential(multiplier=0.5, max=4),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _delete_blob(self, key: str) -> None:
        self.bucket.blob(key).delete()
        logger.info("Deleted gs://%s/%s", self.bucket_name, key)

    def exists(self, key: str) -> bool:
        try:
            return self.bucket.blob(key).exists()
        except api_exceptions.GoogleAPIError as exc:
            raise StorageError(f"Lookup failed: {exc}", cause=exc) from exc

    def public_url(self, key: str) -> str:
        return self.bucket.blob(key).public_url
