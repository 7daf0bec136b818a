"""
Attachment pipeline.

Uploads validate locally (non-empty, size ceiling, allowed content type)
before any storage call. Messages keep only the stable "<bucket>/<path>"
reference; readers exchange it for a short-lived signed url through
get_access_url(), which falls back to the stored reference when signing
fails so a broken link never turns into an error.
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Callable, Optional
import logging
import time

from config import (
    ALLOWED_CONTENT_TYPES,
    ATTACHMENTS_BUCKET,
    MAX_FILE_BYTES,
    MAX_IMAGE_BYTES,
    SIGNED_URL_TTL_SECONDS,
)
from models.enums import MimeClass
from models.message import Attachment
from services.storage import ObjectStorage, StorageError
from utils.errors import (
    EmptyPayload,
    PayloadTooLarge,
    TransientStoreError,
    UnsupportedContentType,
)
from utils.util import sanitize_filename

logger = logging.getLogger("marketplace_messaging")


def _epoch_millis() -> int:
    return int(time.time() * 1000)


def classify_content_type(content_type: str) -> MimeClass:
    return MimeClass.IMAGE if content_type.startswith("image/") else MimeClass.FILE


def split_remote_ref(remote_ref: str) -> tuple[str, str]:
    """
    Splits a stored "<bucket>/<path>" reference

    Returns:
        tuple of (bucket, path)
    """
    if not remote_ref or "://" in remote_ref:
        raise ValueError(f"not a storage reference: {remote_ref}")
    bucket, _, path = remote_ref.partition("/")
    if not bucket or not path:
        raise ValueError(f"not a storage reference: {remote_ref}")
    return bucket, path


class AttachmentPipeline:
    def __init__(
        self,
        storage: ObjectStorage,
        bucket: str = ATTACHMENTS_BUCKET,
        timeout: float = 10,
        signed_url_ttl: int = SIGNED_URL_TTL_SECONDS,
        clock_ms: Callable[[], int] = _epoch_millis,
    ):
        self.storage = storage
        self.bucket = bucket
        self.timeout = timeout
        self.signed_url_ttl = signed_url_ttl
        self.clock_ms = clock_ms
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="storage")

    def _call_with_timeout(self, func, *args):
        future = self._executor.submit(func, *args)
        return future.result(timeout=self.timeout)

    def validate(self, content: bytes, content_type: str) -> MimeClass:
        """
        Checks an upload before anything leaves the process

        Args:
            content: raw bytes of the upload
            content_type: declared mime type

        Returns:
            the mime class (image or file)
        """
        if not content:
            raise EmptyPayload("attachment is empty")

        content_type = (content_type or "").split(";")[0].strip().lower()
        mime_class = classify_content_type(content_type)
        max_size = MAX_IMAGE_BYTES if mime_class is MimeClass.IMAGE else MAX_FILE_BYTES
        if len(content) > max_size:
            raise PayloadTooLarge(
                f"attachment exceeds the {max_size // (1024 * 1024)}MB limit for {mime_class.value}s"
            )

        if content_type not in ALLOWED_CONTENT_TYPES:
            raise UnsupportedContentType(f"content type not allowed: {content_type or 'unknown'}")

        return mime_class

    def upload(
        self, content: bytes, owner_id: str, filename: str, content_type: str
    ) -> Attachment:
        """
        Uploads an attachment to object storage

        Args:
            content: raw bytes of the upload
            owner_id: id of the uploading user, namespaces the storage path
            filename: original file name, kept as the display name
            content_type: declared mime type

        Returns:
            the Attachment to embed in a message
        """
        mime_class = self.validate(content, content_type)
        content_type = content_type.split(";")[0].strip().lower()

        path = f"{owner_id}/{self.clock_ms()}_{sanitize_filename(filename)}"
        logger.info(f"uploading attachment {self.bucket}/{path} ({len(content)} bytes)")

        try:
            self._call_with_timeout(
                self.storage.upload, self.bucket, path, content, content_type
            )
        except FuturesTimeout as e:
            logger.error(f"attachment upload timed out after {self.timeout}s: {path}")
            raise TransientStoreError("upload_attachment", owner_id, e) from e
        except StorageError as e:
            logger.error(f"attachment upload failed: {e}")
            raise TransientStoreError("upload_attachment", owner_id, e) from e

        return Attachment(
            remote_ref=f"{self.bucket}/{path}",
            display_name=filename or sanitize_filename(filename),
            size=len(content),
            mime_class=mime_class.value,
        )

    def get_access_url(self, remote_ref: str, ttl_seconds: Optional[int] = None) -> str:
        """
        Exchanges a stored reference for a short-lived signed url

        Args:
            remote_ref: stable "<bucket>/<path>" reference
            ttl_seconds: lifetime of the url, defaults to the configured ttl

        Returns:
            the signed url, or remote_ref unchanged if signing fails
        """
        ttl_seconds = ttl_seconds or self.signed_url_ttl
        try:
            bucket, path = split_remote_ref(remote_ref)
            return self._call_with_timeout(
                self.storage.create_signed_url, bucket, path, ttl_seconds
            )
        except FuturesTimeout:
            logger.warning(f"signing timed out for {remote_ref}, returning stored reference")
        except (StorageError, ValueError) as e:
            logger.warning(f"signing failed for {remote_ref}, returning stored reference: {e}")
        except Exception as e:
            # signing never raises
            logger.error(f"unexpected signing error for {remote_ref}, returning stored reference: {e!r}")
        return remote_ref

    def is_owned_by(self, remote_ref: str, owner_id: str) -> bool:
        """True if the reference points into this pipeline's bucket under the owner's folder"""
        try:
            bucket, path = split_remote_ref(remote_ref)
        except ValueError:
            return False
        if ".." in path.split("/"):
            return False
        return bool(owner_id) and bucket == self.bucket and path.startswith(f"{owner_id}/")

    def delete(self, remote_ref: str) -> bool:
        """Best-effort removal of a stored object"""
        try:
            bucket, path = split_remote_ref(remote_ref)
            self._call_with_timeout(self.storage.remove, bucket, path)
            logger.info(f"attachment removed: {remote_ref}")
            return True
        except FuturesTimeout:
            logger.warning(f"removing attachment timed out: {remote_ref}")
        except (StorageError, ValueError) as e:
            logger.warning(f"removing attachment failed: {remote_ref}: {e}")
        return False
