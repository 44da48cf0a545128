"""
Object Storage

S3-compatible document storage (AWS S3, MinIO) using boto3. The boto3 client
is synchronous, so every call runs in a worker thread.

Object ids are opaque to callers: they are generated here and stored in the
application document.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Iterable
from functools import lru_cache

import boto3
from botocore.exceptions import ClientError

from app.core.config import settings

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 64 * 1024


class StorageError(Exception):
    """Raised when an object storage operation fails."""


class S3ObjectStorage:
    """
    Document store backed by a single S3 bucket.

    Example:
        storage = S3ObjectStorage(bucket_name="access-documents", endpoint_url=None)
        object_id = await storage.upload(pdf_bytes, "application/pdf")
    """

    def __init__(
        self,
        bucket_name: str,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str = "us-east-1",
    ):
        self.bucket_name = bucket_name
        self.s3_client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )
        logger.info(
            f"Initialized S3 storage: bucket={bucket_name}, endpoint={endpoint_url or 'AWS S3'}"
        )

    async def upload(
        self,
        data: bytes,
        content_type: str,
        existing_id: str | None = None,
    ) -> str:
        """
        Store a document.

        Args:
            data: File content
            content_type: MIME type
            existing_id: Overwrite this object instead of creating a new one

        Returns:
            The object id

        Raises:
            StorageError: If the upload fails
        """
        object_id = existing_id or uuid.uuid4().hex
        try:
            await asyncio.to_thread(
                self.s3_client.put_object,
                Bucket=self.bucket_name,
                Key=object_id,
                Body=data,
                ContentType=content_type,
            )
        except ClientError as e:
            raise StorageError(f"Failed to upload object {object_id}: {e}") from e
        logger.info(f"Uploaded object {object_id} ({len(data)} bytes)")
        return object_id

    async def delete(self, object_id: str) -> None:
        try:
            await asyncio.to_thread(
                self.s3_client.delete_object, Bucket=self.bucket_name, Key=object_id
            )
        except ClientError as e:
            raise StorageError(f"Failed to delete object {object_id}: {e}") from e
        logger.info(f"Deleted object {object_id}")

    async def download_as_stream(self, object_id: str) -> AsyncIterator[bytes]:
        """
        Stream a stored document in chunks.

        Raises:
            StorageError: If the object cannot be read
        """
        try:
            response = await asyncio.to_thread(
                self.s3_client.get_object, Bucket=self.bucket_name, Key=object_id
            )
        except ClientError as e:
            raise StorageError(f"Failed to read object {object_id}: {e}") from e

        body = response["Body"]

        async def _chunks() -> AsyncIterator[bytes]:
            try:
                while chunk := await asyncio.to_thread(body.read, DOWNLOAD_CHUNK_SIZE):
                    yield chunk
            finally:
                body.close()

        return _chunks()


async def cleanup_documents(storage: S3ObjectStorage, object_ids: Iterable[str]) -> list[str]:
    """
    Delete documents no longer referenced by any application.

    Best effort: a failed deletion is logged and skipped.

    Returns:
        The ids that were deleted
    """
    deleted = []
    for object_id in object_ids:
        try:
            await storage.delete(object_id)
            deleted.append(object_id)
        except Exception as e:
            logger.error(f"Failed to delete document {object_id}: {e}", exc_info=True)
    return deleted


@lru_cache
def get_storage() -> S3ObjectStorage:
    """Get the shared storage client (FastAPI dependency)."""
    return S3ObjectStorage(
        bucket_name=settings.s3_bucket_name,
        endpoint_url=settings.s3_endpoint_url,
        access_key=settings.s3_access_key_id,
        secret_key=settings.s3_secret_access_key,
        region=settings.s3_region,
    )
