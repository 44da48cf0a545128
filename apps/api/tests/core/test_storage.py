"""
Unit tests for the S3 document storage.

Uses moto's in-memory S3 so no bucket or network access is needed.
"""

from unittest.mock import AsyncMock

import boto3
import pytest
from moto import mock_aws

from app.core.storage import S3ObjectStorage, StorageError, cleanup_documents

BUCKET = "access-documents-test"


@pytest.fixture
def storage():
    with mock_aws():
        boto3.client("s3", region_name="us-east-1").create_bucket(Bucket=BUCKET)
        yield S3ObjectStorage(
            bucket_name=BUCKET,
            endpoint_url=None,
            access_key="testing",
            secret_key="testing",
        )


async def _read(stream) -> bytes:
    return b"".join([chunk async for chunk in stream])


class TestS3ObjectStorage:
    """Tests for S3ObjectStorage."""

    @pytest.mark.asyncio
    async def test_upload_and_download(self, storage):
        object_id = await storage.upload(b"%PDF-1.7 letter", "application/pdf")

        assert object_id
        stream = await storage.download_as_stream(object_id)
        assert await _read(stream) == b"%PDF-1.7 letter"

        stored = storage.s3_client.head_object(Bucket=BUCKET, Key=object_id)
        assert stored["ContentType"] == "application/pdf"

    @pytest.mark.asyncio
    async def test_upload_overwrites_existing(self, storage):
        """Passing an existing id replaces the object under the same id."""
        object_id = await storage.upload(b"first", "application/pdf")

        same_id = await storage.upload(b"second", "application/pdf", existing_id=object_id)

        assert same_id == object_id
        assert await _read(await storage.download_as_stream(object_id)) == b"second"

    @pytest.mark.asyncio
    async def test_new_ids_are_unique(self, storage):
        first = await storage.upload(b"a", "application/pdf")
        second = await storage.upload(b"b", "application/pdf")
        assert first != second

    @pytest.mark.asyncio
    async def test_delete(self, storage):
        object_id = await storage.upload(b"letter", "application/pdf")

        await storage.delete(object_id)

        with pytest.raises(StorageError):
            await storage.download_as_stream(object_id)

    @pytest.mark.asyncio
    async def test_missing_object(self, storage):
        with pytest.raises(StorageError):
            await storage.download_as_stream("does-not-exist")

    @pytest.mark.asyncio
    async def test_missing_bucket(self):
        """Uploads to an unknown bucket surface as StorageError."""
        with mock_aws():
            storage = S3ObjectStorage(bucket_name="no-such-bucket", endpoint_url=None)
            with pytest.raises(StorageError):
                await storage.upload(b"letter", "application/pdf")


class TestCleanupDocuments:
    """Tests for best-effort document cleanup."""

    @pytest.mark.asyncio
    async def test_deletes_all(self):
        storage = AsyncMock()

        deleted = await cleanup_documents(storage, ["a", "b"])

        assert deleted == ["a", "b"]
        assert storage.delete.call_count == 2

    @pytest.mark.asyncio
    async def test_failures_are_skipped(self):
        """A failed deletion does not stop the others."""
        storage = AsyncMock()
        storage.delete = AsyncMock(side_effect=[StorageError("unreachable"), None])

        deleted = await cleanup_documents(storage, ["a", "b"])

        assert deleted == ["b"]
