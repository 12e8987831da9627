"""
Unit Tests for the blob stores
Local store against a temp dir, S3 store against botocore's Stubber
"""
import asyncio
import logging
import time

import boto3
import pytest
from botocore.stub import ANY, Stubber

from app.core.config import settings
from app.core.exceptions import UpstreamStorageError
from app.services.storage_service import (
    LocalBlobStore,
    S3BlobStore,
    build_blob_store,
    generate_storage_key,
)


class TestStorageKeys:

    def test_keeps_lowercase_extension(self):
        key = generate_storage_key("Report.PDF")

        assert key.endswith(".pdf")
        assert len(key) == 32 + len(".pdf")

    def test_no_extension(self):
        assert len(generate_storage_key("Makefile")) == 32
        assert len(generate_storage_key(None)) == 32

    def test_keys_are_unique(self):
        assert generate_storage_key("a.pdf") != generate_storage_key("a.pdf")


# ============================================
# Local store
# ============================================

@pytest.fixture
def local_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "uploads", base_url="http://api.test/uploads/")


class TestLocalBlobStore:

    @pytest.mark.asyncio
    async def test_put_writes_file(self, local_store):
        key = await local_store.put(b"hello", "notes.txt", "text/plain")

        assert (local_store.root / key).read_bytes() == b"hello"
        assert local_store.url_for(key) == f"http://api.test/uploads/{key}"

    @pytest.mark.asyncio
    async def test_remove(self, local_store):
        key = await local_store.put(b"hello", "notes.txt")

        assert await local_store.remove(key) is True
        assert not (local_store.root / key).exists()

    @pytest.mark.asyncio
    async def test_remove_missing_counts_as_removed(self, local_store):
        assert await local_store.remove("never-written.pdf") is True

    @pytest.mark.asyncio
    async def test_remove_refuses_to_leave_root(self, local_store, tmp_path):
        outside = tmp_path / "secret.txt"
        outside.write_text("keep me")

        assert await local_store.remove("../secret.txt") is True
        assert outside.exists()

    @pytest.mark.asyncio
    async def test_remove_many(self, local_store):
        keys = [await local_store.put(b"x", f"{i}.txt") for i in range(3)]

        assert await local_store.remove_many(keys + ["", "missing.txt"]) == 4
        assert list(local_store.root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_remove_many_empty(self, local_store):
        assert await local_store.remove_many([]) == 0


class SlowStore(LocalBlobStore):
    async def _put(self, key, content, content_type):
        await asyncio.sleep(1)

    async def _remove(self, key):
        await asyncio.sleep(1)


class LateStore(LocalBlobStore):
    """Finishes its write after the caller has given up"""

    async def _put(self, key, content, content_type):
        await asyncio.sleep(0.2)
        await super()._put(key, content, content_type)


class BrokenStore(LocalBlobStore):
    async def _put(self, key, content, content_type):
        raise PermissionError("read-only filesystem")

    async def _remove(self, key):
        raise PermissionError("read-only filesystem")


class TestFailures:

    @pytest.mark.asyncio
    async def test_put_timeout(self, tmp_path, caplog):
        store = SlowStore(tmp_path, base_url="http://api.test/uploads", timeout=0.01)

        with pytest.raises(UpstreamStorageError) as exc_info:
            await store.put(b"x", "a.pdf")

        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "File storage failed: timed out"

        # the late write cannot be removed either, so its key is reported
        with caplog.at_level(logging.WARNING, logger="plote"):
            await store.wait_for_cleanups()
        orphaned = [r for r in caplog.records if getattr(r, "event_type", None) == "orphaned_blobs"]
        assert orphaned[0].storage_keys == [exc_info.value.details["key"]]

    @pytest.mark.asyncio
    async def test_late_write_after_timeout_is_removed(self, tmp_path):
        store = LateStore(tmp_path / "uploads", base_url="http://api.test/uploads", timeout=0.05)

        with pytest.raises(UpstreamStorageError):
            await store.put(b"x", "a.pdf")
        await store.wait_for_cleanups()

        assert list(store.root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_put_os_error(self, tmp_path):
        store = BrokenStore(tmp_path, base_url="http://api.test/uploads")

        with pytest.raises(UpstreamStorageError):
            await store.put(b"x", "a.pdf")

    @pytest.mark.asyncio
    async def test_remove_never_raises(self, tmp_path):
        slow = SlowStore(tmp_path, base_url="http://api.test/uploads", timeout=0.01)
        broken = BrokenStore(tmp_path, base_url="http://api.test/uploads")

        assert await slow.remove("a.pdf") is False
        assert await broken.remove("a.pdf") is False
        assert await broken.remove_many(["a.pdf", "b.pdf"]) == 0


# ============================================
# S3 store
# ============================================

@pytest.fixture
def s3_client():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def s3_store(s3_client) -> S3BlobStore:
    return S3BlobStore("plote-test", client=s3_client, timeout=5, max_retries=3, base_delay=0, max_delay=0)


class TestS3BlobStore:

    @pytest.mark.asyncio
    async def test_put(self, s3_store, s3_client):
        with Stubber(s3_client) as stubber:
            stubber.add_response(
                "put_object",
                {},
                {"Bucket": "plote-test", "Key": ANY, "Body": b"data", "ContentType": "application/pdf"},
            )

            key = await s3_store.put(b"data", "report.pdf", "application/pdf")

            stubber.assert_no_pending_responses()
        assert key.endswith(".pdf")

    @pytest.mark.asyncio
    async def test_put_retries_then_succeeds(self, s3_store, s3_client):
        with Stubber(s3_client) as stubber:
            stubber.add_client_error("put_object", service_error_code="SlowDown", http_status_code=503)
            stubber.add_client_error("put_object", service_error_code="SlowDown", http_status_code=503)
            stubber.add_response("put_object", {})

            await s3_store.put(b"data", "report.pdf")

            stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_put_gives_up_after_max_retries(self, s3_store, s3_client):
        with Stubber(s3_client) as stubber:
            for _ in range(3):
                stubber.add_client_error("put_object", service_error_code="InternalError", http_status_code=500)

            with pytest.raises(UpstreamStorageError):
                await s3_store.put(b"data", "report.pdf")

            stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_remove_missing_key(self, s3_store, s3_client):
        with Stubber(s3_client) as stubber:
            stubber.add_client_error("delete_object", service_error_code="NoSuchKey", http_status_code=404)

            assert await s3_store.remove("gone.pdf") is True

    @pytest.mark.asyncio
    async def test_remove_access_denied(self, s3_store, s3_client):
        with Stubber(s3_client) as stubber:
            stubber.add_client_error("delete_object", service_error_code="AccessDenied", http_status_code=403)

            assert await s3_store.remove("locked.pdf") is False

    @pytest.mark.asyncio
    async def test_remove_many_counts_errors(self, s3_store, s3_client):
        with Stubber(s3_client) as stubber:
            stubber.add_response(
                "delete_objects",
                {
                    "Deleted": [{"Key": "a.pdf"}],
                    "Errors": [{"Key": "b.pdf", "Code": "AccessDenied", "Message": "Access Denied"}],
                },
                {
                    "Bucket": "plote-test",
                    "Delete": {"Objects": [{"Key": "a.pdf"}, {"Key": "b.pdf"}], "Quiet": True},
                },
            )

            assert await s3_store.remove_many(["a.pdf", "b.pdf"]) == 1

    @pytest.mark.asyncio
    async def test_prepare_creates_missing_bucket(self, s3_store, s3_client):
        with Stubber(s3_client) as stubber:
            stubber.add_client_error("head_bucket", service_error_code="404", http_status_code=404)
            stubber.add_response("create_bucket", {"Location": "/plote-test"}, {"Bucket": "plote-test"})

            await s3_store.prepare()

            stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_prepare_existing_bucket(self, s3_store, s3_client):
        with Stubber(s3_client) as stubber:
            stubber.add_response("head_bucket", {}, {"Bucket": "plote-test"})

            await s3_store.prepare()

            stubber.assert_no_pending_responses()

    def test_url_for_is_presigned(self, s3_store):
        url = s3_store.url_for("abc.pdf")

        assert "plote-test" in url
        assert "abc.pdf" in url
        assert "Signature" in url


# ============================================
# Factory
# ============================================

class TestBuildBlobStore:

    def test_local(self, tmp_path):
        config = settings.model_copy(update={"STORAGE_MODE": "local", "UPLOAD_DIR": str(tmp_path / "up")})

        store = build_blob_store(config)

        assert isinstance(store, LocalBlobStore)
        assert store.root == (tmp_path / "up").resolve()
        assert store.url_for("k.pdf").endswith("/uploads/k.pdf")

    def test_s3(self):
        config = settings.model_copy(update={
            "STORAGE_MODE": "S3",
            "S3_BUCKET_NAME": "plote-bucket",
            "AWS_ACCESS_KEY_ID": "testing",
            "AWS_SECRET_ACCESS_KEY": "testing",
        })

        store = build_blob_store(config)

        assert isinstance(store, S3BlobStore)
        assert store.bucket == "plote-bucket"

    def test_s3_requires_bucket(self):
        config = settings.model_copy(update={"STORAGE_MODE": "s3", "S3_BUCKET_NAME": ""})

        with pytest.raises(ValueError):
            build_blob_store(config)

    def test_unknown_mode(self):
        config = settings.model_copy(update={"STORAGE_MODE": "ftp"})

        with pytest.raises(ValueError):
            build_blob_store(config)


class SlowS3Client:
    """Blocking client whose uploads outlive the store timeout"""

    def __init__(self):
        self.objects = {}
        self.deleted = []

    def put_object(self, Bucket, Key, Body, **kwargs):
        time.sleep(0.3)
        self.objects[Key] = Body

    def delete_object(self, Bucket, Key):
        self.deleted.append(Key)
        self.objects.pop(Key, None)


@pytest.mark.asyncio
async def test_s3_upload_finishing_after_timeout_is_deleted():
    client = SlowS3Client()
    store = S3BlobStore("plote-test", client=client, timeout=0.1, max_retries=1)

    with pytest.raises(UpstreamStorageError) as exc_info:
        await store.put(b"data", "report.pdf")
    await store.wait_for_cleanups()

    key = exc_info.value.details["key"]
    assert client.objects == {}
    assert client.deleted == [key]
