"""
Storage Service - Blob store for project file bytes
Local disk (aiofiles) or any S3-compatible bucket (boto3)

Only `put` may fail a request. `remove` / `remove_many` log failures and
report them through their return value, since metadata is authoritative
and an orphaned blob is harmless. Orphans are logged with event_type
"orphaned_blobs".
"""

import asyncio
import os
import uuid
from abc import ABC, abstractmethod
from functools import partial
from pathlib import Path
from typing import List, Optional, Sequence, Set

import aiofiles
import aiofiles.os
import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import Request

from app.core.config import settings, Settings
from app.core.exceptions import UpstreamStorageError
from app.core.logging_config import logger

# S3 DeleteObjects accepts at most 1000 keys per call
S3_DELETE_BATCH_SIZE = 1000

TRANSIENT_ERRORS = (ClientError, BotoCoreError, ConnectionError, TimeoutError)


def generate_storage_key(filename: Optional[str]) -> str:
    """Collision-free key: random hex plus the original lowercase extension"""
    ext = os.path.splitext(filename or "")[1].lower()
    return f"{uuid.uuid4().hex}{ext}"


class BlobStore(ABC):
    """Interface shared by the local and S3 stores"""

    backend: str = "blob"

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else settings.STORAGE_TIMEOUT_SECONDS
        self._cleanups: Set["asyncio.Task[None]"] = set()

    async def prepare(self) -> None:
        """Called once at startup"""

    async def close(self) -> None:
        """Called once at shutdown"""
        await self.wait_for_cleanups()

    @abstractmethod
    async def _put(self, key: str, content: bytes, content_type: Optional[str]) -> None:
        ...

    @abstractmethod
    async def _remove(self, key: str) -> None:
        ...

    async def _remove_many(self, keys: List[str]) -> int:
        removed = 0
        for key in keys:
            if await self.remove(key):
                removed += 1
        return removed

    @abstractmethod
    def url_for(self, key: str) -> str:
        ...

    async def put(self, content: bytes, filename: Optional[str], content_type: Optional[str] = None) -> str:
        """
        Store bytes under a new key and return it; raises UpstreamStorageError.

        Executor threads cannot be cancelled, so a write that times out may
        still land. Its key is removed once the write settles.
        """
        key = generate_storage_key(filename)
        upload = asyncio.ensure_future(self._put(key, content, content_type))
        try:
            await asyncio.wait_for(asyncio.shield(upload), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.log_storage_event("put", key, False, backend=self.backend,
                                     reason=f"timed out after {self.timeout}s")
            self._remove_when_settled(upload, key)
            raise UpstreamStorageError(key, "timed out")
        except asyncio.CancelledError:
            self._remove_when_settled(upload, key)
            raise
        except UpstreamStorageError:
            raise
        except (OSError, *TRANSIENT_ERRORS) as e:
            logger.log_storage_event("put", key, False, backend=self.backend, reason=str(e))
            raise UpstreamStorageError(key, type(e).__name__)

        logger.log_storage_event("put", key, True, backend=self.backend, size_bytes=len(content))
        return key

    def _remove_when_settled(self, upload: "asyncio.Future[None]", key: str) -> None:
        cleanup = asyncio.ensure_future(self._reap(upload, key))
        self._cleanups.add(cleanup)
        cleanup.add_done_callback(self._cleanups.discard)

    async def _reap(self, upload: "asyncio.Future[None]", key: str) -> None:
        try:
            await upload
        except Exception as e:
            logger.debug(f"[Storage:{self.backend}] Abandoned put of {key} ended with {e!r}")

        if not await self.remove(key):
            logger.warning(
                f"[Storage:{self.backend}] Orphaned blob {key} from a timed out put",
                extra={"event_type": "orphaned_blobs", "storage_keys": [key]},
            )

    async def wait_for_cleanups(self) -> None:
        """Wait until every abandoned put has been cleaned up"""
        if self._cleanups:
            await asyncio.gather(*list(self._cleanups), return_exceptions=True)

    async def remove(self, key: str) -> bool:
        """Delete one blob; a missing blob counts as removed. Never raises."""
        try:
            await asyncio.wait_for(self._remove(key), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.log_storage_event("remove", key, False, backend=self.backend,
                                     reason=f"timed out after {self.timeout}s")
            return False
        except Exception as e:
            logger.log_storage_event("remove", key, False, backend=self.backend, reason=str(e))
            return False

        logger.log_storage_event("remove", key, True, backend=self.backend)
        return True

    async def remove_many(self, keys: Sequence[str]) -> int:
        """Delete a batch of blobs and return how many went away. Never raises."""
        keys = [k for k in keys if k]
        if not keys:
            return 0
        try:
            removed = await asyncio.wait_for(self._remove_many(keys), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.log_storage_event("remove_many", f"{len(keys)} keys", False, backend=self.backend,
                                     reason=f"timed out after {self.timeout}s")
            return 0
        except Exception as e:
            logger.log_storage_event("remove_many", f"{len(keys)} keys", False, backend=self.backend,
                                     reason=str(e))
            return 0

        if removed < len(keys):
            logger.warning(f"[Storage:{self.backend}] Removed {removed}/{len(keys)} blobs")
        return removed


class LocalBlobStore(BlobStore):
    """Blobs as files under one directory, served at /uploads/<key>"""

    backend = "local"

    def __init__(self, root: Path, base_url: str, timeout: Optional[float] = None):
        super().__init__(timeout)
        self.root = Path(root).resolve()
        self.base_url = base_url.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    async def prepare(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"[Storage:local] Upload directory: {self.root}")

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path.parent != self.root:
            raise ValueError(f"Key escapes upload directory: {key!r}")
        return path

    async def _put(self, key: str, content: bytes, content_type: Optional[str]) -> None:
        async with aiofiles.open(self._path(key), "wb") as f:
            await f.write(content)

    async def _remove(self, key: str) -> None:
        try:
            path = self._path(key)
        except ValueError:
            # Such a key can never have been written
            return
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{key}"


class S3BlobStore(BlobStore):
    """
    S3 or S3-compatible bucket (MinIO, Supabase S3 gateway, ...)
    boto3 is blocking, so every call runs in the default executor.
    """

    backend = "s3"

    def __init__(
        self,
        bucket: str,
        client=None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        base_delay: float = 1.0,
        max_delay: float = 8.0,
        url_expiry: Optional[int] = None,
    ):
        super().__init__(timeout)
        self.bucket = bucket
        self.client = client or create_s3_client(settings)
        self.max_retries = max(1, max_retries if max_retries is not None else settings.STORAGE_MAX_RETRIES)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.url_expiry = url_expiry or settings.STORAGE_URL_EXPIRY

    async def _run(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def prepare(self) -> None:
        """Check the bucket, creating it when it does not exist"""
        try:
            await self._run(self.client.head_bucket, Bucket=self.bucket)
            logger.info(f"[Storage:s3] Bucket '{self.bucket}' exists")
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', '')
            if error_code not in ('404', 'NoSuchBucket'):
                logger.error(f"[Storage:s3] Error checking bucket: {e}")
                return
            try:
                await self._run(self.client.create_bucket, Bucket=self.bucket)
                logger.info(f"[Storage:s3] Created bucket '{self.bucket}'")
            except ClientError as create_error:
                logger.error(f"[Storage:s3] Failed to create bucket: {create_error}")

    async def close(self) -> None:
        await super().close()
        close = getattr(self.client, "close", None)
        if close is not None:
            close()

    async def _put(self, key: str, content: bytes, content_type: Optional[str]) -> None:
        """
        Upload with retry logic.

        Retry behavior:
            - Retries on ClientError, BotoCoreError, ConnectionError, TimeoutError
            - Exponential backoff: 1s, 2s, 4s...
        """
        extra_args = {"ContentType": content_type} if content_type else {}
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                await self._run(
                    self.client.put_object,
                    Bucket=self.bucket,
                    Key=key,
                    Body=content,
                    **extra_args
                )
                return
            except TRANSIENT_ERRORS as e:
                last_exception = e
                if attempt < self.max_retries - 1:
                    delay = min(self.base_delay * (2 ** attempt), self.max_delay)
                    logger.warning(
                        f"[S3-Upload] Attempt {attempt + 1}/{self.max_retries} failed for {key}: {e}. "
                        f"Retrying in {delay:.1f}s..."
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"[S3-Upload] ✗ All {self.max_retries} attempts failed for {key}: {e}")

        raise last_exception

    async def _remove(self, key: str) -> None:
        try:
            await self._run(self.client.delete_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in ('NoSuchKey', '404'):
                return
            raise

    async def _remove_many(self, keys: List[str]) -> int:
        removed = 0
        for start in range(0, len(keys), S3_DELETE_BATCH_SIZE):
            chunk = keys[start:start + S3_DELETE_BATCH_SIZE]
            try:
                response = await self._run(
                    self.client.delete_objects,
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": k} for k in chunk], "Quiet": True},
                )
            except TRANSIENT_ERRORS as e:
                logger.warning(f"[S3-Delete] Batch of {len(chunk)} failed: {e}")
                continue

            errors = response.get("Errors", [])
            for error in errors:
                logger.warning(f"[S3-Delete] {error.get('Key')}: {error.get('Code')} {error.get('Message')}")
            removed += len(chunk) - len(errors)

        logger.info(f"[S3-Delete] ✓ Removed {removed}/{len(keys)} objects")
        return removed

    def url_for(self, key: str) -> str:
        """Presigned GET URL; signing is local, no network call"""
        return self.client.generate_presigned_url(
            'get_object',
            Params={'Bucket': self.bucket, 'Key': key},
            ExpiresIn=self.url_expiry
        )


def create_s3_client(config: Settings):
    """boto3 client for AWS, or for an S3-compatible endpoint when S3_ENDPOINT_URL is set"""
    kwargs = {"region_name": config.AWS_REGION}
    if config.AWS_ACCESS_KEY_ID and config.AWS_SECRET_ACCESS_KEY:
        kwargs["aws_access_key_id"] = config.AWS_ACCESS_KEY_ID
        kwargs["aws_secret_access_key"] = config.AWS_SECRET_ACCESS_KEY

    if config.S3_ENDPOINT_URL:
        kwargs["endpoint_url"] = config.S3_ENDPOINT_URL
        kwargs["config"] = Config(
            signature_version='s3v4',
            s3={'addressing_style': 'path'}
        )
    else:
        kwargs["config"] = Config(signature_version='s3v4')

    return boto3.client('s3', **kwargs)


def build_blob_store(config: Settings = settings) -> BlobStore:
    """Pick the blob store from STORAGE_MODE"""
    mode = config.STORAGE_MODE.lower()
    if mode == "s3":
        if not config.S3_BUCKET_NAME:
            raise ValueError("S3_BUCKET_NAME is required when STORAGE_MODE=s3")
        return S3BlobStore(
            config.S3_BUCKET_NAME,
            client=create_s3_client(config),
            timeout=config.STORAGE_TIMEOUT_SECONDS,
            max_retries=config.STORAGE_MAX_RETRIES,
            url_expiry=config.STORAGE_URL_EXPIRY,
        )
    if mode == "local":
        return LocalBlobStore(
            config.UPLOAD_PATH,
            base_url=f"{config.PUBLIC_BASE_URL.rstrip('/')}/uploads",
            timeout=config.STORAGE_TIMEOUT_SECONDS,
        )
    raise ValueError(f"Unknown STORAGE_MODE: {config.STORAGE_MODE!r} (expected 'local' or 's3')")


def get_storage(request: Request) -> BlobStore:
    """Blob store built by the application lifespan"""
    return request.app.state.storage
