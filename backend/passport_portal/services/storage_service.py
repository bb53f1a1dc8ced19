"""
Storage Service - Object store gateway for applicant documents (S3/MinIO)
With retry logic for resilient operations
"""

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError, BotoCoreError
from dataclasses import dataclass
from datetime import datetime
from functools import partial, wraps
from typing import List, Optional
import asyncio
import re
import time

from passport_portal.core.config import settings
from passport_portal.core.exceptions import (
    S3UploadError,
    S3DeleteError,
    S3PresignError,
    S3ListError,
)
from passport_portal.core.logging_config import logger


TRANSIENT_ERRORS = (ClientError, BotoCoreError, ConnectionError, TimeoutError)


def retry_with_backoff(max_retries: int = 3, base_delay: float = 1.0, max_delay: float = 30.0):
    """
    Decorator for retry logic with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            last_exception = None
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except TRANSIENT_ERRORS as e:
                    last_exception = e
                    if attempt < max_retries - 1:
                        delay = min(base_delay * (2 ** attempt), max_delay)
                        logger.warning(f"[Storage] Attempt {attempt + 1}/{max_retries} of {func.__name__} failed: {e}. Retrying in {delay:.1f}s...")
                        await asyncio.sleep(delay)
                    else:
                        logger.error(f"[Storage] All {max_retries} attempts of {func.__name__} failed: {e}")
            raise last_exception
        return wrapper
    return decorator


@dataclass
class StoredObject:
    """Entry returned by a prefix listing"""
    path: str
    size: int
    last_modified: Optional[datetime] = None


class StorageService:
    """
    Gateway to the document bucket.

    Paths are bucket-relative ("{owner_id}/{doc_type}_{millis}.{ext}"). Calls
    are not transactional with the record store; the caller decides the order
    of storage mutation and pointer writes.
    """

    def __init__(self, client=None, public_client=None, bucket_name: Optional[str] = None):
        self._client = client
        self._public_client = public_client
        self._bucket_name = bucket_name or settings.DOCUMENT_BUCKET
        self._initialized = client is not None
        self._path_pattern = re.compile(re.escape(self._bucket_name) + r"/(.+)$")

    @property
    def bucket_name(self) -> str:
        return self._bucket_name

    def _get_client(self):
        """Lazy initialization of S3/MinIO client"""
        if self._client is None:
            if settings.USE_MINIO:
                self._client = boto3.client(
                    's3',
                    endpoint_url=f"http://{settings.MINIO_ENDPOINT}",
                    aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                    aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                    config=Config(
                        signature_version='s3v4',
                        s3={'addressing_style': 'path'}
                    ),
                    region_name=settings.AWS_REGION
                )
            elif settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY:
                self._client = boto3.client(
                    's3',
                    aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                    aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                    region_name=settings.AWS_REGION
                )
            else:
                # IAM role credentials (ECS/EC2)
                self._client = boto3.client('s3', region_name=settings.AWS_REGION)
                logger.info("[Storage] S3 client using IAM role credentials")

            self._ensure_bucket()

        return self._client

    def _get_public_client(self):
        """Client configured with the browser-reachable endpoint for signed URLs"""
        if self._public_client is None:
            if settings.USE_MINIO and settings.MINIO_PUBLIC_ENDPOINT:
                self._public_client = boto3.client(
                    's3',
                    endpoint_url=f"http://{settings.MINIO_PUBLIC_ENDPOINT}",
                    aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                    aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                    config=Config(
                        signature_version='s3v4',
                        s3={'addressing_style': 'path'}
                    ),
                    region_name=settings.AWS_REGION
                )
            else:
                self._public_client = self._get_client()

        return self._public_client

    def _ensure_bucket(self):
        """Create bucket if it doesn't exist"""
        if self._initialized:
            return

        try:
            self._client.head_bucket(Bucket=self._bucket_name)
            logger.info(f"[Storage] Bucket '{self._bucket_name}' exists")
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', '')
            if error_code in ['404', 'NoSuchBucket']:
                try:
                    if settings.USE_MINIO or settings.AWS_REGION == 'us-east-1':
                        self._client.create_bucket(Bucket=self._bucket_name)
                    else:
                        self._client.create_bucket(
                            Bucket=self._bucket_name,
                            CreateBucketConfiguration={
                                'LocationConstraint': settings.AWS_REGION
                            }
                        )
                    logger.info(f"[Storage] Created bucket '{self._bucket_name}'")
                except ClientError as create_error:
                    logger.error(f"[Storage] Failed to create bucket: {create_error}")
            else:
                logger.error(f"[Storage] Error checking bucket: {e}")

        self._initialized = True

    async def _run(self, func, *args, **kwargs):
        """Run a blocking boto3 call off the event loop"""
        return await asyncio.get_event_loop().run_in_executor(
            None, partial(func, *args, **kwargs)
        )

    # ==========================================
    # Path helpers
    # ==========================================

    def public_url(self, path: str) -> str:
        """Public (unsigned) URL stored as the slot pointer"""
        base = settings.STORAGE_PUBLIC_BASE_URL.rstrip("/")
        return f"{base}/storage/v1/object/public/{self._bucket_name}/{path}"

    def extract_path(self, url: Optional[str]) -> Optional[str]:
        """Bucket-relative path from a stored pointer, None if it has none"""
        if not url:
            return None
        match = self._path_pattern.search(url.strip())
        if not match:
            return None
        return match.group(1)

    # ==========================================
    # Operations
    # ==========================================

    @retry_with_backoff(max_retries=settings.STORAGE_MAX_RETRIES)
    async def _put_object(self, path: str, data: bytes, content_type: str):
        client = self._get_client()
        await self._run(
            client.put_object,
            Bucket=self._bucket_name,
            Key=path,
            Body=data,
            ContentType=content_type,
        )

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        """
        Store an object, overwriting any object at the same path.

        Raises:
            S3UploadError: every attempt failed
        """
        start = time.perf_counter()
        try:
            await self._put_object(path, data, content_type)
        except TRANSIENT_ERRORS as e:
            logger.log_storage_event("put", path, False, error=str(e))
            raise S3UploadError(path, str(e)) from e

        duration_ms = (time.perf_counter() - start) * 1000
        logger.log_storage_event("put", path, True, duration_ms, size_bytes=len(data))
        return path

    @retry_with_backoff(max_retries=settings.STORAGE_MAX_RETRIES)
    async def _delete_objects(self, paths: List[str]):
        client = self._get_client()
        return await self._run(
            client.delete_objects,
            Bucket=self._bucket_name,
            Delete={'Objects': [{'Key': path} for path in paths], 'Quiet': True},
        )

    async def remove(self, paths: List[str]) -> None:
        """
        Remove objects by path.

        Raises:
            S3DeleteError: the call failed or the store reported per-key errors
        """
        if not paths:
            return

        try:
            response = await self._delete_objects(paths)
        except TRANSIENT_ERRORS as e:
            logger.log_storage_event("remove", ",".join(paths), False, error=str(e))
            raise S3DeleteError(paths, str(e)) from e

        errors = (response or {}).get('Errors') or []
        if errors:
            message = "; ".join(f"{err.get('Key')}: {err.get('Message') or err.get('Code')}" for err in errors)
            logger.log_storage_event("remove", ",".join(paths), False, error=message)
            raise S3DeleteError(paths, message)

        logger.log_storage_event("remove", ",".join(paths), True)

    async def issue_timed_access(self, path: str, ttl_seconds: Optional[int] = None) -> str:
        """
        Signed GET URL for a stored object.

        Raises:
            S3PresignError: the URL could not be produced
        """
        ttl_seconds = ttl_seconds or settings.SIGNED_URL_TTL_SECONDS
        try:
            client = self._get_public_client()
            url = await self._run(
                client.generate_presigned_url,
                'get_object',
                Params={'Bucket': self._bucket_name, 'Key': path},
                ExpiresIn=ttl_seconds,
            )
        except TRANSIENT_ERRORS as e:
            logger.log_storage_event("sign", path, False, error=str(e))
            raise S3PresignError(path, str(e)) from e

        logger.debug(f"[Storage] Signed {path} for {ttl_seconds}s")
        return url

    async def list_objects(self, prefix: str) -> List[StoredObject]:
        """
        List every object under a prefix.

        Raises:
            S3ListError: the listing failed
        """
        def _list() -> List[StoredObject]:
            client = self._get_client()
            paginator = client.get_paginator('list_objects_v2')
            entries = []
            for page in paginator.paginate(Bucket=self._bucket_name, Prefix=prefix):
                for obj in page.get('Contents', []):
                    entries.append(StoredObject(
                        path=obj['Key'],
                        size=obj.get('Size', 0),
                        last_modified=obj.get('LastModified'),
                    ))
            return entries

        try:
            entries = await self._run(_list)
        except TRANSIENT_ERRORS as e:
            logger.log_storage_event("list", prefix, False, error=str(e))
            raise S3ListError(prefix, str(e)) from e

        logger.log_storage_event("list", prefix, True, count=len(entries))
        return entries


# Singleton instance
storage_service = StorageService()
