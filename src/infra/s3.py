import asyncio
import logging
from functools import partial
from typing import Any, List, Optional
import boto3
from botocore.exceptions import BotoCoreError, ClientError
from infra.core_types import FileStorage, normalize_path, under_prefix
from infra.errors import AlreadyExistsError, NotFoundError, StorageBackendError, ValidationError

logger = logging.getLogger(__name__)

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}

def _is_missing(error: ClientError) -> bool:
    return str(error.response.get("Error", {}).get("Code")) in _MISSING_CODES

class S3FileStorage(FileStorage):
    """
    S3-compatible object storage (AWS S3, MinIO). Objects are flat keys, so
    parent "directories" need no creation. No path-level locking: the last
    writer to finish wins.
    """
    def __init__(self, client: Any, bucket: str):
        self.client = client
        self.bucket = bucket
        self._ensure_bucket()

    @classmethod
    def create(
        cls,
        bucket: str,
        access_key: str,
        secret_key: str,
        endpoint_url: Optional[str] = None,
        region: str = "us-east-1"
    ) -> 'S3FileStorage':
        client = boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key
        )
        return cls(client, bucket)

    def _ensure_bucket(self) -> None:
        """Ensure bucket exists"""
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            if not _is_missing(e):
                raise StorageBackendError(f"Failed to initialize bucket {self.bucket}: {e}") from e
            kwargs = {}
            region = self.client.meta.region_name
            if region and region != "us-east-1":
                kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}
            try:
                self.client.create_bucket(Bucket=self.bucket, **kwargs)
            except ClientError as e:
                raise StorageBackendError(f"Failed to create bucket {self.bucket}: {e}") from e
            logger.info(f"Created bucket {self.bucket}")

    @staticmethod
    def _key(path: str) -> str:
        key = normalize_path(path)
        if not key:
            raise ValidationError("Path parameter is required")
        return key

    async def _call(self, method, **kwargs):
        # boto3 is synchronous, run it in the default thread pool
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, partial(method, Bucket=self.bucket, **kwargs))
        except BotoCoreError as e:
            raise StorageBackendError(f"Object store request failed: {e}") from e

    async def _exists(self, key: str) -> bool:
        try:
            await self._call(self.client.head_object, Key=key)
            return True
        except ClientError as e:
            if _is_missing(e):
                return False
            raise StorageBackendError(f"Failed to stat {key}: {e}") from e

    async def write(self, path: str, data: bytes, overwrite: bool = False) -> None:
        key = self._key(path)
        if not overwrite and await self._exists(key):
            raise AlreadyExistsError(key)
        try:
            await self._call(self.client.put_object, Key=key, Body=bytes(data))
        except ClientError as e:
            raise StorageBackendError(f"Failed to write file to object store: {e}") from e

    async def upload(self, path: str, data: bytes) -> None:
        await self.write(path, data, overwrite=False)

    async def read(self, path: str) -> bytes:
        key = self._key(path)
        try:
            response = await self._call(self.client.get_object, Key=key)
        except ClientError as e:
            if _is_missing(e):
                raise NotFoundError(key) from None
            raise StorageBackendError(f"Failed to read file from object store: {e}") from e

        body = response["Body"]
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, body.read)
        finally:
            body.close()

    async def delete(self, path: str) -> None:
        key = self._key(path)
        # delete_object succeeds on missing keys, so check first
        if not await self._exists(key):
            raise NotFoundError(key)
        try:
            await self._call(self.client.delete_object, Key=key)
        except ClientError as e:
            raise StorageBackendError(f"Failed to delete file from object store: {e}") from e

    def _list_sync(self, prefix: str) -> List[str]:
        paginator = self.client.get_paginator("list_objects_v2")
        keys = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for item in page.get("Contents", []):
                keys.append(item["Key"])
        return keys

    async def list(self, prefix: str = "") -> List[str]:
        normalized = normalize_path(prefix)
        loop = asyncio.get_running_loop()
        try:
            keys = await loop.run_in_executor(None, self._list_sync, normalized)
        except (BotoCoreError, ClientError) as e:
            raise StorageBackendError(f"Failed to list files: {e}") from e
        return sorted({key for key in keys if under_prefix(key, normalized)})
