"""Object store interface and the boto3-backed S3 implementation."""

import asyncio
import functools
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from bundler.config import Settings
from bundler.errors import NotFoundError, StoreError

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass
class ObjectInfo:
    key: str
    size: int
    last_modified: Optional[datetime] = None


class ObjectStore(ABC):
    """Abstract blob store. All operations may suspend on network I/O."""

    @abstractmethod
    async def head(self, bucket: str, key: str) -> int:
        """Return the object's size. Raises NotFoundError if it does not exist."""
        ...

    @abstractmethod
    async def get(self, bucket: str, key: str) -> bytes:
        """Return the object's bytes. Raises NotFoundError if it does not exist."""
        ...

    @abstractmethod
    async def put(
        self,
        bucket: str,
        key: str,
        data: bytes,
        metadata: Optional[Dict[str, str]] = None,
        content_type: str = "application/octet-stream",
    ) -> None:
        ...

    @abstractmethod
    async def presign_get(self, bucket: str, key: str, ttl_seconds: int) -> str:
        """Return a time-limited retrieval URL for the object."""
        ...

    @abstractmethod
    async def list(self, bucket: str) -> List[ObjectInfo]:
        ...


def create_s3_client(settings: Settings, endpoint: Optional[str] = None):
    """Build a boto3 S3 client from settings, optionally overriding the endpoint."""
    kwargs = {"region_name": settings.s3_region}
    endpoint = endpoint or settings.s3_endpoint
    if endpoint:
        kwargs["endpoint_url"] = endpoint
    if settings.s3_access_key_id and settings.s3_secret_access_key:
        kwargs["aws_access_key_id"] = settings.s3_access_key_id
        kwargs["aws_secret_access_key"] = settings.s3_secret_access_key
    addressing = "path" if settings.s3_force_path_style else "auto"
    return boto3.client(
        "s3",
        config=Config(signature_version="s3v4", s3={"addressing_style": addressing}),
        **kwargs,
    )


class S3ObjectStore(ObjectStore):
    """S3 store over blocking boto3 clients, run in the default thread executor.

    ``public_client`` signs retrieval URLs for callers outside the deployment,
    which may reach the store at a different address than this process does.
    """

    def __init__(self, client, public_client=None):
        self._client = client
        self._public_client = public_client or client

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3ObjectStore":
        return cls(
            create_s3_client(settings),
            create_s3_client(settings, endpoint=settings.public_endpoint()),
        )

    async def _call(self, operation: str, key: str, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                raise NotFoundError(key) from e
            raise StoreError(operation, key, e) from e
        except BotoCoreError as e:
            raise StoreError(operation, key, e) from e

    async def head(self, bucket: str, key: str) -> int:
        response = await self._call("head", key, self._client.head_object, Bucket=bucket, Key=key)
        return int(response.get("ContentLength", 0))

    async def get(self, bucket: str, key: str) -> bytes:
        def _read():
            response = self._client.get_object(Bucket=bucket, Key=key)
            body = response.get("Body")
            if body is None:
                raise NotFoundError(key, "has no body")
            try:
                return body.read()
            finally:
                body.close()

        return await self._call("get", key, _read)

    async def put(
        self,
        bucket: str,
        key: str,
        data: bytes,
        metadata: Optional[Dict[str, str]] = None,
        content_type: str = "application/octet-stream",
    ) -> None:
        await self._call(
            "put",
            key,
            self._client.put_object,
            Bucket=bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
            Metadata=metadata or {},
        )

    async def presign_get(self, bucket: str, key: str, ttl_seconds: int) -> str:
        return await self._call(
            "presign",
            key,
            self._public_client.generate_presigned_url,
            "get_object",
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=ttl_seconds,
        )

    async def list(self, bucket: str) -> List[ObjectInfo]:
        def _list_all():
            objects = []
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket):
                for obj in page.get("Contents", []):
                    objects.append(
                        ObjectInfo(
                            key=obj["Key"],
                            size=obj.get("Size", 0),
                            last_modified=obj.get("LastModified"),
                        )
                    )
            return objects

        return await self._call("list", bucket, _list_all)
