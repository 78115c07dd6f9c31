# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU S3 Storage - Artifacts in an S3-compatible bucket via aiobotocore.

Streams are uploaded with multipart upload so memory stays bounded by
one part. A stream that fits in the first part is sent with a single
PutObject instead. A failed multipart upload is aborted so no partial
object becomes visible.
"""

from contextlib import AsyncExitStack
from typing import Any, Dict, List

import structlog
from aiobotocore.config import AioConfig
from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from dbu.config import S3StorageConfig
from dbu.exceptions import ObjectNotFoundError, StorageError
from dbu.storage.base import ObjectInfo, Storage
from dbu.transforms.base import ByteReader, read_exact

logger = structlog.get_logger()

# S3 requires parts of at least 5 MiB except the last
PART_SIZE = 8 * 1024 * 1024
LIST_PAGE_SIZE = 1000

_NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}


def _is_not_found(error: ClientError) -> bool:
    return str(error.response.get("Error", {}).get("Code", "")) in _NOT_FOUND_CODES


def _endpoint_url(endpoint: str, use_ssl: bool) -> str:
    if "://" in endpoint:
        return endpoint
    return f"{'https' if use_ssl else 'http'}://{endpoint}"


class _S3BodyReader:
    def __init__(self, body: Any) -> None:
        self._body = body

    async def read(self, size: int = -1) -> bytes:
        if size < 0:
            return await self._body.read()
        return await self._body.read(size)

    async def aclose(self) -> None:
        self._body.close()


class S3Storage(Storage):
    """S3-compatible backend."""

    name = "s3"

    def __init__(self, config: S3StorageConfig, user_agent: str = "", client: Any = None) -> None:
        self.config = config
        self.bucket = config.bucket
        self.user_agent = user_agent
        self._client = client
        self._stack: AsyncExitStack | None = None

    async def _get_client(self) -> Any:
        """Create the client on first use and keep it open until aclose()."""
        if self._client is not None:
            return self._client

        session = get_session()
        aio_config = AioConfig(
            s3={"addressing_style": "path" if self.config.force_path_style else "auto"},
            user_agent_extra=self.user_agent or None,
        )
        self._stack = AsyncExitStack()
        self._client = await self._stack.enter_async_context(
            session.create_client(
                "s3",
                endpoint_url=_endpoint_url(self.config.endpoint, self.config.use_ssl),
                region_name=self.config.region or "us-east-1",
                aws_access_key_id=self.config.access_key or None,
                aws_secret_access_key=self.config.secret_key or None,
                aws_session_token=self.config.session_token or None,
                use_ssl=self.config.use_ssl,
                verify=not self.config.tls_insecure_skip,
                config=aio_config,
            )
        )
        return self._client

    async def put(
        self,
        key: str,
        reader: ByteReader,
        size_hint: int = -1,
        metadata: Dict[str, str] | None = None,
    ) -> None:
        client = await self._get_client()
        extra = {"Metadata": dict(metadata)} if metadata else {}

        first = await read_exact(reader, PART_SIZE)
        if len(first) < PART_SIZE:
            try:
                await client.put_object(Bucket=self.bucket, Key=key, Body=first, **extra)
            except (ClientError, BotoCoreError) as e:
                raise StorageError(f"Failed to upload object: {e}", details={"key": key}) from e
            logger.debug("object_uploaded", key=key, size=len(first), parts=1)
            return

        try:
            created = await client.create_multipart_upload(Bucket=self.bucket, Key=key, **extra)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to start multipart upload: {e}", details={"key": key}) from e
        upload_id = created["UploadId"]

        parts: List[Dict[str, Any]] = []
        total = 0
        try:
            chunk = first
            while chunk:
                part_number = len(parts) + 1
                response = await client.upload_part(
                    Bucket=self.bucket,
                    Key=key,
                    UploadId=upload_id,
                    PartNumber=part_number,
                    Body=chunk,
                )
                parts.append({"ETag": response["ETag"], "PartNumber": part_number})
                total += len(chunk)
                chunk = await read_exact(reader, PART_SIZE)

            await client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except BaseException as e:
            await self._abort(client, key, upload_id)
            if isinstance(e, (ClientError, BotoCoreError)):
                raise StorageError(
                    f"Multipart upload failed: {e}",
                    details={"key": key, "parts": len(parts)},
                ) from e
            raise

        logger.debug("object_uploaded", key=key, size=total, parts=len(parts))

    async def _abort(self, client: Any, key: str, upload_id: str) -> None:
        try:
            await client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id)
            logger.warning("multipart_upload_aborted", key=key, upload_id=upload_id)
        except (ClientError, BotoCoreError) as e:
            logger.warning("multipart_abort_failed", key=key, upload_id=upload_id, error=str(e))

    async def get(self, key: str):
        client = await self._get_client()
        try:
            response = await client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _is_not_found(e):
                raise ObjectNotFoundError(f"Object not found: {key}", details={"key": key}) from e
            raise StorageError(f"Failed to get object: {e}", details={"key": key}) from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to get object: {e}", details={"key": key}) from e
        return _S3BodyReader(response["Body"])

    async def stat(self, key: str) -> ObjectInfo:
        client = await self._get_client()
        try:
            response = await client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _is_not_found(e):
                raise ObjectNotFoundError(f"Object not found: {key}", details={"key": key}) from e
            raise StorageError(f"Failed to stat object: {e}", details={"key": key}) from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to stat object: {e}", details={"key": key}) from e
        return ObjectInfo(
            key=key,
            size=int(response.get("ContentLength", 0)),
            modified=response["LastModified"],
            etag=str(response.get("ETag", "")).strip('"') or None,
            metadata=dict(response.get("Metadata") or {}),
        )

    async def list(self, prefix: str) -> List[ObjectInfo]:
        client = await self._get_client()
        objects: List[ObjectInfo] = []
        paginator = client.get_paginator("list_objects_v2")
        try:
            async for page in paginator.paginate(
                Bucket=self.bucket,
                Prefix=prefix,
                PaginationConfig={"PageSize": LIST_PAGE_SIZE},
            ):
                for obj in page.get("Contents", []):
                    objects.append(
                        ObjectInfo(
                            key=obj["Key"],
                            size=int(obj.get("Size", 0)),
                            modified=obj["LastModified"],
                            etag=str(obj.get("ETag", "")).strip('"') or None,
                        )
                    )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to list objects: {e}", details={"prefix": prefix}) from e
        return objects

    async def delete(self, key: str) -> None:
        client = await self._get_client()
        try:
            await client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to delete object: {e}", details={"key": key}) from e
        logger.debug("object_deleted", key=key)

    async def aclose(self) -> None:
        if self._stack is not None:
            await self._stack.aclose()
            self._stack = None
            self._client = None
