"""
Object-store boundary used by the vote ledger and the upload batcher.

``S3ObjectStore`` talks to any S3-compatible bucket (AWS, R2, MinIO) with a
blocking boto3 client, so every call is pushed onto a worker thread.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Protocol

import boto3
import botocore.client
from botocore.exceptions import BotoCoreError, ClientError

from ..exceptions import StorageError, StorageKeyNotFound
from ..utils.logging import get_logger

logger = get_logger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
_DELETE_BATCH = 1000


class ObjectStore(Protocol):
    async def get(self, key: str) -> bytes: ...

    async def put(self, key: str, data: bytes, content_type: str, acl: Optional[str] = None) -> None: ...

    async def delete_many(self, keys: Iterable[str]) -> int: ...

    async def copy(self, src_key: str, dst_key: str) -> None: ...

    async def tag(self, key: str, tags: Dict[str, str]) -> None: ...


class S3ObjectStore:
    def __init__(
        self,
        bucket: str,
        access_key_id: str,
        secret_access_key: str,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        client: Any = None,
    ):
        self.bucket = bucket
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=botocore.client.Config(signature_version="s3v4"),
        )

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "S3ObjectStore":
        store = cls(
            bucket=config["S3_BUCKET"],
            access_key_id=config["S3_ACCESS_KEY_ID"],
            secret_access_key=config["S3_SECRET_ACCESS_KEY"],
            endpoint_url=config.get("S3_ENDPOINT_URL"),
            region=config.get("S3_REGION"),
        )
        logger.info(f"✅ S3 object store ready (bucket={store.bucket})", extra={"subsys": "storage"})
        return store

    async def _call(self, op: str, key: str, **kwargs) -> Any:
        method = getattr(self._client, op)
        try:
            return await asyncio.to_thread(method, Bucket=self.bucket, **kwargs)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                raise StorageKeyNotFound(key) from e
            raise StorageError(f"{op} {key} failed: {code or e}") from e
        except BotoCoreError as e:
            raise StorageError(f"{op} {key} failed: {e}") from e

    async def get(self, key: str) -> bytes:
        response = await self._call("get_object", key, Key=key)
        body = response["Body"]
        try:
            return await asyncio.to_thread(body.read)
        finally:
            body.close()

    async def put(self, key: str, data: bytes, content_type: str, acl: Optional[str] = None) -> None:
        kwargs: Dict[str, Any] = {"Key": key, "Body": data, "ContentType": content_type}
        if acl:
            kwargs["ACL"] = acl
        await self._call("put_object", key, **kwargs)

    async def delete_many(self, keys: Iterable[str]) -> int:
        key_list: List[str] = list(keys)
        deleted = 0
        for i in range(0, len(key_list), _DELETE_BATCH):
            chunk = key_list[i:i + _DELETE_BATCH]
            response = await self._call(
                "delete_objects",
                chunk[0],
                Delete={"Objects": [{"Key": k} for k in chunk], "Quiet": True},
            )
            errors = response.get("Errors") or []
            for err in errors:
                logger.warning(
                    f"⚠️ Failed to delete {err.get('Key')}: {err.get('Code')}",
                    extra={"subsys": "storage", "event": "delete_error"},
                )
            deleted += len(chunk) - len(errors)
        return deleted

    async def copy(self, src_key: str, dst_key: str) -> None:
        await self._call(
            "copy_object",
            src_key,
            Key=dst_key,
            CopySource={"Bucket": self.bucket, "Key": src_key},
        )

    async def tag(self, key: str, tags: Dict[str, str]) -> None:
        await self._call(
            "put_object_tagging",
            key,
            Key=key,
            Tagging={"TagSet": [{"Key": k, "Value": v} for k, v in tags.items()]},
        )
