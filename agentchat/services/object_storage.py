"""
Object storage access for knowledge files (S3-compatible buckets).

boto3 is synchronous, so every call is pushed to a worker thread with
``asyncio.to_thread`` to keep the event loop free.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol

import boto3
from botocore.config import Config

from agentchat.config import Settings
from agentchat.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class StoredObject:
    key: str
    size: int
    last_modified: Optional[datetime] = None


class ObjectStorage(Protocol):
    async def list_objects(self, prefix: str, max_keys: int = 100) -> List[StoredObject]: ...

    async def get_object(self, key: str) -> bytes: ...

    def public_url(self, key: str) -> str: ...


class S3ObjectStorage:
    """S3-compatible storage with path-style addressing and SigV4 signing."""

    def __init__(self, settings: Settings):
        self.bucket_name = settings.s3_bucket_name
        self.public_base_url = (settings.s3_bucket_public_url or "").rstrip("/")
        self._settings = settings
        self._client = None

    def _get_client(self):
        if not self.bucket_name:
            raise ConfigurationError("S3_BUCKET_NAME environment variable is not configured")
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self._settings.s3_endpoint_url,
                region_name=self._settings.s3_region,
                aws_access_key_id=self._settings.s3_access_key,
                aws_secret_access_key=self._settings.s3_secret_key,
                config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
            )
        return self._client

    async def list_objects(self, prefix: str, max_keys: int = 100) -> List[StoredObject]:
        client = self._get_client()
        logger.debug(f"Listing s3://{self.bucket_name}/{prefix} (max {max_keys})")
        response = await asyncio.to_thread(
            client.list_objects_v2,
            Bucket=self.bucket_name,
            Prefix=prefix,
            MaxKeys=max_keys,
        )
        return [
            StoredObject(
                key=item["Key"],
                size=int(item.get("Size") or 0),
                last_modified=item.get("LastModified"),
            )
            for item in response.get("Contents", [])
        ]

    async def get_object(self, key: str) -> bytes:
        client = self._get_client()

        def _read() -> bytes:
            response = client.get_object(Bucket=self.bucket_name, Key=key)
            return response["Body"].read()

        return await asyncio.to_thread(_read)

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"
