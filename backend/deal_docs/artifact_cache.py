"""
Short-lived storage for generated PDFs.

Generated artifacts are handed to the client as opaque keys and fetched back
through the download endpoint. Entries live for a fixed TTL (one hour for the
service); expired entries are swept lazily when new ones are stored.
"""

from __future__ import annotations

import abc
import logging
import math
import threading
import time
import uuid
from typing import Callable, Optional
from urllib.parse import quote, unquote

import boto3
from botocore.exceptions import ClientError
from cachetools import TTLCache

from .models import CacheEntry

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


class ArtifactCache(abc.ABC):
    @abc.abstractmethod
    def put(self, content: bytes, content_type: str, filename: str) -> str:
        """Store an artifact and return the key to fetch it with."""

    @abc.abstractmethod
    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry, or None when the key is unknown or expired.

        Expiry is checked on read, so an entry past its TTL is not served even
        before the next ``put`` sweeps it. Reading never removes anything.
        """

    @abc.abstractmethod
    def sweep(self) -> int:
        """Drop expired entries and return how many were removed."""


class InMemoryArtifactCache(ArtifactCache):
    """Process-local cache backed by ``cachetools.TTLCache``.

    The cache is unbounded: entries leave only through the TTL sweep, never
    through size eviction.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.clock = clock
        self._entries: TTLCache = TTLCache(maxsize=math.inf, ttl=ttl, timer=clock)
        self._lock = threading.Lock()

    def put(self, content: bytes, content_type: str, filename: str) -> str:
        with self._lock:
            removed = len(self._entries.expire())
            if removed:
                logger.debug("Swept %d expired artifact(s)", removed)
            key = uuid.uuid4().hex
            self._entries[key] = CacheEntry(
                key=key,
                content=content,
                content_type=content_type,
                filename=filename,
                created_at=self.clock(),
            )
        logger.info("Cached artifact %s (%s, %d bytes)", key, filename, len(content))
        return key

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def sweep(self) -> int:
        with self._lock:
            return len(self._entries.expire())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class S3ArtifactCache(ArtifactCache):
    """Artifacts stored as ``s3://<bucket>/<prefix><key>``, shared across workers.

    Expiry is judged from the object's ``LastModified`` timestamp, so ``clock``
    must return epoch seconds.
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "artifacts/",
        ttl: float = DEFAULT_TTL_SECONDS,
        s3_client=None,
        clock: Callable[[], float] = time.time,
    ):
        self.bucket = bucket
        self.prefix = prefix
        self.ttl = ttl
        self.clock = clock
        self.s3 = s3_client if s3_client is not None else boto3.client("s3")

    def _object_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _expired(self, last_modified) -> bool:
        return self.clock() - last_modified.timestamp() >= self.ttl

    def put(self, content: bytes, content_type: str, filename: str) -> str:
        self.sweep()
        key = uuid.uuid4().hex
        self.s3.put_object(
            Bucket=self.bucket,
            Key=self._object_key(key),
            Body=content,
            ContentType=content_type,
            # S3 metadata must be ASCII
            Metadata={"filename": quote(filename)},
        )
        logger.info("Cached artifact %s at s3://%s/%s", key, self.bucket, self._object_key(key))
        return key

    def get(self, key: str) -> Optional[CacheEntry]:
        if not key or "/" in key:
            return None
        try:
            obj = self.s3.get_object(Bucket=self.bucket, Key=self._object_key(key))
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                return None
            raise

        last_modified = obj.get("LastModified")
        if last_modified is not None and self._expired(last_modified):
            logger.debug("Artifact %s expired", key)
            return None

        metadata = obj.get("Metadata") or {}
        return CacheEntry(
            key=key,
            content=obj["Body"].read(),
            content_type=obj.get("ContentType", "application/octet-stream"),
            filename=unquote(metadata.get("filename", f"{key}.pdf")),
            created_at=last_modified.timestamp() if last_modified is not None else None,
        )

    def sweep(self) -> int:
        removed = 0
        paginator = self.s3.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=self.prefix):
            for item in page.get("Contents", []):
                if self._expired(item["LastModified"]):
                    self.s3.delete_object(Bucket=self.bucket, Key=item["Key"])
                    removed += 1
        if removed:
            logger.info("Swept %d expired artifact(s) from s3://%s/%s", removed, self.bucket, self.prefix)
        return removed
