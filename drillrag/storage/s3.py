"""
S3 Blob Store — source PDFs for the ingestion pipeline

Objects are addressed by their raw key inside settings.s3_bucket. The
orchestrator downloads each document once, then deletes it if validation
rejects it or a later stage fails.

Download limits:
  - ContentLength above settings.max_file_size_bytes is rejected before
    the body is read; the body length is re-checked after the read
  - The body read is bounded by settings.download_timeout_seconds;
    a timeout surfaces as asyncio.TimeoutError and is retryable

Error translation (botocore ClientError → pipeline taxonomy):
  NoSuchKey / 404          → NotFoundError
  AccessDenied / 403       → AuthorizationError
  anything else            → TransientServiceError
"""

from __future__ import annotations

import asyncio
import logging

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from drillrag.core.config import Settings, settings as default_settings
from drillrag.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    PipelineError,
    TransientServiceError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
_FORBIDDEN_CODES = {"AccessDenied", "403", "Forbidden"}


def translate_s3_error(exc: ClientError | BotoCoreError, key: str) -> PipelineError:
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code", "")
        if code in _NOT_FOUND_CODES:
            return NotFoundError(f"Object not found: {key}", cause=exc, context={"key": key})
        if code in _FORBIDDEN_CODES:
            return AuthorizationError(f"Access denied: {key}", cause=exc, context={"key": key})
        return TransientServiceError(
            f"S3 error {code or 'unknown'} for {key}", cause=exc, context={"key": key},
        )
    return TransientServiceError(f"S3 client error for {key}: {exc}", cause=exc, context={"key": key})


class S3BlobStore:
    """
    Usage:
        store = S3BlobStore()
        data  = await store.get("uploads/user-1/report.pdf")
        await store.delete("uploads/user-1/report.pdf")
    """

    def __init__(
        self,
        settings: Settings | None = None,
        session:  aioboto3.Session | None = None,
    ) -> None:
        cfg = settings or default_settings
        self._bucket           = cfg.s3_bucket
        self._region           = cfg.aws_region
        self._max_bytes        = cfg.max_file_size_bytes
        self._download_timeout = cfg.download_timeout_seconds
        self._session          = session or aioboto3.Session()

    def _client(self):
        return self._session.client("s3", region_name=self._region)

    def _too_large(self, key: str, size: int) -> ValidationError:
        return ValidationError(
            f"File too large ({size} bytes, limit {self._max_bytes} bytes)",
            context={"key": key, "size_bytes": size, "max_bytes": self._max_bytes},
        )

    async def get(self, key: str) -> bytes:
        """Download one object into memory."""
        async with self._client() as s3:
            try:
                resp = await s3.get_object(Bucket=self._bucket, Key=key)
            except (ClientError, BotoCoreError) as exc:
                raise translate_s3_error(exc, key) from exc

            length = resp.get("ContentLength")
            if length is not None and length > self._max_bytes:
                raise self._too_large(key, length)

            body = resp["Body"]
            try:
                data = await asyncio.wait_for(body.read(), timeout=self._download_timeout)
            except (ClientError, BotoCoreError) as exc:
                raise translate_s3_error(exc, key) from exc

        if len(data) > self._max_bytes:
            raise self._too_large(key, len(data))

        logger.info("S3 download ok | bucket=%s key=%s size=%d", self._bucket, key, len(data))
        return data

    async def delete(self, key: str) -> None:
        async with self._client() as s3:
            try:
                await s3.delete_object(Bucket=self._bucket, Key=key)
            except (ClientError, BotoCoreError) as exc:
                raise translate_s3_error(exc, key) from exc
        logger.warning("S3 delete | bucket=%s key=%s", self._bucket, key)
