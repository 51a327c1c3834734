"""S3-compatible object storage for rendered videos."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
import re
import stat
from pathlib import Path
from typing import Any, BinaryIO, Protocol
from uuid import uuid4

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from render_sandbox.errors import UploadFailed
from render_sandbox.models import UploadReference
from render_sandbox.settings import Settings, get_settings

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "video/mp4"

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9_.-]")
_BUCKET_NAME = re.compile(r"[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]")

_STORAGE_ERRORS = (BotoCoreError, ClientError, S3UploadFailedError, OSError, ValueError)


class ArtifactUploader(Protocol):
    async def upload(self, path: Path, naming_hint: str) -> UploadReference: ...


def sanitize_name(name: str) -> str:
    return _UNSAFE_KEY_CHARS.sub("_", name) or "artifact"


def build_key(prefix: str, naming_hint: str, extension: str) -> str:
    """``<prefix>/<random>/<hint><ext>``; the random segment keeps keys unique."""
    name = f"{sanitize_name(naming_hint)}{extension}"
    prefix = prefix.strip("/")
    if prefix:
        return f"{prefix}/{uuid4()}/{name}"
    return f"{uuid4()}/{name}"


def build_client(settings: Settings) -> Any:
    kwargs: dict[str, Any] = {"region_name": settings.aws_region}
    if settings.aws_access_key_id and settings.aws_secret_access_key:
        kwargs["aws_access_key_id"] = settings.aws_access_key_id
        kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
    if settings.s3_endpoint:
        # S3-compatible stores (MinIO, R2, ...) generally need path-style URLs.
        kwargs["endpoint_url"] = settings.s3_endpoint
        kwargs["config"] = Config(s3={"addressing_style": "path"})
    return boto3.client("s3", **kwargs)


def _open_regular_file(path: Path) -> BinaryIO:
    """Open ``path`` for reading without following a final symlink."""
    fd = os.open(path, os.O_RDONLY | getattr(os, "O_NOFOLLOW", 0))
    if not stat.S_ISREG(os.fstat(fd).st_mode):
        os.close(fd)
        raise OSError(f"not a regular file: {path.name}")
    return os.fdopen(fd, "rb")


class S3Uploader:
    """Streams artifacts to a bucket and hands back their object keys."""

    def __init__(self, client: Any | None = None, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = build_client(self.settings)
        return self._client

    def _validated_bucket_name(self) -> str:
        bucket = (self.settings.s3_bucket_name or "").strip()
        if not bucket:
            raise UploadFailed("Object storage bucket is not configured.")
        if not _BUCKET_NAME.fullmatch(bucket):
            raise UploadFailed(f"Invalid S3_BUCKET_NAME value '{bucket}'.")
        return bucket

    async def upload(self, path: Path, naming_hint: str) -> UploadReference:
        return await asyncio.to_thread(self.upload_sync, path, naming_hint)

    def upload_sync(self, path: Path, naming_hint: str) -> UploadReference:
        if path.is_symlink() or not path.is_file():
            raise UploadFailed(f"Artifact not found at path: {path.name}")

        bucket = self._validated_bucket_name()
        key = build_key(self.settings.s3_key_prefix, naming_hint, path.suffix)
        content_type = mimetypes.guess_type(path.name)[0] or DEFAULT_CONTENT_TYPE

        logger.info("uploading %s to s3://%s/%s", path.name, bucket, key)
        try:
            with _open_regular_file(path) as body:
                self.client.upload_fileobj(
                    body, bucket, key, ExtraArgs={"ContentType": content_type}
                )
        except _STORAGE_ERRORS as exc:
            logger.error("S3 upload of %s failed: %s", key, exc)
            raise UploadFailed(
                f"Failed to upload file to cloud storage. Reason: {exc}"
            ) from exc

        logger.info("uploaded s3://%s/%s", bucket, key)
        return UploadReference(key=key, uri=f"s3://{bucket}/{key}")

    async def download(self, key: str, fileobj: BinaryIO) -> None:
        """Stream the object stored under ``key`` into ``fileobj``."""
        bucket = self._validated_bucket_name()
        await asyncio.to_thread(self.client.download_fileobj, bucket, key, fileobj)
