"""Durable artifact storage addressed by (bucket, object name).

Two backends share one interface:

  S3ArtifactStore     boto3 against any S3-compatible endpoint (Backblaze B2
                      in production). One attempt per call, no retries.
  LocalArtifactStore  a directory tree; development and tests.

Deadlines:
  get/put are bounded by a wall-clock deadline checked from the transfer
  progress callback, on top of the socket-level connect/read timeouts.
  Uploads get the longer budget since build archives can be large.

``exists`` distinguishes "object absent" (False) from "could not ask"
(TransferError); the build stage branches on the former.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Callable, Protocol

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from zenith.core.config import Settings
from zenith.core.errors import TransferError
from zenith.core.names import safe_join

logger = logging.getLogger(__name__)

ZIP_CONTENT_TYPE = "application/zip"

_MISSING_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


class ArtifactStore(Protocol):
    def exists(self, bucket: str, key: str) -> bool: ...

    def put(self, bucket: str, key: str, local_path: Path, content_type: str = ZIP_CONTENT_TYPE) -> None: ...

    def get(self, bucket: str, key: str, local_path: Path) -> None: ...


class _Deadline:
    """Transfer progress callback that aborts once ``seconds`` have elapsed."""

    def __init__(
        self,
        seconds: float,
        operation: str,
        key: str,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._seconds = seconds
        self._expires_at = clock() + seconds
        self._operation = operation
        self._key = key
        self.transferred = 0

    def check(self) -> None:
        if self._clock() > self._expires_at:
            raise TransferError(
                f"{self._operation} of {self._key} exceeded its {self._seconds:.0f}s deadline",
                detail={"key": self._key, "bytes": self.transferred},
            )

    def __call__(self, bytes_amount: int) -> None:
        self.transferred += bytes_amount
        self.check()


def _endpoint_url(endpoint: str) -> str | None:
    endpoint = endpoint.strip()
    if not endpoint:
        return None
    if "://" not in endpoint:
        return f"https://{endpoint}"
    return endpoint


class S3ArtifactStore:
    """S3-compatible object store client."""

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        region: str = "",
        download_timeout: float = 300.0,
        upload_timeout: float = 600.0,
        client=None,
    ):
        self._download_timeout = download_timeout
        self._upload_timeout = upload_timeout
        self._client = client or boto3.client(
            "s3",
            endpoint_url=_endpoint_url(endpoint),
            aws_access_key_id=access_key or None,
            aws_secret_access_key=secret_key or None,
            region_name=region or None,
            config=Config(
                connect_timeout=30,
                read_timeout=60,
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        )
        # Serial transfers keep the deadline callback on the calling thread.
        self._transfer_config = TransferConfig(use_threads=False)

    def exists(self, bucket: str, key: str) -> bool:
        try:
            self._client.head_object(Bucket=bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_CODES:
                return False
            raise TransferError(f"failed to check if {bucket}/{key} exists: {exc}") from exc
        except BotoCoreError as exc:
            raise TransferError(f"failed to check if {bucket}/{key} exists: {exc}") from exc
        return True

    def put(
        self,
        bucket: str,
        key: str,
        local_path: Path,
        content_type: str = ZIP_CONTENT_TYPE,
    ) -> None:
        local_path = Path(local_path)
        deadline = _Deadline(self._upload_timeout, "upload", f"{bucket}/{key}")
        logger.info(
            "Uploading %s (%d bytes) to %s/%s",
            local_path.name, local_path.stat().st_size, bucket, key,
        )
        try:
            self._client.upload_file(
                str(local_path),
                bucket,
                key,
                ExtraArgs={"ContentType": content_type},
                Callback=deadline,
                Config=self._transfer_config,
            )
        except (BotoCoreError, ClientError, S3UploadFailedError, OSError) as exc:
            raise TransferError(f"upload of {bucket}/{key} failed: {exc}") from exc
        deadline.check()

    def get(self, bucket: str, key: str, local_path: Path) -> None:
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        deadline = _Deadline(self._download_timeout, "download", f"{bucket}/{key}")
        logger.info("Downloading %s/%s to %s", bucket, key, local_path)
        try:
            self._client.download_file(
                bucket,
                key,
                str(local_path),
                Callback=deadline,
                Config=self._transfer_config,
            )
        except (BotoCoreError, ClientError, OSError) as exc:
            raise TransferError(f"download of {bucket}/{key} failed: {exc}") from exc
        deadline.check()


class LocalArtifactStore:
    """Artifact store backed by ``<root>/<bucket>/<key>`` on local disk.

    Writes go to a temp file first and are renamed into place, so a
    concurrent reader never sees a half-written archive and a second put
    replaces the first (last write wins).
    """

    def __init__(self, root: Path):
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, bucket: str, key: str) -> Path:
        return safe_join(self._root, bucket, key)

    def exists(self, bucket: str, key: str) -> bool:
        return self._path(bucket, key).is_file()

    def put(
        self,
        bucket: str,
        key: str,
        local_path: Path,
        content_type: str = ZIP_CONTENT_TYPE,
    ) -> None:
        target = self._path(bucket, key)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".upload-")
            os.close(fd)
            shutil.copyfile(local_path, tmp_name)
            os.replace(tmp_name, target)
        except OSError as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise TransferError(f"upload of {bucket}/{key} failed: {exc}") from exc
        logger.info("Stored %s/%s (%s)", bucket, key, content_type)

    def get(self, bucket: str, key: str, local_path: Path) -> None:
        source = self._path(bucket, key)
        if not source.is_file():
            raise TransferError(f"download of {bucket}/{key} failed: object does not exist")
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copyfile(source, local_path)
        except OSError as exc:
            raise TransferError(f"download of {bucket}/{key} failed: {exc}") from exc

    def list_keys(self, bucket: str) -> list[str]:
        """Object names stored in ``bucket``, sorted."""
        base = safe_join(self._root, bucket)
        if not base.is_dir():
            return []
        return sorted(
            p.relative_to(base).as_posix()
            for p in base.rglob("*")
            if p.is_file() and not p.name.startswith(".upload-")
        )


def create_store(settings: Settings) -> ArtifactStore:
    """Build the store selected by STORAGE_BACKEND."""
    if settings.storage_backend == "local":
        logger.info("Using local artifact store at %s", settings.local_storage_dir)
        return LocalArtifactStore(Path(settings.local_storage_dir))

    if not settings.b2_access_key or not settings.b2_secret_key:
        logger.warning("B2_ACCESS_KEY / B2_SECRET_KEY not set; storage calls will fail")
    return S3ArtifactStore(
        endpoint=settings.b2_endpoint,
        access_key=settings.b2_access_key,
        secret_key=settings.b2_secret_key,
        region=settings.b2_region,
        download_timeout=settings.download_timeout,
        upload_timeout=settings.upload_timeout,
    )
