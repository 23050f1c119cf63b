"""Ingest stage: clone a repository and store it as ``<name>.zip``.

Re-ingesting the same repository overwrites the stored archive; the store
never holds more than one source archive per name.
"""

import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from zenith.core.config import Settings
from zenith.core.names import ArtifactKey
from zenith.runner.archive import VCS_DIRS, zip_directory
from zenith.runner.checkout import clone_repo, redact_repo_url, validate_repo_url
from zenith.runner.process import ProcessRunner
from zenith.storage.store import ZIP_CONTENT_TYPE, ArtifactStore

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    repo: str
    bucket: str
    file: str
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> dict:
        return {
            "message": "Repo uploaded successfully",
            "repo": self.repo,
            "bucket": self.bucket,
            "file": self.file,
            "timestamp": self.timestamp,
        }


class IngestService:
    def __init__(
        self,
        store: ArtifactStore,
        runner: ProcessRunner,
        bucket: str,
        work_dir: Path,
        token: str = "",
        allowed_hosts: Iterable[str] = (),
        clone_timeout: int = 300,
    ):
        self._store = store
        self._runner = runner
        self._bucket = bucket
        self._work_dir = Path(work_dir)
        self._token = token
        self._allowed_hosts = tuple(allowed_hosts)
        self._clone_timeout = clone_timeout

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: ArtifactStore,
        runner: ProcessRunner,
    ) -> "IngestService":
        return cls(
            store=store,
            runner=runner,
            bucket=settings.b2_bucket,
            work_dir=Path(settings.work_dir),
            token=settings.github_token,
            allowed_hosts=settings.source_hosts,
            clone_timeout=settings.clone_timeout,
        )

    def ingest(self, repo_url: str) -> IngestResult:
        """Clone ``repo_url``, archive it without VCS metadata, upload it.

        Raises:
            ValidationError: malformed or disallowed URL (before any I/O).
            FetchError: clone failed.
            TransferError: upload failed.
        """
        name = validate_repo_url(repo_url, self._allowed_hosts)
        key = ArtifactKey.source(self._bucket, name)
        logger.info("Ingesting %s as %s", redact_repo_url(repo_url), key)

        self._work_dir.mkdir(parents=True, exist_ok=True)
        workspace = Path(tempfile.mkdtemp(prefix=f"ingest-{name}-", dir=self._work_dir))
        try:
            repo_dir = clone_repo(
                self._runner,
                repo_url,
                workspace / name,
                token=self._token,
                timeout=self._clone_timeout,
            )
            archive = zip_directory(repo_dir, workspace / key.name, exclude_dirs=VCS_DIRS)
            self._store.put(key.bucket, key.name, archive, ZIP_CONTENT_TYPE)
        finally:
            shutil.rmtree(workspace, ignore_errors=True)

        logger.info("Successfully uploaded %s", key)
        return IngestResult(repo=name, bucket=key.bucket, file=key.name)
