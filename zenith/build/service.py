"""Build stage: turn ``<name>.zip`` into ``<name>-build.zip``.

State machine (one pass per request, under the per-name build lock):

    Locate ──present──▶ Fetched ──download+extract──▶ Prepared
       │                                                 ▲
       ├─absent, no fallback──▶ NotFoundError            │
       └─absent, fallback────▶ Scaffold ─upload <name>.zip┘

    Prepared ──install+build──▶ Compiled ──locate output──▶ Packaged ──upload──▶ Done

Scaffolding uploads the generated project as the canonical ``<name>.zip``
so later builds of the same name find real source instead of re-running
the generator. Every failure is terminal; nothing is retried. The local
workspace is removed whatever the outcome.
"""

import logging
import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from zenith.build.locks import KeyedLock
from zenith.core.config import Settings
from zenith.core.errors import NotFoundError
from zenith.core.names import ArtifactKey, validate_repo_name
from zenith.runner.archive import VCS_DIRS, extract_archive, zip_directory
from zenith.runner.toolchain import TemplateKind, Toolchain
from zenith.storage.store import ZIP_CONTENT_TYPE, ArtifactStore

logger = logging.getLogger(__name__)

# Scaffolded projects arrive with node_modules already installed; the
# source archive should hold source only.
SCAFFOLD_EXCLUDES = VCS_DIRS | {"node_modules"}


@dataclass(frozen=True)
class BuildJob:
    repo: str
    use_template: bool = False
    template: TemplateKind = TemplateKind.CREATE_REACT_APP

    @classmethod
    def create(
        cls,
        repo: str,
        use_template: bool = False,
        template: Optional[str] = None,
        default_template: str = TemplateKind.CREATE_REACT_APP.value,
    ) -> "BuildJob":
        """Validate the name and resolve the template before any I/O.

        Raises:
            ValidationError: unsafe name or unsupported template.
        """
        return cls(
            repo=validate_repo_name(repo),
            use_template=use_template,
            template=TemplateKind.parse(template or default_template),
        )


@dataclass
class BuildOutcome:
    repo: str
    bucket: str
    file: str
    output_dir: str
    created_from: Optional[str] = None
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        if self.created_from:
            message = "Created new project from template and built successfully"
        else:
            message = "Build completed and uploaded successfully"
        return {
            "message": message,
            "status": "success",
            "repo": self.repo,
            "bucket": self.bucket,
            "file": self.file,
            "output_dir": self.output_dir,
            "created_from": self.created_from or "",
            "duration_seconds": round(self.duration_seconds, 3),
        }


class BuildService:
    def __init__(
        self,
        store: ArtifactStore,
        toolchain: Toolchain,
        bucket: str,
        work_dir: Path,
        locks: Optional[KeyedLock] = None,
        auto_create_from_template: bool = False,
    ):
        self._store = store
        self._toolchain = toolchain
        self._bucket = bucket
        self._work_dir = Path(work_dir)
        self.locks = locks or KeyedLock()
        self._auto_create = auto_create_from_template

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: ArtifactStore,
        toolchain: Toolchain,
    ) -> "BuildService":
        return cls(
            store=store,
            toolchain=toolchain,
            bucket=settings.b2_bucket,
            work_dir=Path(settings.work_dir),
            locks=KeyedLock(settings.build_lock_scope),
            auto_create_from_template=settings.auto_create_from_template,
        )

    def build(self, job: BuildJob) -> BuildOutcome:
        """Run ``job`` once the build lock for its repository is free.

        Raises:
            NotFoundError: no source archive and template fallback disabled.
            NotAProjectError / ToolchainFailure: scaffold, install or build failed.
            BuildOutputMissing: build succeeded but no output directory found.
            TransferError: store access failed.
        """
        logger.info("Build requested for %s (use_template=%s)", job.repo, job.use_template)
        with self.locks.hold(job.repo):
            start = time.monotonic()
            outcome = self._run(job)
            outcome.duration_seconds = time.monotonic() - start
        logger.info(
            "Build of %s finished in %.1fs -> %s",
            job.repo, outcome.duration_seconds, outcome.file,
        )
        return outcome

    def _run(self, job: BuildJob) -> BuildOutcome:
        source = ArtifactKey.source(self._bucket, job.repo)
        target = ArtifactKey.build(self._bucket, job.repo)

        self._work_dir.mkdir(parents=True, exist_ok=True)
        workspace = Path(tempfile.mkdtemp(prefix=f"build-{job.repo}-", dir=self._work_dir))
        project_dir = workspace / job.repo
        created_from: Optional[str] = None

        try:
            if self._store.exists(source.bucket, source.name):
                self._prepare_from_store(source, workspace, project_dir)
            elif job.use_template or self._auto_create:
                logger.info(
                    "Repository %s not found, creating from template %s",
                    job.repo, job.template.value,
                )
                self._scaffold(job.template, source, workspace, project_dir)
                created_from = job.template.value
            else:
                raise NotFoundError(f"{source.name} not found in bucket {source.bucket}")

            output = self._toolchain.compile(project_dir)

            archive = zip_directory(output, workspace / target.name, exclude_dirs=())
            self._store.put(target.bucket, target.name, archive, ZIP_CONTENT_TYPE)
        finally:
            shutil.rmtree(workspace, ignore_errors=True)

        return BuildOutcome(
            repo=job.repo,
            bucket=target.bucket,
            file=target.name,
            output_dir=output.relative_to(project_dir).as_posix(),
            created_from=created_from,
        )

    def _prepare_from_store(self, source: ArtifactKey, workspace: Path, project_dir: Path) -> None:
        download = workspace / source.name
        self._store.get(source.bucket, source.name, download)
        extract_archive(download, project_dir)
        download.unlink()

    def _scaffold(
        self,
        template: TemplateKind,
        source: ArtifactKey,
        workspace: Path,
        project_dir: Path,
    ) -> None:
        self._toolchain.scaffold(template, project_dir)
        archive = zip_directory(
            project_dir, workspace / source.name, exclude_dirs=SCAFFOLD_EXCLUDES,
        )
        self._store.put(source.bucket, source.name, archive, ZIP_CONTENT_TYPE)
        archive.unlink()
        logger.info("Uploaded scaffolded source as %s", source)
