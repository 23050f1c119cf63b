"""Delivery stage: serve ``<name>-build.zip`` and expose it publicly.

Each delivery extracts into a fresh directory under the deploy root. Once
the static server has switched to it, the previous deployment directory
is removed; on failure before the switch the new directory is removed
instead, so exactly one deployment tree exists at rest.

If the artifact turns out to be an unbuilt project, an in-place
install+build is attempted. Its failure does not fail the delivery: the
files that exist are served and the failure is reported as a warning.
"""

import logging
import shutil
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import structlog

from zenith.core.config import Settings
from zenith.core.errors import PipelineError, TransferError
from zenith.core.names import ArtifactKey, validate_repo_name
from zenith.deliver.static_site import SiteRoot, StaticSiteServer
from zenith.deliver.tunnel import TunnelDescriptor, TunnelManager
from zenith.runner.archive import extract_archive
from zenith.runner.toolchain import Toolchain, find_build_output, has_project_descriptor
from zenith.storage.store import ArtifactStore

logger = logging.getLogger(__name__)
log = structlog.get_logger(__name__)


@dataclass
class DeliveryResult:
    repo: str
    public_url: str
    serving_root: str
    tunnel: TunnelDescriptor
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "message": "App delivered successfully",
            "repo": self.repo,
            "public_url": self.public_url,
            "serving_root": self.serving_root,
            "tunnel": self.tunnel.to_dict(),
            "warnings": self.warnings,
        }


class DeliveryService:
    def __init__(
        self,
        store: ArtifactStore,
        toolchain: Toolchain,
        bucket: str,
        deploy_dir: Path,
        server: StaticSiteServer,
        tunnels: TunnelManager,
    ):
        self._store = store
        self._toolchain = toolchain
        self._bucket = bucket
        self._deploy_dir = Path(deploy_dir)
        self.server = server
        self.tunnels = tunnels
        self._lock = threading.Lock()
        self._current: Optional[Path] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: ArtifactStore,
        toolchain: Toolchain,
        tunnels: TunnelManager,
    ) -> "DeliveryService":
        return cls(
            store=store,
            toolchain=toolchain,
            bucket=settings.b2_bucket,
            deploy_dir=Path(settings.deploy_dir),
            server=StaticSiteServer(host=settings.static_host, port=settings.static_port),
            tunnels=tunnels,
        )

    @property
    def current_deployment(self) -> Optional[Path]:
        return self._current

    def deliver(self, repo: str) -> DeliveryResult:
        """Download, extract and serve the build archive for ``repo``.

        Raises:
            ValidationError: unsafe name or archive member path.
            TransferError: download failed or produced an empty file.
            TunnelTimeout: the site is served locally but no public tunnel
                registered in time.
        """
        name = validate_repo_name(repo)
        key = ArtifactKey.build(self._bucket, name)

        self._deploy_dir.mkdir(parents=True, exist_ok=True)
        deployment = Path(tempfile.mkdtemp(prefix=f"{name}-", dir=self._deploy_dir))
        site_dir = deployment / "site"

        try:
            archive = deployment / key.name
            self._store.get(key.bucket, key.name, archive)
            size = archive.stat().st_size
            if size == 0:
                raise TransferError(f"downloaded {key} is empty")
            logger.info("Downloaded %s (%d bytes)", key, size)

            extract_archive(archive, site_dir)
            archive.unlink()

            warnings: list[str] = []
            search_root = self._rebuild_if_needed(name, site_dir, warnings)
            site = SiteRoot.resolve(search_root)

            with self._lock:
                self.server.serve(site)
                previous, self._current = self._current, deployment
        except BaseException:
            shutil.rmtree(deployment, ignore_errors=True)
            raise

        if previous is not None and previous != deployment:
            shutil.rmtree(previous, ignore_errors=True)

        with self._lock:
            descriptor = self.tunnels.ensure(self.server.port)

        return DeliveryResult(
            repo=name,
            public_url=descriptor.public_url,
            serving_root=str(site.root),
            tunnel=descriptor,
            warnings=warnings,
        )

    def _rebuild_if_needed(self, repo: str, site_dir: Path, warnings: list[str]) -> Path:
        """Build an unbuilt project in place; return the tree to serve from.

        A failure never propagates; it is logged and appended to ``warnings``.
        """
        if not has_project_descriptor(site_dir) or find_build_output(site_dir) is not None:
            return site_dir

        logger.info("Found package.json without build output, building %s in place", repo)
        try:
            return self._toolchain.compile(site_dir)
        except PipelineError as exc:
            message = f"in-place build failed, serving files as-is: {exc.message}"
            log.warning("delivery.in_place_build_failed", repo=repo, kind=exc.kind, error=exc.message)
            warnings.append(message)
            return site_dir

    def shutdown(self) -> None:
        self.tunnels.close()
        self.server.stop()
