"""Wiring of the pipeline services for one application instance.

Built once in ``create_app`` and stored on ``app.state.services``; every
router resolves its stage from there, so the build lock table and the
static server are shared by all requests of the process.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from zenith.build.service import BuildService
from zenith.core.config import Settings
from zenith.deliver.service import DeliveryService
from zenith.deliver.tunnel import TunnelManager
from zenith.deploy.service import DeployService
from zenith.deploy.stages import (
    BuildStage,
    HttpBuildStage,
    HttpIngestStage,
    IngestStage,
    LocalBuildStage,
    LocalIngestStage,
)
from zenith.ingest.service import IngestService
from zenith.runner.process import ProcessRunner
from zenith.runner.toolchain import Toolchain
from zenith.storage.store import ArtifactStore, create_store


@dataclass
class Services:
    settings: Settings
    store: ArtifactStore
    runner: ProcessRunner
    ingest: IngestService
    build: BuildService
    delivery: DeliveryService
    deploy: DeployService

    def shutdown(self) -> None:
        self.delivery.shutdown()


def build_services(
    settings: Settings,
    store: Optional[ArtifactStore] = None,
    runner: Optional[ProcessRunner] = None,
    tunnels: Optional[TunnelManager] = None,
    delivery: Optional[DeliveryService] = None,
) -> Services:
    store = store or create_store(settings)
    runner = runner or ProcessRunner()
    toolchain = Toolchain(
        runner,
        install_timeout=settings.install_timeout,
        build_timeout=settings.build_timeout,
        scaffold_timeout=settings.scaffold_timeout,
    )

    ingest = IngestService.from_settings(settings, store, runner)
    build = BuildService.from_settings(settings, store, toolchain)

    if delivery is None:
        tunnels = tunnels or TunnelManager(
            runner,
            api_url=settings.tunnel_api_url,
            ngrok_bin=settings.ngrok_bin,
            authtoken=settings.ngrok_authtoken,
            timeout=settings.tunnel_timeout,
            poll_interval=settings.tunnel_poll_interval,
        )
        delivery = DeliveryService.from_settings(settings, store, toolchain, tunnels)

    ingest_stage: IngestStage
    if settings.ingest_service_url:
        ingest_stage = HttpIngestStage(settings.ingest_service_url, settings.stage_request_timeout)
    else:
        ingest_stage = LocalIngestStage(ingest)

    build_stage: BuildStage
    if settings.build_service_url:
        build_stage = HttpBuildStage(settings.build_service_url, settings.stage_request_timeout)
    else:
        build_stage = LocalBuildStage(build, settings.default_template)

    deploy = DeployService(
        ingest=ingest_stage,
        build=build_stage,
        delivery=delivery,
        default_template=settings.default_template,
        allowed_hosts=settings.source_hosts,
    )

    return Services(
        settings=settings,
        store=store,
        runner=runner,
        ingest=ingest,
        build=build,
        delivery=delivery,
        deploy=deploy,
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency: the container built by ``create_app``."""
    return request.app.state.services
