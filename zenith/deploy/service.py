"""End-to-end deploy: ingest -> build (with template fallback) -> deliver.

The first failing stage ends the request and its typed error reaches the
caller unchanged. The repository is always re-ingested, even if a source
archive is already stored, so a deploy never builds stale source.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable

import structlog

from zenith.core.names import validate_repo_name
from zenith.deliver.service import DeliveryService
from zenith.deploy.stages import BuildStage, IngestStage
from zenith.runner.checkout import redact_repo_url, validate_repo_url

log = structlog.get_logger(__name__)


@dataclass
class DeployResult:
    repo: str
    public_url: str
    build_result: dict[str, Any]
    status: str = "deployed"
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": "App deployed successfully",
            "status": self.status,
            "repo": self.repo,
            "public_url": self.public_url,
            "buildResult": self.build_result,
            "warnings": self.warnings,
        }


class DeployService:
    def __init__(
        self,
        ingest: IngestStage,
        build: BuildStage,
        delivery: DeliveryService,
        default_template: str,
        allowed_hosts: Iterable[str] = (),
    ):
        self._ingest = ingest
        self._build = build
        self._delivery = delivery
        self._default_template = default_template
        self._allowed_hosts = tuple(allowed_hosts)

    def deploy(self, repo_url: str) -> DeployResult:
        """Run the full pipeline for ``repo_url``.

        Raises:
            PipelineError: the first stage failure, unchanged.
        """
        expected = validate_repo_url(repo_url, self._allowed_hosts)
        bound = log.bind(url=redact_repo_url(repo_url), repo=expected)

        bound.info("deploy.ingest.start")
        ingested = self._ingest.ingest(repo_url)
        repo = validate_repo_name(str(ingested.get("repo") or expected))
        bound = bound.bind(repo=repo)

        bound.info("deploy.build.start", template=self._default_template)
        build_result = self._build.build(repo, True, self._default_template)

        bound.info("deploy.deliver.start")
        delivered = self._delivery.deliver(repo)

        bound.info("deploy.complete", public_url=delivered.public_url)
        return DeployResult(
            repo=repo,
            public_url=delivered.public_url,
            build_result=build_result,
            warnings=delivered.warnings,
        )
