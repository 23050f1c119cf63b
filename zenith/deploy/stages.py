"""How the orchestrator reaches the ingest and build stages.

In-process by default. When INGEST_SERVICE_URL / BUILD_SERVICE_URL are
set the stage runs as a separate service and is called over HTTP; error
bodies are decoded back into the same typed errors a local call raises,
so the orchestrator cannot tell the two apart.
"""

import logging
from typing import Any, Optional, Protocol

import httpx

from zenith.build.service import BuildJob, BuildService
from zenith.core.errors import PipelineError, error_from_payload
from zenith.core.middleware import get_request_id
from zenith.ingest.service import IngestService

logger = logging.getLogger(__name__)


class IngestStage(Protocol):
    def ingest(self, repo_url: str) -> dict[str, Any]: ...


class BuildStage(Protocol):
    def build(self, repo: str, use_template: bool, template: Optional[str]) -> dict[str, Any]: ...


class LocalIngestStage:
    def __init__(self, service: IngestService):
        self._service = service

    def ingest(self, repo_url: str) -> dict[str, Any]:
        return self._service.ingest(repo_url).to_dict()


class LocalBuildStage:
    def __init__(self, service: BuildService, default_template: str):
        self._service = service
        self._default_template = default_template

    def build(self, repo: str, use_template: bool, template: Optional[str]) -> dict[str, Any]:
        job = BuildJob.create(
            repo,
            use_template=use_template,
            template=template,
            default_template=self._default_template,
        )
        return self._service.build(job).to_dict()


class _HttpStage:
    def __init__(self, base_url: str, timeout: float, client: Optional[httpx.Client] = None):
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        headers = {}
        request_id = get_request_id()
        if request_id:
            headers["X-Request-ID"] = request_id

        try:
            response = self._client.post(path, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise PipelineError(f"POST {path} failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 400:
            raise error_from_payload(
                body, fallback=f"POST {path} failed with status {response.status_code}",
            )
        if not isinstance(body, dict):
            raise PipelineError(f"POST {path} returned a malformed body")
        return body


class HttpIngestStage(_HttpStage):
    def ingest(self, repo_url: str) -> dict[str, Any]:
        logger.info("Sending request to ingest service: %s", repo_url)
        return self._post("/ingest", {"url": repo_url})


class HttpBuildStage(_HttpStage):
    def build(self, repo: str, use_template: bool, template: Optional[str]) -> dict[str, Any]:
        payload: dict[str, Any] = {"repo": repo, "use_template": use_template}
        if template:
            payload["template"] = template
        logger.info("Sending request to build service: %s", repo)
        return self._post("/build", payload)
