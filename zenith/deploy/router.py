"""Deploy endpoint: ingest, build and deliver in one call.

Accepts the URL either as a JSON body (POST) or as ``?url=`` (GET).
Rate limited per client IP since each call clones and builds a project.
"""

from fastapi import APIRouter, Depends, Query, Request

from zenith.core.config import get_settings
from zenith.core.limiter import limiter
from zenith.deploy.schemas import DeployRequest, DeployResponse
from zenith.services import Services, get_services

router = APIRouter(tags=["deploy"])


def _deploy_limit() -> str:
    return get_settings().deploy_rate_limit


def _run(services: Services, url: str) -> DeployResponse:
    result = services.deploy.deploy(url)
    return DeployResponse(**result.to_dict())


@router.post("/deploy", response_model=DeployResponse)
@limiter.limit(_deploy_limit)
def deploy_repo(
    request: Request,
    body: DeployRequest,
    services: Services = Depends(get_services),
) -> DeployResponse:
    return _run(services, body.url)


@router.get("/deploy", response_model=DeployResponse)
@limiter.limit(_deploy_limit)
def deploy_repo_query(
    request: Request,
    url: str = Query(..., min_length=1),
    services: Services = Depends(get_services),
) -> DeployResponse:
    return _run(services, url)
