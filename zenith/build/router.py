"""Build endpoint.

Runs synchronously in FastAPI's threadpool: the caller waits for the whole
build, including any time spent queued behind the build lock.
"""

from fastapi import APIRouter, Depends

from zenith.build.schemas import BuildRequest, BuildResponse
from zenith.build.service import BuildJob
from zenith.services import Services, get_services

router = APIRouter(tags=["build"])


@router.post("/build", response_model=BuildResponse)
def build_repo(
    body: BuildRequest,
    services: Services = Depends(get_services),
) -> BuildResponse:
    job = BuildJob.create(
        body.repo,
        use_template=body.use_template,
        template=body.template,
        default_template=services.settings.default_template,
    )
    outcome = services.build.build(job)
    return BuildResponse(**outcome.to_dict())
