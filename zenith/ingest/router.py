"""Ingest endpoints.

``/upload`` is kept as an alias of ``/ingest`` for existing callers.
"""

from fastapi import APIRouter, Depends

from zenith.ingest.schemas import IngestRequest, IngestResponse
from zenith.services import Services, get_services

router = APIRouter(tags=["ingest"])


@router.post("/ingest", response_model=IngestResponse)
@router.post("/upload", response_model=IngestResponse, include_in_schema=False)
def ingest_repo(
    body: IngestRequest,
    services: Services = Depends(get_services),
) -> IngestResponse:
    """Clone the repository and store its source archive."""
    result = services.ingest.ingest(body.url)
    return IngestResponse(**result.to_dict())
