"""Delivery endpoint."""

from fastapi import APIRouter, Depends

from zenith.deliver.schemas import DeliverRequest, DeliverResponse
from zenith.services import Services, get_services

router = APIRouter(tags=["deliver"])


@router.post("/deliver", response_model=DeliverResponse)
def deliver_repo(
    body: DeliverRequest,
    services: Services = Depends(get_services),
) -> DeliverResponse:
    """Serve the stored build archive and return its public URL.

    The static server keeps running after the response is sent.
    """
    result = services.delivery.deliver(body.repo)
    return DeliverResponse(**result.to_dict())
