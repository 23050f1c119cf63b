"""Pydantic schemas for the delivery endpoint."""

from pydantic import BaseModel, Field


class DeliverRequest(BaseModel):
    repo: str = Field(..., min_length=1)


class TunnelInfo(BaseModel):
    port: int
    public_url: str
    proto: str


class DeliverResponse(BaseModel):
    message: str
    repo: str
    public_url: str
    serving_root: str
    tunnel: TunnelInfo
    warnings: list[str] = Field(default_factory=list)
