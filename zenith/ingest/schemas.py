"""Pydantic schemas for the ingest endpoint."""

from pydantic import BaseModel, Field


class IngestRequest(BaseModel):
    url: str = Field(..., min_length=1, description="https URL of the repository to clone")


class IngestResponse(BaseModel):
    message: str
    repo: str
    bucket: str
    file: str
    timestamp: str
