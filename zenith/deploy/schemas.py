"""Pydantic schemas for the deploy endpoint."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DeployRequest(BaseModel):
    url: str = Field(..., min_length=1, description="https URL of the repository to deploy")


class DeployResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    status: str
    repo: str
    public_url: str
    build_result: dict[str, Any] = Field(alias="buildResult")
    warnings: list[str] = Field(default_factory=list)
