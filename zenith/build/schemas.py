"""Pydantic schemas for the build endpoint."""

from typing import Optional

from pydantic import BaseModel, Field


class BuildRequest(BaseModel):
    repo: str = Field(..., min_length=1, description="Repository name, e.g. 'widget'")
    use_template: bool = Field(
        default=False,
        description="Scaffold a project from `template` when no source archive is stored.",
    )
    template: Optional[str] = Field(
        default=None,
        description="create-react-app, next or vite. Defaults to DEFAULT_TEMPLATE.",
    )


class BuildResponse(BaseModel):
    message: str
    status: str
    repo: str
    bucket: str
    file: str
    output_dir: str
    created_from: str = ""
    duration_seconds: float = 0.0
