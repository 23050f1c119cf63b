"""Typed failures shared by every pipeline stage.

Each stage raises exactly one of these; the orchestrator lets them pass
through unchanged and the API renders them as ``{"error", "status"}`` where
``status`` is the error's ``kind``. Remote stage calls decode the same body
back into the matching class via ``error_from_payload``.
"""

from __future__ import annotations

from typing import Any, Optional


class PipelineError(Exception):
    """Base class for every failure a pipeline stage can surface."""

    kind: str = "error"
    status_code: int = 500

    def __init__(self, message: str, *, detail: Optional[dict[str, Any]] = None):
        self.message = message
        self.detail = detail or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message, "status": self.kind}
        if self.detail:
            payload["detail"] = self.detail
        return payload


class ValidationError(PipelineError):
    """Unsafe or malformed input, rejected before any I/O."""

    kind = "validation_error"
    status_code = 400


class NotFoundError(PipelineError):
    """No source archive stored and no template fallback requested."""

    kind = "not_found"
    status_code = 404

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["message"] = (
            "Repository not found. Add 'use_template': true to create from template."
        )
        return payload


class FetchError(PipelineError):
    """Source retrieval failed (network, unknown repo, rejected credential)."""

    kind = "fetch_error"
    status_code = 502


class ToolchainFailure(PipelineError):
    """Scaffold, dependency install or build command exited non-zero."""

    kind = "toolchain_failure"
    status_code = 500


class NotAProjectError(ToolchainFailure):
    """The working tree has no project descriptor to build."""

    kind = "not_a_project"
    status_code = 422


class BuildOutputMissing(PipelineError):
    """The build command succeeded but produced none of the known output dirs."""

    kind = "build_output_missing"
    status_code = 500


class TransferError(PipelineError):
    """Artifact store put/get/exists failed, including deadline overruns."""

    kind = "transfer_error"
    status_code = 502


class TunnelTimeout(PipelineError):
    """The public tunnel could not be confirmed within the deadline."""

    kind = "tunnel_timeout"
    status_code = 504


_KINDS: dict[str, type[PipelineError]] = {
    cls.kind: cls
    for cls in (
        ValidationError,
        NotFoundError,
        FetchError,
        ToolchainFailure,
        NotAProjectError,
        BuildOutputMissing,
        TransferError,
        TunnelTimeout,
    )
}


def error_from_payload(payload: Any, fallback: str = "") -> PipelineError:
    """Rebuild a typed error from a ``to_dict()`` body returned by a stage.

    Unknown or malformed bodies become a plain ``PipelineError`` so the
    caller still gets a terminal failure rather than a silent success.
    """
    if not isinstance(payload, dict):
        return PipelineError(fallback or "stage returned a malformed error body")

    message = str(payload.get("error") or fallback or "stage failed")
    detail = payload.get("detail") if isinstance(payload.get("detail"), dict) else None
    cls = _KINDS.get(str(payload.get("status", "")), PipelineError)
    return cls(message, detail=detail)
