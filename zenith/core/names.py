"""Repository names, artifact keys and safe path construction.

A repository name is used verbatim to build both filesystem paths and
object-store keys, so it is validated before any I/O. Object names are
always derived from the name plus a fixed suffix; downstream stages rebuild
the key themselves instead of receiving it from upstream:

    source archive  ->  <name>.zip
    build archive   ->  <name>-build.zip
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from zenith.core.errors import ValidationError

SOURCE_SUFFIX = ".zip"
BUILD_SUFFIX = "-build.zip"


def validate_repo_name(name: str) -> str:
    """Return ``name`` unchanged if it is safe to use as a path component.

    Raises:
        ValidationError: empty, starts with ``-``, contains a path separator,
            ``..`` or a null byte.
    """
    if not name or not name.strip():
        raise ValidationError("Repository name must not be empty")
    if name.startswith("-"):
        raise ValidationError(f"Invalid repository name: leading dash in {name!r}")
    if "/" in name or "\\" in name:
        raise ValidationError(f"Invalid repository name: path separator in {name!r}")
    if ".." in name:
        raise ValidationError(f"Invalid repository name: parent reference in {name!r}")
    if "\x00" in name:
        raise ValidationError(f"Invalid repository name: null byte in {name!r}")
    return name


def source_object_name(name: str) -> str:
    return validate_repo_name(name) + SOURCE_SUFFIX


def build_object_name(name: str) -> str:
    return validate_repo_name(name) + BUILD_SUFFIX


@dataclass(frozen=True)
class ArtifactKey:
    """A (bucket, object name) pair in the artifact store."""

    bucket: str
    name: str

    @classmethod
    def source(cls, bucket: str, repo: str) -> "ArtifactKey":
        return cls(bucket=bucket, name=source_object_name(repo))

    @classmethod
    def build(cls, bucket: str, repo: str) -> "ArtifactKey":
        return cls(bucket=bucket, name=build_object_name(repo))

    def __str__(self) -> str:
        return f"{self.bucket}/{self.name}"


def safe_join(root: Union[str, Path], *parts: str) -> Path:
    """Join ``parts`` onto ``root`` and verify the result stays inside it.

    Both sides are canonicalised (symlinks resolved) before comparison, so
    ``a/../../etc`` and absolute components are rejected as well.

    Raises:
        ValidationError: if the resolved path escapes ``root``
            or a part contains a null byte.
    """
    if any("\x00" in part for part in parts):
        raise ValidationError("Illegal path: null byte in path component")
    base = Path(root).resolve()
    candidate = base.joinpath(*parts).resolve()
    if candidate != base and base not in candidate.parents:
        joined = os.path.join(*parts) if parts else ""
        raise ValidationError(f"Illegal path: {joined!r} escapes {base}")
    return candidate
