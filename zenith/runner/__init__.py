"""External collaborators driven by the pipeline stages.

Public API:
    ProcessRunner       run or spawn external commands
    clone_repo          shallow git clone with token auth
    zip_directory,      directory-tree zip codec
    extract_archive
    Toolchain           scaffold, install, build, locate output
"""

from zenith.runner.archive import extract_archive, zip_directory
from zenith.runner.checkout import clone_repo, validate_repo_url
from zenith.runner.process import ProcessRunner, StepResult
from zenith.runner.toolchain import TemplateKind, Toolchain

__all__ = [
    "ProcessRunner",
    "StepResult",
    "TemplateKind",
    "Toolchain",
    "clone_repo",
    "extract_archive",
    "validate_repo_url",
    "zip_directory",
]
