"""JavaScript build toolchain: scaffold, install, build, locate output.

The project descriptor is ``package.json``. The package manager is picked
from lock files (pnpm > yarn > bun > npm), falling back to the
``packageManager`` field and finally to npm.

Build output candidates, in priority order:
    build/   create-react-app's declared output directory
    dist/    Vite and most bundlers
    out/     Next.js static export
    .next/   Next.js server build
"""

import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Optional

from zenith.core.errors import BuildOutputMissing, NotAProjectError, ToolchainFailure, ValidationError
from zenith.runner.process import ProcessRunner, StepResult

logger = logging.getLogger(__name__)

PROJECT_DESCRIPTOR = "package.json"

OUTPUT_CANDIDATES: tuple[str, ...] = ("build", "dist", "out", ".next")

LOCK_FILES: list[tuple[str, str]] = [
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
    ("bun.lockb", "bun"),
    ("package-lock.json", "npm"),
]


class TemplateKind(str, Enum):
    """Starter projects the build stage can scaffold when no source exists."""

    CREATE_REACT_APP = "create-react-app"
    NEXT = "next"
    VITE = "vite"

    @classmethod
    def parse(cls, value: Optional[str]) -> "TemplateKind":
        """Resolve a template name or alias. Unknown names are a hard error.

        Raises:
            ValidationError: for any name outside the supported set.
        """
        key = (value or "").strip().lower()
        kind = _TEMPLATE_ALIASES.get(key)
        if kind is None:
            supported = ", ".join(k.value for k in cls)
            raise ValidationError(f"Unsupported template: {value!r} (supported: {supported})")
        return kind


_TEMPLATE_ALIASES: dict[str, TemplateKind] = {
    "create-react-app": TemplateKind.CREATE_REACT_APP,
    "app": TemplateKind.CREATE_REACT_APP,
    "next": TemplateKind.NEXT,
    "next-style": TemplateKind.NEXT,
    "vite": TemplateKind.VITE,
    "vite-style": TemplateKind.VITE,
}


def has_project_descriptor(project_dir: Path) -> bool:
    return (Path(project_dir) / PROJECT_DESCRIPTOR).is_file()


def detect_package_manager(project_dir: Path) -> str:
    """Detect the package manager from lock files, then ``packageManager``."""
    project_dir = Path(project_dir)
    for filename, pm in LOCK_FILES:
        if (project_dir / filename).exists():
            return pm

    pkg_path = project_dir / PROJECT_DESCRIPTOR
    try:
        data = json.loads(pkg_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, UnicodeDecodeError):
        return "npm"

    pm_field = data.get("packageManager", "") if isinstance(data, dict) else ""
    for pm in ("pnpm", "yarn", "bun"):
        if isinstance(pm_field, str) and pm_field.startswith(pm):
            return pm
    return "npm"


def install_env() -> dict:
    """Environment for dependency installs.

    Hosts often export NODE_ENV=production, which makes npm skip
    devDependencies, where react-scripts, vite and next live. Force a
    development install so the build step has its tooling.
    """
    env = dict(os.environ)
    env["NODE_ENV"] = "development"
    env["NPM_CONFIG_PRODUCTION"] = "false"
    return env


def build_env() -> dict:
    env = dict(os.environ)
    env["CI"] = "true"
    # create-react-app treats lint warnings as errors when CI=true.
    env.setdefault("DISABLE_ESLINT_PLUGIN", "true")
    return env


def find_build_output(project_dir: Path) -> Optional[Path]:
    """Return the first existing output candidate directory, or None."""
    project_dir = Path(project_dir)
    for candidate in OUTPUT_CANDIDATES:
        path = project_dir / candidate
        if path.is_dir():
            return path
    return None


class Toolchain:
    """Drives package-manager commands through a ProcessRunner."""

    def __init__(
        self,
        runner: ProcessRunner,
        install_timeout: int = 900,
        build_timeout: int = 900,
        scaffold_timeout: int = 900,
    ):
        self._runner = runner
        self._install_timeout = install_timeout
        self._build_timeout = build_timeout
        self._scaffold_timeout = scaffold_timeout

    def scaffold(self, kind: TemplateKind, project_dir: Path) -> StepResult:
        """Generate a starter project of ``kind`` at ``project_dir``.

        Raises:
            ToolchainFailure: if the generator exits non-zero.
        """
        project_dir = Path(project_dir).resolve()
        project_dir.parent.mkdir(parents=True, exist_ok=True)
        cwd = project_dir.parent

        if kind is TemplateKind.CREATE_REACT_APP:
            args = ["npx", "--yes", "create-react-app", str(project_dir), "--use-npm"]
        elif kind is TemplateKind.NEXT:
            args = [
                "npx", "--yes", "create-next-app@latest", str(project_dir),
                "--use-npm", "--no-git", "--yes",
            ]
        else:
            project_dir.mkdir(parents=True, exist_ok=True)
            cwd = project_dir
            args = ["npm", "create", "vite@latest", ".", "--yes", "--", "--template", "react"]

        logger.info("Scaffolding %s project at %s", kind.value, project_dir)
        result = self._runner.run(
            "scaffold", args, cwd=cwd, timeout=self._scaffold_timeout, env=install_env(),
        )
        if not result.is_success:
            raise ToolchainFailure(
                f"failed to create project from template {kind.value}: {result.output_tail(max_lines=20)}",
                detail={"step": result.to_dict()},
            )
        return result

    def install(self, project_dir: Path) -> StepResult:
        """Install dependencies.

        Raises:
            NotAProjectError: no package.json at the project root.
            ToolchainFailure: the install command exited non-zero.
        """
        self._require_descriptor(project_dir)
        pm = detect_package_manager(project_dir)
        result = self._runner.run(
            "install", [pm, "install"], cwd=project_dir,
            timeout=self._install_timeout, env=install_env(),
        )
        if not result.is_success:
            raise ToolchainFailure(
                f"{pm} install failed (exit {result.exit_code}): {result.output_tail(max_lines=20)}",
                detail={"step": result.to_dict()},
            )
        return result

    def build(self, project_dir: Path) -> StepResult:
        """Run the project's ``build`` script.

        Raises:
            ToolchainFailure: the build command exited non-zero.
        """
        pm = detect_package_manager(project_dir)
        result = self._runner.run(
            "build", [pm, "run", "build"], cwd=project_dir,
            timeout=self._build_timeout, env=build_env(),
        )
        if not result.is_success:
            raise ToolchainFailure(
                f"{pm} run build failed (exit {result.exit_code}): {result.output_tail(max_lines=20)}",
                detail={"step": result.to_dict()},
            )
        return result

    def compile(self, project_dir: Path) -> Path:
        """Install, build, then resolve the output directory.

        Raises:
            NotAProjectError, ToolchainFailure, BuildOutputMissing
        """
        self.install(project_dir)
        self.build(project_dir)
        output = find_build_output(project_dir)
        if output is None:
            raise BuildOutputMissing(
                "build folder not found (looked for: " + ", ".join(OUTPUT_CANDIDATES) + ")"
            )
        logger.info("Build output located at %s", output)
        return output

    @staticmethod
    def _require_descriptor(project_dir: Path) -> None:
        if not has_project_descriptor(project_dir):
            raise NotAProjectError(f"{PROJECT_DESCRIPTOR} not found in repository")
