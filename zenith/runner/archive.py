"""Zip codec for directory trees.

Archives are written with forward-slash member names relative to the
archived directory, so extracting ``<name>-build.zip`` yields the build
output's contents directly at the extraction root.
"""

import logging
import os
import shutil
import zipfile
from pathlib import Path
from typing import Iterable

from zenith.core.errors import ValidationError
from zenith.core.names import safe_join

logger = logging.getLogger(__name__)

# Version-control metadata never leaves the machine.
VCS_DIRS = frozenset({".git", ".hg", ".svn"})


def zip_directory(
    source: Path,
    target: Path,
    exclude_dirs: Iterable[str] = VCS_DIRS,
) -> Path:
    """Write every file under ``source`` into the zip archive ``target``.

    Directories whose basename is in ``exclude_dirs`` are pruned at any
    depth. Symlinks are stored as the files they point to.
    """
    source = Path(source)
    target = Path(target)
    excluded = frozenset(exclude_dirs)
    target.parent.mkdir(parents=True, exist_ok=True)

    count = 0
    with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for dirpath, dirnames, filenames in os.walk(source):
            dirnames[:] = sorted(d for d in dirnames if d not in excluded)
            for filename in sorted(filenames):
                path = Path(dirpath) / filename
                if not path.is_file():
                    continue
                archive.write(path, path.relative_to(source).as_posix())
                count += 1

    logger.info("Archived %d files from %s into %s", count, source, target)
    return target


def extract_archive(src: Path, dest: Path) -> Path:
    """Extract the zip archive ``src`` into ``dest``.

    Every member path is resolved against ``dest`` before anything is
    written; a member that would land outside it aborts the extraction.

    Raises:
        ValidationError: on an unsafe member path or a corrupt archive.
    """
    dest = Path(dest)
    dest.mkdir(parents=True, exist_ok=True)

    try:
        with zipfile.ZipFile(src) as archive:
            members = archive.infolist()
            logger.info("Extracting %d entries to %s", len(members), dest)
            for member in members:
                target = safe_join(dest, member.filename)
                if member.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with archive.open(member) as reader, open(target, "wb") as writer:
                    shutil.copyfileobj(reader, writer)
    except zipfile.BadZipFile as exc:
        raise ValidationError(f"Corrupt archive {Path(src).name}: {exc}") from exc

    return dest
