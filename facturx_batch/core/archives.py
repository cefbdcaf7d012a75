"""ZIP handling for batch input and output."""
from __future__ import annotations

import logging
import zipfile
import zlib
from pathlib import Path

from facturx_batch.core.errors import ExtractionError, PackagingError

logger = logging.getLogger(__name__)


def extract_archive(archive_path: Path, destination: Path) -> None:
    """Unpack every member of ``archive_path`` under ``destination``.

    Relative paths are preserved.  ``zipfile`` drops absolute prefixes and
    ``..`` components, so members cannot land outside ``destination``.
    """

    destination.mkdir(parents=True, exist_ok=True)
    try:
        with zipfile.ZipFile(archive_path) as archive:
            archive.extractall(destination)
            members = len(archive.infolist())
    except (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, OSError, EOFError, RuntimeError) as exc:
        raise ExtractionError(f"Archive could not be extracted: {exc}") from exc
    logger.debug("Extracted %d entries from %s", members, Path(archive_path).name)


def _is_within(root: Path, candidate: Path) -> bool:
    try:
        candidate.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


def _walk_for(directory: Path, target: str, base_name: str) -> Path | None:
    for entry in sorted(directory.iterdir(), key=lambda item: item.name):
        if entry.is_dir():
            found = _walk_for(entry, target, base_name)
            if found is not None:
                return found
        elif entry.name == target or entry.name == base_name:
            return entry
    return None


def locate_entry(root: Path, target: str) -> Path | None:
    """Find ``target`` under ``root``.

    An exact relative path is tried first; otherwise the tree is walked depth
    first and the first file whose name equals ``target`` or its base name is
    returned.  When several subdirectories hold the same base name, which one
    wins is not part of the contract.
    """

    if not target:
        return None
    direct = root / target
    if direct.is_file() and _is_within(root, direct):
        return direct
    if not root.is_dir():
        return None
    return _walk_for(root, target, Path(target).name)


def pack_directory(source_dir: Path, archive_path: Path) -> int:
    """Zip every file directly under ``source_dir``; return the archive size."""

    try:
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(
            archive_path,
            mode="w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=9,
        ) as archive:
            for entry in sorted(source_dir.iterdir(), key=lambda item: item.name):
                if entry.is_file():
                    archive.write(entry, arcname=entry.name)
        return archive_path.stat().st_size
    except OSError as exc:
        raise PackagingError(f"Output archive could not be written: {exc}") from exc
