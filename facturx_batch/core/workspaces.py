from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import BinaryIO

from facturx_batch.core import config

logger = logging.getLogger(__name__)


JOB_SUBDIRS = ["upload", "input", "output"]


def job_root(public_id: str) -> Path:
    return config.batches_root() / public_id


def ensure_job_root(public_id: str) -> Path:
    """Ensure the job folders exist and return the root path."""

    root = job_root(public_id)
    for sub in JOB_SUBDIRS:
        (root / sub).mkdir(parents=True, exist_ok=True)
    return root


def input_dir(public_id: str) -> Path:
    return job_root(public_id) / "input"


def output_dir(public_id: str) -> Path:
    return job_root(public_id) / "output"


def output_archive_path(public_id: str) -> Path:
    return job_root(public_id) / f"facturx-{public_id}.zip"


def save_upload(public_id: str, filename: str, source: BinaryIO) -> Path:
    """Persist an uploaded file under the job upload directory."""

    safe_name = Path(filename).name
    root = ensure_job_root(public_id)
    target = root / "upload" / safe_name
    with target.open("wb") as buffer:
        shutil.copyfileobj(source, buffer)
    return target


def remove_tree(path: Path) -> None:
    """Delete a directory tree; a missing tree is not an error."""

    if not path.exists():
        return
    try:
        shutil.rmtree(path)
    except OSError as exc:
        logger.warning("Could not remove %s: %s", path, exc)


def remove_file(path: str | Path | None) -> None:
    if not path:
        return
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove %s: %s", path, exc)


def purge_job(public_id: str) -> None:
    remove_tree(job_root(public_id))
