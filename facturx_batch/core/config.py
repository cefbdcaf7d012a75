"""Runtime configuration read from the environment.

Values are looked up at call time so tests can point the service at a
temporary directory with ``monkeypatch.setenv`` without reloading modules.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def batches_root() -> Path:
    env_root = os.getenv("BATCHES_ROOT")
    if env_root:
        return Path(env_root).expanduser().resolve()
    return Path(__file__).resolve().parents[2] / "batches"


def unit_price_cents() -> int:
    return _int_env("UNIT_PRICE_CENTS", 10)


def max_batch_items() -> int:
    return _int_env("MAX_BATCH_ITEMS", 10_000)


def max_archive_bytes() -> int:
    return _int_env("MAX_ARCHIVE_MB", 500) * 1024 * 1024


def max_manifest_bytes() -> int:
    return _int_env("MAX_MANIFEST_MB", 10) * 1024 * 1024


def max_pdf_bytes() -> int:
    return _int_env("MAX_PDF_MB", 10) * 1024 * 1024


def download_ttl_hours() -> int:
    return _int_env("DOWNLOAD_TTL_HOURS", 24)


def retention_hours() -> int:
    return _int_env("RETENTION_HOURS", 24)


def progress_every() -> int:
    return max(1, _int_env("PROGRESS_EVERY", 10))


def cors_origins() -> list[str]:
    origins_env = os.getenv("API_CORS_ORIGINS", "")
    origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]
    if not origins:
        origins = ["http://localhost:4200", "http://127.0.0.1:4200"]
    return origins


# Average size of one invoice PDF, used to estimate item counts at submission.
ESTIMATED_BYTES_PER_PDF = 50_000

CURRENCY_LABEL = "EUR"


def setup_logging() -> None:
    """Configure the root logger once for the API process and scripts."""

    level_name = os.getenv("LOG_LEVEL", "INFO")
    logging.basicConfig(
        level=getattr(logging, level_name.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
