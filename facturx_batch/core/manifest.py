"""Manifest parsing for batch submissions.

A manifest is a CSV (comma or semicolon separated) or an Excel workbook with
one row per invoice.  Column names come in English camelCase, French and
English snake_case spellings; :data:`FIELD_ALIASES` lists them in the order
they are tried.  The first non-empty value wins.
"""
from __future__ import annotations

import logging
import zipfile
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Iterator

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from facturx_batch.core import config
from facturx_batch.core.errors import ManifestError, ManifestTooLarge
from facturx_batch.core.schema import InvoiceMetadataRecord

logger = logging.getLogger(__name__)


FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "filename": ("filename", "fichier", "pdf"),
    "invoice_number": ("invoiceNumber", "numero", "invoice_number"),
    "invoice_date": ("invoiceDate", "date", "invoice_date"),
    "seller_name": ("sellerName", "vendeur", "seller_name"),
    "seller_siret": ("sellerSiret", "siret_vendeur", "seller_siret"),
    "seller_vat_number": ("sellerVatNumber", "tva_vendeur", "seller_vat"),
    "seller_street": ("sellerStreet", "adresse_vendeur", "seller_street"),
    "seller_zip_code": ("sellerZipCode", "cp_vendeur", "seller_zip"),
    "seller_city": ("sellerCity", "ville_vendeur", "seller_city"),
    "seller_country_code": ("sellerCountryCode", "pays_vendeur", "seller_country"),
    "buyer_name": ("buyerName", "acheteur", "buyer_name"),
    "buyer_siret": ("buyerSiret", "siret_acheteur", "buyer_siret"),
    "buyer_vat_number": ("buyerVatNumber", "tva_acheteur", "buyer_vat"),
    "buyer_street": ("buyerStreet", "adresse_acheteur", "buyer_street"),
    "buyer_zip_code": ("buyerZipCode", "cp_acheteur", "buyer_zip"),
    "buyer_city": ("buyerCity", "ville_acheteur", "buyer_city"),
    "buyer_country_code": ("buyerCountryCode", "pays_acheteur", "buyer_country"),
    "currency_code": ("currencyCode", "devise", "currency"),
    "total_ht": ("totalHT", "ht", "total_ht"),
    "total_tva": ("totalTVA", "tva", "total_tva"),
    "total_ttc": ("totalTTC", "ttc", "total_ttc"),
    "payment_terms": ("paymentTerms", "conditions", "payment_terms"),
    "payment_due_date": ("paymentDueDate", "echeance", "due_date"),
}

FIELD_DEFAULTS: dict[str, str] = {
    "seller_country_code": "FR",
    "buyer_country_code": "FR",
    "currency_code": "EUR",
}

EXCEL_SUFFIXES = {".xlsx", ".xlsm"}
CSV_SUFFIXES = {".csv", ".txt"}

_CHUNK_ROWS = 500


def _normalise(value: Any) -> str:
    if value is None or value is pd.NaT:
        return ""
    if isinstance(value, float):
        if value != value:  # NaN
            return ""
        if value.is_integer():
            return str(int(value))
    # Excel date cells arrive as datetimes; dates are ISO formatted.
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def detect_delimiter(header_line: str) -> str:
    """Pick ``;`` when it outnumbers ``,`` in the header, ``,`` otherwise."""

    return ";" if header_line.count(";") > header_line.count(",") else ","


def resolve_fields(row: dict[str, Any]) -> dict[str, str]:
    """Map one raw row onto logical field names using the alias table."""

    resolved: dict[str, str] = {}
    for field_name, aliases in FIELD_ALIASES.items():
        for alias in aliases:
            value = _normalise(row.get(alias))
            if value:
                resolved[field_name] = value
                break
        else:
            default = FIELD_DEFAULTS.get(field_name)
            if default is not None:
                resolved[field_name] = default
    return resolved


def _read_header(path: Path) -> str:
    with path.open("r", encoding="utf-8-sig") as fp:
        for line in fp:
            if line.strip():
                return line
    return ""


def _csv_frames(path: Path) -> Iterator[pd.DataFrame]:
    header = _read_header(path)
    if not header:
        return
    reader = pd.read_csv(
        path,
        sep=detect_delimiter(header),
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        encoding="utf-8-sig",
        chunksize=_CHUNK_ROWS,
    )
    with reader:
        yield from reader


def _excel_frames(path: Path) -> Iterator[pd.DataFrame]:
    # Cells keep their native types so dates and numbers can be normalised.
    yield pd.read_excel(path, sheet_name=0, engine="openpyxl")


def _frames(path: Path) -> Iterable[pd.DataFrame]:
    suffix = path.suffix.lower()
    if suffix in EXCEL_SUFFIXES:
        return _excel_frames(path)
    if suffix in CSV_SUFFIXES:
        return _csv_frames(path)
    raise ManifestError(f"Unsupported manifest format: {path.suffix or path.name}")


def parse_manifest(path: Path, *, limit: int | None = None) -> Iterator[InvoiceMetadataRecord]:
    """Yield one :class:`InvoiceMetadataRecord` per data row.

    The generator reads the file once; call it again to parse again.
    Yielding beyond ``limit`` rows (the batch ceiling by default) raises
    :class:`ManifestTooLarge`.
    """

    ceiling = config.max_batch_items() if limit is None else limit
    path = Path(path)
    if not path.exists():
        raise ManifestError(f"Manifest not found: {path.name}")

    count = 0
    try:
        for frame in _frames(path):
            frame = frame.rename(columns=lambda column: _normalise(column))
            for row in frame.to_dict(orient="records"):
                if not any(_normalise(value) for value in row.values()):
                    continue
                count += 1
                if count > ceiling:
                    raise ManifestTooLarge(ceiling)
                yield InvoiceMetadataRecord(row_number=count, **resolve_fields(row))
    except ManifestError:
        raise
    except (
        UnicodeDecodeError,
        ValueError,
        OSError,
        pd.errors.ParserError,
        zipfile.BadZipFile,
        InvalidFileException,
    ) as exc:
        logger.warning("Manifest %s could not be read: %s", path.name, exc)
        raise ManifestError(f"Manifest could not be read: {exc}") from exc
