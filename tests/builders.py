"""Fixture builders shared by the test modules."""
from __future__ import annotations

import csv
import io
import zipfile
from pathlib import Path

from openpyxl import Workbook
from pypdf import PdfWriter


def pdf_bytes() -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=595, height=842)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def zip_bytes(entries: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, content in entries.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def corrupt_zip_bytes(name: str = "invoice-1.pdf") -> bytes:
    """A ZIP whose central directory is intact but whose member data fails its CRC."""

    payload = b"%PDF-1.4 " + b"x" * 64
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_STORED) as archive:
        archive.writestr(name, payload)
    return buffer.getvalue().replace(payload, b"%PDF-1.4 " + b"y" * 64)


def write_zip(path: Path, entries: dict[str, bytes]) -> Path:
    path.write_bytes(zip_bytes(entries))
    return path


def invoice_row(index: int, **overrides: object) -> dict[str, object]:
    row = {
        "filename": f"invoice-{index}.pdf",
        "invoiceNumber": f"FA-2024-{index:03d}",
        "invoiceDate": "2024-03-15",
        "sellerName": "Atelier Martin SARL",
        "sellerSiret": "73282932000074",
        "sellerVatNumber": "FR40732829320",
        "buyerName": f"Client {index}",
        "totalHT": "100.00",
        "totalTVA": "20.00",
        "totalTTC": "120.00",
    }
    row.update(overrides)
    return row


def csv_bytes(rows: list[dict], delimiter: str = ",") -> bytes:
    if not rows:
        raise ValueError("rows must not be empty")

    fieldnames: list[str] = []
    for row in rows:
        for key in row.keys():
            if key not in fieldnames:
                fieldnames.append(key)

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=fieldnames, delimiter=delimiter)
    writer.writeheader()
    for row in rows:
        writer.writerow(row)
    return buffer.getvalue().encode("utf-8")


def write_csv(path: Path, rows: list[dict], delimiter: str = ",") -> Path:
    path.write_bytes(csv_bytes(rows, delimiter))
    return path


def write_xlsx(path: Path, rows: list[dict]) -> Path:
    workbook = Workbook()
    sheet = workbook.active
    headers: list[str] = []
    for row in rows:
        for key in row.keys():
            if key not in headers:
                headers.append(key)
    sheet.append(headers)
    for row in rows:
        sheet.append([row.get(header) for header in headers])
    workbook.save(path)
    return path


def batch_files(count: int, *, missing: int = 0) -> tuple[bytes, bytes]:
    """Archive holding ``count - missing`` PDFs and a manifest listing ``count`` rows."""

    pdf = pdf_bytes()
    rows = [invoice_row(index) for index in range(1, count + 1)]
    entries = {row["filename"]: pdf for row in rows[: count - missing]}
    return zip_bytes(entries), csv_bytes(rows)
