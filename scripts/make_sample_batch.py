#!/usr/bin/env python
from __future__ import annotations

import argparse
import csv
import io
import zipfile
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path

from openpyxl import Workbook
from pypdf import PdfWriter


HEADER = [
    "filename",
    "invoiceNumber",
    "invoiceDate",
    "sellerName",
    "sellerSiret",
    "sellerVatNumber",
    "buyerName",
    "totalHT",
    "totalTVA",
    "totalTTC",
    "paymentDueDate",
]


def _blank_pdf() -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=595, height=842)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def _rows(count: int, start: date) -> list[list[str]]:
    rows = []
    for index in range(1, count + 1):
        total_ht = Decimal(100 * index).quantize(Decimal("0.01"))
        total_tva = (total_ht * Decimal("0.20")).quantize(Decimal("0.01"))
        issued = start + timedelta(days=index - 1)
        rows.append(
            [
                f"invoice-{index:04d}.pdf",
                f"FA-{start.year}-{index:04d}",
                issued.isoformat(),
                "Atelier Martin SARL",
                "73282932000074",
                "FR40732829320",
                f"Client {index}",
                str(total_ht),
                str(total_tva),
                str(total_ht + total_tva),
                (issued + timedelta(days=30)).isoformat(),
            ]
        )
    return rows


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate a sample invoice batch (ZIP + manifest)")
    parser.add_argument("--output-dir", required=True, help="Directory receiving the sample files")
    parser.add_argument("--count", type=int, default=5, help="Number of invoices")
    parser.add_argument("--format", choices=["csv", "xlsx"], default="csv", help="Manifest format")
    parser.add_argument("--delimiter", default=";", help="CSV delimiter")
    args = parser.parse_args()

    output = Path(args.output_dir)
    output.mkdir(parents=True, exist_ok=True)
    rows = _rows(args.count, date.today().replace(day=1))

    pdf = _blank_pdf()
    archive_path = output / "invoices.zip"
    with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for row in rows:
            archive.writestr(row[0], pdf)

    if args.format == "xlsx":
        manifest_path = output / "metadata.xlsx"
        workbook = Workbook()
        sheet = workbook.active
        sheet.append(HEADER)
        for row in rows:
            sheet.append(row)
        workbook.save(manifest_path)
    else:
        manifest_path = output / "metadata.csv"
        with manifest_path.open("w", newline="", encoding="utf-8") as fp:
            writer = csv.writer(fp, delimiter=args.delimiter)
            writer.writerow(HEADER)
            writer.writerows(rows)

    print(f"Sample batch written: {archive_path} + {manifest_path}")


if __name__ == "__main__":
    main()
