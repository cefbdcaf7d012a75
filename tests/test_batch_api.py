from __future__ import annotations

import io
import json
import zipfile
from datetime import datetime, timedelta, timezone

from pypdf import PdfReader

from builders import batch_files, pdf_bytes
from facturx_batch.application import get_batch_service
from facturx_batch.domain import Job
from facturx_batch.infrastructure import extract_facturx_xml

USER = {"X-User-Id": "user-1", "X-Api-Key-Id": "key-1", "User-Agent": "pytest-client"}
OTHER_USER = {"X-User-Id": "user-2"}


def _post_batch(client, archive: bytes, manifest: bytes, headers=USER, manifest_name="metadata.csv"):
    return client.post(
        "/api/invoices/batch",
        files={
            "invoices": ("invoices.zip", archive, "application/zip"),
            "metadata": (manifest_name, manifest, "text/csv"),
        },
        headers=headers,
    )


def _pending_job(job_id: str = "pending-job", user_id: str = "user-1") -> Job:
    service = get_batch_service()
    return service.jobs.create(Job(public_id=job_id, user_id=user_id, total_items=2, total_cost_cents=20))


def _invoice_payload(**overrides) -> dict:
    payload = {
        "invoice_number": "FA-2024-042",
        "invoice_date": "2024-03-15",
        "seller_name": "Atelier Martin SARL",
        "seller_siret": "73282932000074",
        "seller_vat_number": "FR40732829320",
        "seller_address": {"street": "1 rue de la Paix", "zip_code": "75002", "city": "Paris", "country_code": "fr"},
        "buyer_name": "Client SA",
        "total_ht": "100.00",
        "total_tva": "20.00",
        "total_ttc": "120.00",
    }
    payload.update(overrides)
    return payload


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": "0.1.0"}


def test_batch_submission_status_and_download(client):
    archive, manifest = batch_files(3)

    response = _post_batch(client, archive, manifest)
    assert response.status_code == 202
    receipt = response.json()
    job_id = receipt["job_id"]
    assert receipt["status"] == "pending"
    assert receipt["estimated_items"] == 1
    assert receipt["status_url"] == f"/api/invoices/batch/{job_id}"

    status = client.get(receipt["status_url"], headers=USER)
    assert status.status_code == 200
    body = status.json()
    assert body["status"] == "completed"
    assert body["total_items"] == 3
    assert body["processed_count"] == 3
    assert body["failed_count"] == 0
    assert body["progress_percent"] == 100
    assert body["total_cost"] == "0.30 EUR"
    assert body["download_available"] is True
    assert body["item_errors"] is None
    assert "id" not in body

    download = client.get(f"/api/invoices/batch/{job_id}/download", headers=USER)
    assert download.status_code == 200
    assert download.headers["content-type"] == "application/zip"
    with zipfile.ZipFile(io.BytesIO(download.content)) as output:
        assert len(output.namelist()) == 3

    job = get_batch_service().jobs.get(job_id)
    assert job.user_agent == "pytest-client"
    assert job.api_key_id == "key-1"


def test_partial_batch_reports_item_errors(client):
    archive, manifest = batch_files(3, missing=1)

    job_id = _post_batch(client, archive, manifest).json()["job_id"]
    body = client.get(f"/api/invoices/batch/{job_id}", headers=USER).json()

    assert body["status"] == "completed"
    assert (body["processed_count"], body["failed_count"]) == (2, 1)
    assert body["item_errors"][0]["filename"] == "invoice-3.pdf"


def test_missing_caller_identity_is_rejected(client):
    archive, manifest = batch_files(1)

    response = _post_batch(client, archive, manifest, headers={})

    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHENTICATED"


def test_missing_and_invalid_uploads_create_no_job(client, batches_root):
    archive, manifest = batch_files(1)

    missing = client.post(
        "/api/invoices/batch",
        files={"invoices": ("invoices.zip", archive, "application/zip")},
        headers=USER,
    )
    assert missing.status_code == 400
    assert missing.json()["code"] == "MISSING_MANIFEST"

    not_zip = _post_batch(client, b"plain text", manifest)
    assert not_zip.status_code == 400
    assert not_zip.json()["code"] == "INVALID_ARCHIVE"

    wrong_manifest = _post_batch(client, archive, manifest, manifest_name="metadata.pdf")
    assert wrong_manifest.status_code == 400
    assert wrong_manifest.json()["code"] == "INVALID_MANIFEST"

    listing = client.get("/api/invoices/batch", headers=USER).json()
    assert listing["meta"]["total"] == 0
    assert not batches_root.exists() or not any(batches_root.iterdir())


def test_oversized_archive_is_rejected(client, monkeypatch):
    monkeypatch.setenv("MAX_ARCHIVE_MB", "0")
    archive, manifest = batch_files(1)

    response = _post_batch(client, archive, manifest)

    assert response.status_code == 413
    assert response.json()["code"] == "ARCHIVE_TOO_LARGE"


def test_foreign_and_unknown_jobs_are_not_found(client):
    archive, manifest = batch_files(1)
    job_id = _post_batch(client, archive, manifest).json()["job_id"]

    for path in (f"/api/invoices/batch/{job_id}", f"/api/invoices/batch/{job_id}/download"):
        response = client.get(path, headers=OTHER_USER)
        assert response.status_code == 404
        assert response.json()["code"] == "JOB_NOT_FOUND"

    assert client.get("/api/invoices/batch/unknown", headers=USER).status_code == 404


def test_download_before_completion_is_a_conflict(client):
    _pending_job()

    response = client.get("/api/invoices/batch/pending-job/download", headers=USER)

    assert response.status_code == 409
    assert response.json() == {
        "error": "The batch is not completed yet",
        "code": "JOB_NOT_COMPLETED",
        "status": "pending",
        "progress": 0,
    }


def test_expired_download_is_refused(client):
    archive, manifest = batch_files(1)
    job_id = _post_batch(client, archive, manifest).json()["job_id"]
    service = get_batch_service()
    job = service.jobs.get(job_id)
    job.download_expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    service.jobs.save(job)

    response = client.get(f"/api/invoices/batch/{job_id}/download", headers=USER)

    assert response.status_code == 410
    body = response.json()
    assert body["code"] == "DOWNLOAD_EXPIRED"
    assert body["expired_at"] == job.download_expires_at.isoformat()
    assert client.get(f"/api/invoices/batch/{job_id}", headers=USER).json()["download_available"] is False


def test_missing_output_archive_is_not_found(client):
    archive, manifest = batch_files(1)
    job_id = _post_batch(client, archive, manifest).json()["job_id"]
    service = get_batch_service()
    job = service.jobs.get(job_id)
    job.output_archive_path = None
    service.jobs.save(job)

    response = client.get(f"/api/invoices/batch/{job_id}/download", headers=USER)

    assert response.status_code == 404
    assert response.json()["code"] == "OUTPUT_NOT_FOUND"


def test_cancel_pending_job_then_refuse_second_cancel(client):
    _pending_job()

    first = client.delete("/api/invoices/batch/pending-job", headers=USER)
    assert first.status_code == 200
    assert first.json()["status"] == "cancelled"

    second = client.delete("/api/invoices/batch/pending-job", headers=USER)
    assert second.status_code == 409
    assert second.json()["code"] == "CANNOT_CANCEL"
    assert second.json()["status"] == "cancelled"


def test_completed_job_cannot_be_cancelled(client):
    archive, manifest = batch_files(1)
    job_id = _post_batch(client, archive, manifest).json()["job_id"]

    response = client.delete(f"/api/invoices/batch/{job_id}", headers=USER)

    assert response.status_code == 409
    assert response.json()["status"] == "completed"


def test_listing_is_paginated_and_scoped_to_the_caller(client):
    for index in range(3):
        _pending_job(f"job-{index}")
    _pending_job("someone-else", user_id="user-2")

    first_page = client.get("/api/invoices/batch", params={"page": 1, "limit": 2}, headers=USER).json()
    second_page = client.get("/api/invoices/batch", params={"page": 2, "limit": 2}, headers=USER).json()

    assert first_page["meta"] == {"total": 3, "per_page": 2, "current_page": 1, "last_page": 2}
    assert len(first_page["data"]) == 2
    assert len(second_page["data"]) == 1
    listed = {item["job_id"] for item in first_page["data"] + second_page["data"]}
    assert listed == {"job-0", "job-1", "job-2"}

    capped = client.get("/api/invoices/batch", params={"limit": 500}, headers=USER).json()
    assert capped["meta"]["per_page"] == 100


def test_single_invoice_conversion(client):
    response = client.post(
        "/api/invoices/facturx",
        files={"pdf": ("source.pdf", pdf_bytes(), "application/pdf")},
        data={"invoice": json.dumps(_invoice_payload())},
        headers=USER,
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert 'filename="facturx-FA-2024-042.pdf"' in response.headers["content-disposition"]
    assert extract_facturx_xml(response.content) is not None
    assert len(PdfReader(io.BytesIO(response.content)).pages) == 1

    service = get_batch_service()
    assert service.ledger.get_account("user-1").invoices_used == 1
    (entry,) = service.usage.list_for_user("user-1")
    assert (entry.kind, entry.status, entry.invoice_count) == ("single", "success", 1)


def test_single_invoice_validation_errors(client):
    response = client.post(
        "/api/invoices/facturx",
        files={"pdf": ("source.pdf", pdf_bytes(), "application/pdf")},
        data={"invoice": json.dumps(_invoice_payload(seller_siret="123", total_ttc="abc"))},
        headers=USER,
    )

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert {error["field"] for error in body["errors"]} == {"seller_siret", "total_ttc"}


def test_single_invoice_rejects_bad_inputs(client):
    not_json = client.post(
        "/api/invoices/facturx",
        files={"pdf": ("source.pdf", pdf_bytes(), "application/pdf")},
        data={"invoice": "{not json"},
        headers=USER,
    )
    assert not_json.status_code == 400
    assert not_json.json()["code"] == "INVALID_INVOICE"

    not_pdf = client.post(
        "/api/invoices/facturx",
        files={"pdf": ("source.pdf", b"GIF89a", "application/pdf")},
        data={"invoice": json.dumps(_invoice_payload())},
        headers=USER,
    )
    assert not_pdf.status_code == 400
    assert not_pdf.json()["code"] == "INVALID_PDF"

    no_pdf = client.post(
        "/api/invoices/facturx",
        data={"invoice": json.dumps(_invoice_payload())},
        headers=USER,
    )
    assert no_pdf.status_code == 400
    assert no_pdf.json()["code"] == "MISSING_PDF"


def test_single_invoice_insufficient_credit(client):
    get_batch_service().ledger.open_account("user-1", plan="pro", credit_balance_cents=0)

    response = client.post(
        "/api/invoices/facturx",
        files={"pdf": ("source.pdf", pdf_bytes(), "application/pdf")},
        data={"invoice": json.dumps(_invoice_payload())},
        headers=USER,
    )

    assert response.status_code == 402
    assert response.json()["code"] == "INSUFFICIENT_CREDIT"
