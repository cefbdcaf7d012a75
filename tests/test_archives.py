from __future__ import annotations

import zipfile

import pytest

from builders import write_zip
from facturx_batch.core.archives import extract_archive, locate_entry, pack_directory
from facturx_batch.core.errors import ExtractionError


def test_extract_preserves_relative_paths(tmp_path):
    archive = write_zip(
        tmp_path / "in.zip",
        {"top.pdf": b"%PDF-1", "2024/march/nested.pdf": b"%PDF-2"},
    )
    destination = tmp_path / "input"

    extract_archive(archive, destination)

    assert (destination / "top.pdf").read_bytes() == b"%PDF-1"
    assert (destination / "2024" / "march" / "nested.pdf").read_bytes() == b"%PDF-2"


def test_extract_keeps_members_inside_destination(tmp_path):
    archive = tmp_path / "evil.zip"
    with zipfile.ZipFile(archive, "w") as handle:
        handle.writestr("../escape.pdf", b"%PDF-x")
    destination = tmp_path / "input"

    extract_archive(archive, destination)

    assert not (tmp_path / "escape.pdf").exists()
    assert (destination / "escape.pdf").exists()


def test_extract_rejects_corrupt_archive(tmp_path):
    archive = tmp_path / "broken.zip"
    archive.write_bytes(b"PK\x03\x04 definitely not a zip")

    with pytest.raises(ExtractionError):
        extract_archive(archive, tmp_path / "input")


def test_locate_prefers_exact_relative_path(tmp_path):
    (tmp_path / "a").mkdir()
    (tmp_path / "b").mkdir()
    (tmp_path / "a" / "doc.pdf").write_bytes(b"a")
    (tmp_path / "b" / "doc.pdf").write_bytes(b"b")

    assert locate_entry(tmp_path, "b/doc.pdf") == tmp_path / "b" / "doc.pdf"


def test_locate_falls_back_to_base_name_search(tmp_path):
    (tmp_path / "deep" / "er").mkdir(parents=True)
    (tmp_path / "deep" / "er" / "invoice.pdf").write_bytes(b"x")

    assert locate_entry(tmp_path, "invoice.pdf") == tmp_path / "deep" / "er" / "invoice.pdf"
    assert locate_entry(tmp_path, "elsewhere/invoice.pdf") == tmp_path / "deep" / "er" / "invoice.pdf"


def test_locate_duplicate_base_names_returns_one_of_them(tmp_path):
    for folder in ("x", "y"):
        (tmp_path / folder).mkdir()
        (tmp_path / folder / "dup.pdf").write_bytes(folder.encode())

    found = locate_entry(tmp_path, "dup.pdf")

    assert found in {tmp_path / "x" / "dup.pdf", tmp_path / "y" / "dup.pdf"}


def test_locate_missing_and_escaping_targets(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    (tmp_path / "outside.pdf").write_bytes(b"x")

    assert locate_entry(root, "nothing.pdf") is None
    assert locate_entry(root, "../outside.pdf") is None
    assert locate_entry(root, "") is None


def test_pack_directory_flattens_regular_files(tmp_path):
    source = tmp_path / "output"
    (source / "sub").mkdir(parents=True)
    (source / "one.pdf").write_bytes(b"1" * 1000)
    (source / "two.pdf").write_bytes(b"2" * 1000)
    (source / "sub" / "ignored.pdf").write_bytes(b"3")
    target = tmp_path / "result.zip"

    size = pack_directory(source, target)

    assert size == target.stat().st_size
    with zipfile.ZipFile(target) as archive:
        assert sorted(archive.namelist()) == ["one.pdf", "two.pdf"]
        assert all(info.compress_type == zipfile.ZIP_DEFLATED for info in archive.infolist())
