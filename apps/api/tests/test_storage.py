from __future__ import annotations

import io

import pytest

from hireflow.storage.factory import create_storage
from hireflow.storage.keys import resume_key, safe_filename
from hireflow.storage.local import LocalStorageAdapter


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("cv.pdf", "cv.pdf"),
        ("My CV (final).pdf", "My_CV_final_.pdf"),
        ("../../etc/passwd", "passwd"),
        ("C:\\Users\\ada\\cv.docx", "cv.docx"),
        ("...", "resume"),
        (None, "resume"),
    ],
)
def test_safe_filename(raw, expected):
    assert safe_filename(raw) == expected


def test_long_filename_keeps_extension():
    name = safe_filename("a" * 300 + ".pdf")

    assert name.endswith(".pdf")
    assert len(name) <= 200


def test_resume_key_layout():
    assert resume_key(42, "r-1", "../My CV.pdf") == "resumes/42/r-1/My_CV.pdf"


def test_put_and_read_back(storage: LocalStorageAdapter):
    uri = storage.put_file("resumes/1/r/cv.pdf", io.BytesIO(b"%PDF-1.4"))

    assert uri == "local://resumes/1/r/cv.pdf"
    assert storage.exists("resumes/1/r/cv.pdf")
    assert storage.get_bytes("/resumes/1/r/cv.pdf") == b"%PDF-1.4"
    assert storage.url_for("resumes/1/r/cv.pdf") == "http://files.test/resumes/1/r/cv.pdf"


def test_write_replaces_without_leaving_temp_files(storage: LocalStorageAdapter):
    storage.put_bytes("resumes/1/r/cv.pdf", b"first")
    storage.put_bytes("resumes/1/r/cv.pdf", b"second")

    assert storage.get_bytes("resumes/1/r/cv.pdf") == b"second"
    assert [p.name for p in (storage.root / "resumes" / "1" / "r").iterdir()] == ["cv.pdf"]


def test_failed_write_keeps_previous_content(storage: LocalStorageAdapter):
    class BrokenUpload(io.BytesIO):
        def read(self, size=-1):
            raise OSError("client went away")

    storage.put_bytes("resumes/1/r/cv.pdf", b"original")

    with pytest.raises(OSError):
        storage.put_file("resumes/1/r/cv.pdf", BrokenUpload())

    assert storage.get_bytes("resumes/1/r/cv.pdf") == b"original"
    assert [p.name for p in (storage.root / "resumes" / "1" / "r").iterdir()] == ["cv.pdf"]


@pytest.mark.parametrize("key", ["", "   ", "resumes/../../secret", "resumes/1/.upload-abc"])
def test_invalid_keys_are_rejected(storage: LocalStorageAdapter, key):
    with pytest.raises(ValueError):
        storage.get_bytes(key)


def test_missing_key(storage: LocalStorageAdapter):
    assert not storage.exists("resumes/1/r/none.pdf")
    storage.delete("resumes/1/r/none.pdf")
    with pytest.raises(FileNotFoundError):
        storage.get_bytes("resumes/1/r/none.pdf")


def test_url_falls_back_to_storage_uri(tmp_path):
    adapter = create_storage("local", tmp_path / "plain", public_base_url="")

    assert adapter.url_for("resumes/1/r/cv.pdf") == "local://resumes/1/r/cv.pdf"


def test_unsupported_backend(tmp_path):
    with pytest.raises(ValueError, match="unsupported storage backend: s3"):
        create_storage(" S3 ", tmp_path)
