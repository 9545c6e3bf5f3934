"""
Tests for the blob storage client that need no Azure account.

Usage:
    pytest backend/tests/test_storage.py -v
"""

import asyncio

import pytest

from rars.errors import UpstreamFailure, ValidationFailure
from rars.storage import MAX_FILE_SIZE_BYTES, DocumentStorage, safe_file_name


@pytest.fixture
def unconfigured(monkeypatch):
    monkeypatch.delenv("AZURE_STORAGE_CONNECTION_STRING", raising=False)
    calls = []

    async def remote_call(self, *args):
        calls.append(args)

    monkeypatch.setattr(DocumentStorage, "_upload", remote_call)
    monkeypatch.setattr(DocumentStorage, "_delete", remote_call)
    return DocumentStorage(), calls


class TestUnconfiguredStorage:
    def test_upload_fails_before_any_remote_attempt(self, unconfigured):
        storage, calls = unconfigured
        with pytest.raises(UpstreamFailure, match="not configured"):
            asyncio.run(storage.upload("a/b.pdf", b"%PDF", "application/pdf"))
        assert calls == []

    def test_delete_fails_before_any_remote_attempt(self, unconfigured):
        storage, calls = unconfigured
        with pytest.raises(UpstreamFailure):
            asyncio.run(storage.delete("a/b.pdf"))
        assert calls == []

    def test_oversized_file_is_a_validation_error(self, unconfigured):
        storage, calls = unconfigured
        with pytest.raises(ValidationFailure):
            asyncio.run(
                storage.upload("a/b.pdf", b"x" * (MAX_FILE_SIZE_BYTES + 1), "application/pdf")
            )
        assert calls == []


def test_safe_file_name():
    assert safe_file_name("../etc/passwd") == ".._etc_passwd"
    assert safe_file_name("   ") == "file"
