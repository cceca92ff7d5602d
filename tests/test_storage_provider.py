"""
Tests for storage providers
"""
import json

import httpx
import pytest

from riskmate.services.storage_provider import (
    LocalDiskStorageProvider,
    SupabaseStorageProvider,
    get_storage_provider,
)


class TestLocalDiskStorage:
    """Filesystem provider"""

    def test_put_get_delete(self, tmp_path):
        provider = LocalDiskStorageProvider(base_path=str(tmp_path))

        key = provider.put("exports/org_1/pack.zip", b"zipdata", "application/zip")

        assert key == "exports/org_1/pack.zip"
        assert provider.get(key) == b"zipdata"
        assert provider.delete(key) is True
        assert provider.get(key) is None
        assert provider.delete(key) is False

    def test_traversal_stays_inside_base(self, tmp_path):
        provider = LocalDiskStorageProvider(base_path=str(tmp_path / "store"))

        key = provider.put("../../etc/passwd", b"nope")

        assert key == "etc/passwd"
        assert (tmp_path / "store" / "etc" / "passwd").exists()

    def test_empty_key_rejected(self, tmp_path):
        provider = LocalDiskStorageProvider(base_path=str(tmp_path))

        with pytest.raises(ValueError):
            provider.put("../", b"data")

    def test_url(self, tmp_path):
        provider = LocalDiskStorageProvider(base_path=str(tmp_path))

        assert provider.get_url("a/b.pdf") == "/storage/a/b.pdf"


class TestSupabaseStorage:
    """REST provider against a mock transport"""

    def make_provider(self, handler):
        client = httpx.Client(transport=httpx.MockTransport(handler))
        return SupabaseStorageProvider("https://proj.supabase.co/", "service-key", "exports", client=client)

    def test_put_sends_upsert(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = request.content
            return httpx.Response(200, json={"Key": "exports/a.pdf"})

        provider = self.make_provider(handler)

        assert provider.put("a.pdf", b"pdf", "application/pdf") == "a.pdf"
        assert seen["url"] == "https://proj.supabase.co/storage/v1/object/exports/a.pdf"
        assert seen["headers"]["x-upsert"] == "true"
        assert seen["headers"]["authorization"] == "Bearer service-key"
        assert seen["body"] == b"pdf"

    def test_get_missing_returns_none(self):
        provider = self.make_provider(lambda request: httpx.Response(400, json={"error": "not_found"}))

        assert provider.get("missing.pdf") is None

    def test_get_server_error_raises(self):
        provider = self.make_provider(lambda request: httpx.Response(500))

        with pytest.raises(httpx.HTTPStatusError):
            provider.get("a.pdf")

    def test_delete(self):
        def handler(request):
            assert request.method == "DELETE"
            assert json.loads(request.content) == {"prefixes": ["a.pdf"]}
            return httpx.Response(200, json=[{"name": "a.pdf"}])

        assert self.make_provider(handler).delete("a.pdf") is True

    def test_signed_url(self):
        def handler(request):
            assert json.loads(request.content) == {"expiresIn": 3600}
            return httpx.Response(200, json={"signedURL": "/object/sign/exports/a.pdf?token=abc"})

        url = self.make_provider(handler).get_url("a.pdf")

        assert url == "https://proj.supabase.co/storage/v1/object/sign/exports/a.pdf?token=abc"


class TestFactory:
    """get_storage_provider"""

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            get_storage_provider("s3")

    def test_supabase_requires_credentials(self, monkeypatch):
        from riskmate.config import config

        monkeypatch.setattr(config, "SUPABASE_URL", None)

        with pytest.raises(ValueError):
            get_storage_provider("supabase")
