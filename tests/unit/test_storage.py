"""Tests for the document store client."""

import base64
import hashlib

import httpx
import pytest
from pydantic import ValidationError as SettingsError

from certanchor.common.exceptions import UploadFailure
from certanchor.storage.client import DocumentStoreClient, local_content_address
from certanchor.storage.gateways import GatewayStrategy, looks_like_document

from conftest import make_settings

PDF = b"%PDF-1.7\n" + b"x" * 4096
CHALLENGE = b"<!DOCTYPE html><html><title>Checking your browser</title>" + b" " * 4096
ADDRESS = "bafkreigh2akiscaildcqabsyg3dfr6chu3fgpregiymsck7e7aqa4s52zy"


def _store(tmp_path, handler, **overrides) -> DocumentStoreClient:
    settings = make_settings(
        tmp_path,
        storage_gateways=[
            "https://primary.example/ipfs/{address}",
            "https://secondary.example/ipfs/{address}",
            "https://{address}.ipfs.tertiary.example",
        ],
        **overrides,
    )
    return DocumentStoreClient(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestLocalContentAddress:
    def test_cidv1_shape(self):
        address = local_content_address(PDF)
        assert address.startswith("bafkrei")
        assert address == address.lower()
        assert len(address) == 59

    def test_encodes_sha256(self):
        address = local_content_address(PDF)
        raw = base64.b32decode(address[1:].upper() + "=" * (-len(address[1:]) % 8))
        assert raw[:4] == bytes([0x01, 0x55, 0x12, 0x20])
        assert raw[4:] == hashlib.sha256(PDF).digest()

    def test_deterministic(self):
        assert local_content_address(PDF) == local_content_address(PDF)
        assert local_content_address(PDF) != local_content_address(PDF + b"!")


class TestLooksLikeDocument:
    def test_accepts_pdf(self):
        assert looks_like_document(PDF)

    def test_rejects_html(self):
        assert not looks_like_document(CHALLENGE)

    def test_rejects_short_pdf(self):
        assert not looks_like_document(b"%PDF-1.7\n")


class TestGatewayStrategy:
    def test_path_template(self):
        assert GatewayStrategy("https://ipfs.io/ipfs/{address}").url_for("bafy") == "https://ipfs.io/ipfs/bafy"

    def test_subdomain_template(self):
        assert GatewayStrategy("https://{address}.ipfs.dweb.link").url_for("bafy") == "https://bafy.ipfs.dweb.link"

    def test_bare_prefix(self):
        assert GatewayStrategy("https://gw.example/ipfs/").url_for("bafy") == "https://gw.example/ipfs/bafy"

    def test_name_is_host(self):
        assert GatewayStrategy("https://ipfs.io/ipfs/{address}").name == "ipfs.io"


class TestUpload:
    async def test_unconfigured_returns_mock(self, tmp_path):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        store = _store(tmp_path, handler)
        stored = await store.upload(PDF, "Certificate_CERT20260001.pdf")
        assert stored.address == local_content_address(PDF)
        assert stored.pinned is False
        assert stored.size == len(PDF)
        assert stored.url == f"https://primary.example/ipfs/{stored.address}"
        assert calls == []

    async def test_empty_document_rejected(self, tmp_path):
        store = _store(tmp_path, lambda r: httpx.Response(200))
        with pytest.raises(UploadFailure):
            await store.upload(b"", "empty.pdf")

    async def test_pinned(self, tmp_path):
        def handler(request):
            if request.url.path.endswith("/data/testAuthentication"):
                assert request.headers["pinata_api_key"] == "key"
                return httpx.Response(200, json={"message": "Congratulations!"})
            if request.url.path.endswith("/pinning/pinFileToIPFS"):
                assert b"Certificate_CERT20260001.pdf" in request.content
                return httpx.Response(200, json={"IpfsHash": ADDRESS, "PinSize": len(PDF)})
            return httpx.Response(404)

        store = _store(tmp_path, handler, pinata_api_key="key", pinata_secret_key="secret")
        stored = await store.upload(PDF, "Certificate_CERT20260001.pdf")
        assert stored.pinned is True
        assert stored.address == ADDRESS
        assert stored.url.endswith(ADDRESS)

    async def test_failed_authentication_falls_back_to_mock(self, tmp_path):
        store = _store(
            tmp_path, lambda r: httpx.Response(401, json={"error": "invalid"}),
            pinata_api_key="key", pinata_secret_key="bad",
        )
        stored = await store.upload(PDF, "doc.pdf")
        assert stored.pinned is False

    async def test_pin_error_raises(self, tmp_path):
        def handler(request):
            if request.url.path.endswith("/data/testAuthentication"):
                return httpx.Response(200, json={})
            return httpx.Response(500, text="pinning backend down")

        store = _store(tmp_path, handler, pinata_api_key="key", pinata_secret_key="secret")
        with pytest.raises(UploadFailure):
            await store.upload(PDF, "doc.pdf")

    async def test_pin_transport_error_raises(self, tmp_path):
        def handler(request):
            if request.url.path.endswith("/data/testAuthentication"):
                return httpx.Response(200, json={})
            raise httpx.ConnectError("connection refused")

        store = _store(tmp_path, handler, pinata_api_key="key", pinata_secret_key="secret")
        with pytest.raises(UploadFailure):
            await store.upload(PDF, "doc.pdf")


class TestRetrieve:
    async def test_primary_serves_document(self, tmp_path):
        store = _store(tmp_path, lambda r: httpx.Response(200, content=PDF))
        result = await store.retrieve(ADDRESS)
        assert result.found
        assert result.url == f"https://primary.example/ipfs/{ADDRESS}"
        assert len(result.attempts) == 1

    async def test_challenge_page_falls_through(self, tmp_path):
        def handler(request):
            if request.url.host == "primary.example":
                return httpx.Response(200, content=CHALLENGE, headers={"content-type": "text/html"})
            return httpx.Response(200, content=PDF)

        store = _store(tmp_path, handler)
        result = await store.retrieve(ADDRESS)
        assert result.found
        assert result.data == PDF
        assert result.url == f"https://secondary.example/ipfs/{ADDRESS}"
        assert "not a document" in result.attempts[0].error

    async def test_errors_and_timeouts_fall_through(self, tmp_path):
        def handler(request):
            if request.url.host == "primary.example":
                raise httpx.ReadTimeout("slow")
            if request.url.host == "secondary.example":
                return httpx.Response(502)
            return httpx.Response(200, content=PDF)

        store = _store(tmp_path, handler)
        result = await store.retrieve(ADDRESS)
        assert result.found
        assert result.url == f"https://{ADDRESS}.ipfs.tertiary.example"
        assert [a.error for a in result.attempts[:2]] == ["timeout", "HTTP 502"]

    async def test_all_fail_returns_first_url(self, tmp_path):
        store = _store(tmp_path, lambda r: httpx.Response(200, content=CHALLENGE))
        result = await store.retrieve(ADDRESS)
        assert not result.found
        assert result.data is None
        assert result.url == f"https://primary.example/ipfs/{ADDRESS}"
        assert len(result.attempts) == 3


class TestGatewaySettings:
    def test_empty_gateway_list_rejected(self, tmp_path):
        with pytest.raises(SettingsError, match="at least one storage gateway"):
            make_settings(tmp_path, storage_gateways=[])

    def test_blank_entries_dropped(self, tmp_path):
        settings = make_settings(tmp_path, storage_gateways=["", " https://g.example/ipfs/{address} "])
        assert settings.storage_gateways == ["https://g.example/ipfs/{address}"]
