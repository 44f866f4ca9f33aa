"""Content-addressed document storage: Pinata pinning plus gateway reads."""

import base64
import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import httpx

from certanchor.common.config import CertAnchorSettings
from certanchor.common.exceptions import UploadFailure
from certanchor.storage.gateways import (
    FetchOutcome,
    GatewayStrategy,
    fetch_document,
    first_accepted,
)

logger = logging.getLogger(__name__)

PINATA_GATEWAY = "https://gateway.pinata.cloud/ipfs/"

# CIDv1 prefix: version 1, raw codec (0x55), sha2-256 (0x12), 32-byte digest.
_CID_RAW_SHA256 = bytes([0x01, 0x55, 0x12, 0x20])


@dataclass(frozen=True)
class StoredDocument:
    address: str
    url: str
    size: int
    pinned: bool


@dataclass
class RetrievedDocument:
    address: str
    url: str
    data: Optional[bytes] = None
    attempts: list[FetchOutcome] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.data is not None


def local_content_address(data: bytes) -> str:
    """CIDv1 (base32, raw leaf) for bytes that were never pinned anywhere."""
    digest = hashlib.sha256(data).digest()
    encoded = base64.b32encode(_CID_RAW_SHA256 + digest).decode("ascii")
    return "b" + encoded.rstrip("=").lower()


class DocumentStoreClient:
    """Uploads rendered documents and retrieves them through read gateways."""

    def __init__(
        self,
        settings: CertAnchorSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        auth_ttl: float = 300.0,
    ):
        self.settings = settings
        self._http_client = http_client
        self._auth_ttl = auth_ttl
        self._auth_checked: Optional[tuple[bool, float]] = None

    def _get_http_client(self) -> httpx.AsyncClient:
        """Lazy-init httpx.AsyncClient."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _pinata_headers(self) -> dict[str, str]:
        return {
            "pinata_api_key": self.settings.pinata_api_key,
            "pinata_secret_api_key": self.settings.pinata_secret_key,
        }

    # ── Upload ──

    async def pinning_available(self) -> bool:
        """True when Pinata credentials are configured and authenticate."""
        if not self.settings.pinning_configured:
            return False
        now = time.monotonic()
        if self._auth_checked and now - self._auth_checked[1] < self._auth_ttl:
            return self._auth_checked[0]

        url = f"{self.settings.pinata_api_url.rstrip('/')}/data/testAuthentication"
        try:
            resp = await self._get_http_client().get(
                url, headers=self._pinata_headers(), timeout=self.settings.storage_timeout,
            )
            ok = resp.status_code == 200
            if not ok:
                logger.warning("Pinata authentication failed: HTTP %s", resp.status_code)
        except httpx.HTTPError as exc:
            logger.warning("Pinata authentication check failed: %s", exc)
            ok = False
        self._auth_checked = (ok, now)
        return ok

    async def upload(self, data: bytes, name: str) -> StoredDocument:
        """Store a document; raises UploadFailure when pinning is attempted and fails."""
        if not data:
            raise UploadFailure(f"Refusing to upload empty document {name}")

        if not await self.pinning_available():
            address = local_content_address(data)
            logger.warning(
                "No pinning service available; %s has no persistent off-chain copy (%s)",
                name, address,
            )
            return StoredDocument(
                address=address,
                url=GatewayStrategy(self.settings.storage_gateways[0]).url_for(address),
                size=len(data),
                pinned=False,
            )
        return await self._pin(data, name)

    async def _pin(self, data: bytes, name: str) -> StoredDocument:
        url = f"{self.settings.pinata_api_url.rstrip('/')}/pinning/pinFileToIPFS"
        metadata = {
            "name": name,
            "keyvalues": {
                "type": "certificate",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        }
        try:
            resp = await self._get_http_client().post(
                url,
                headers=self._pinata_headers(),
                files={"file": (name, data, "application/pdf")},
                data={"pinataMetadata": json.dumps(metadata)},
                timeout=self.settings.storage_timeout,
            )
        except httpx.TimeoutException as exc:
            raise UploadFailure(f"Pinata upload of {name} timed out") from exc
        except httpx.HTTPError as exc:
            raise UploadFailure(f"Pinata upload of {name} failed: {exc}") from exc

        if resp.status_code != 200:
            raise UploadFailure(
                f"Pinata upload of {name} failed: HTTP {resp.status_code} {resp.text[:200]}"
            )
        try:
            body = resp.json()
            address = body["IpfsHash"]
        except (ValueError, KeyError) as exc:
            raise UploadFailure(f"Unexpected Pinata response for {name}") from exc

        logger.info("Pinned %s -> %s", name, address)
        return StoredDocument(
            address=address,
            url=f"{PINATA_GATEWAY}{address}",
            size=int(body.get("PinSize", len(data))),
            pinned=True,
        )

    # ── Retrieval ──

    def gateway_strategies(self) -> list[GatewayStrategy]:
        return [GatewayStrategy(t) for t in self.settings.storage_gateways]

    async def retrieve(self, address: str) -> RetrievedDocument:
        """Walk the gateways; fall back to the first URL without bytes."""
        strategies = self.gateway_strategies()
        client = self._get_http_client()

        async def attempt(strategy: GatewayStrategy) -> FetchOutcome:
            return await fetch_document(
                client,
                strategy,
                address,
                timeout=self.settings.storage_timeout,
                magic=self.settings.document_magic_bytes,
                min_size=self.settings.document_min_size,
            )

        accepted, attempts = await first_accepted(strategies, attempt)
        if accepted is not None:
            logger.info("Retrieved %s from %s", address, accepted.url)
            return RetrievedDocument(
                address=address, url=accepted.url, data=accepted.data, attempts=attempts,
            )

        logger.warning("All gateways failed for %s, returning URL only", address)
        return RetrievedDocument(
            address=address, url=strategies[0].url_for(address), attempts=attempts,
        )
