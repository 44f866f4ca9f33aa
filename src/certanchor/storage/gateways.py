"""Read-gateway strategies for content-addressed retrieval.

Each configured gateway becomes a ``GatewayStrategy``; ``first_accepted``
is the single retry combinator that walks them in order and stops at the
first one whose bytes pass the document check.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayStrategy:
    """One read gateway, described by a URL template with ``{address}``."""

    template: str

    def url_for(self, address: str) -> str:
        if "{address}" in self.template:
            return self.template.format(address=address)
        return self.template.rstrip("/") + "/" + address

    @property
    def name(self) -> str:
        return httpx.URL(self.template.replace("{address}", "cid")).host


@dataclass(frozen=True)
class FetchOutcome:
    """Typed result of one gateway attempt."""

    gateway: str
    url: str
    data: Optional[bytes] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.data is not None and self.error is None


def looks_like_document(data: bytes, magic: bytes = b"%PDF", min_size: int = 1000) -> bool:
    """Reject challenge pages and truncated bodies posing as documents."""
    return len(data) > min_size and data.startswith(magic)


async def fetch_document(
    client: httpx.AsyncClient,
    strategy: GatewayStrategy,
    address: str,
    timeout: float,
    magic: bytes = b"%PDF",
    min_size: int = 1000,
) -> FetchOutcome:
    url = strategy.url_for(address)
    try:
        resp = await client.get(url, timeout=timeout, follow_redirects=True)
    except httpx.TimeoutException:
        return FetchOutcome(strategy.name, url, error="timeout")
    except httpx.HTTPError as exc:
        return FetchOutcome(strategy.name, url, error=str(exc) or type(exc).__name__)

    if resp.status_code != 200:
        return FetchOutcome(strategy.name, url, error=f"HTTP {resp.status_code}")
    body = resp.content
    if not looks_like_document(body, magic, min_size):
        content_type = resp.headers.get("content-type", "unknown")
        return FetchOutcome(
            strategy.name, url,
            error=f"not a document ({content_type}, {len(body)} bytes)",
        )
    return FetchOutcome(strategy.name, url, data=body)


async def first_accepted(
    strategies: Iterable[GatewayStrategy],
    attempt: Callable[[GatewayStrategy], Awaitable[FetchOutcome]],
) -> tuple[Optional[FetchOutcome], list[FetchOutcome]]:
    """Try strategies in order; return the first success plus every attempt."""
    attempts: list[FetchOutcome] = []
    for strategy in strategies:
        outcome = await attempt(strategy)
        attempts.append(outcome)
        if outcome.ok:
            return outcome, attempts
        logger.warning("Gateway %s rejected: %s", outcome.url, outcome.error)
    return None, attempts
