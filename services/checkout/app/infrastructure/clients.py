"""HTTP clients for the catalog and customer services.

Both share one ``httpx.AsyncClient`` created at startup. Reads are retried on
transport errors, timeouts and 5xx answers; a 404 means "does not exist".
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import httpx

from app.domain.errors import UpstreamUnavailable
from app.domain.pricing import ProductSnapshot
from shared.core import get_logger

logger = get_logger(__name__)


class ProductCatalog(Protocol):
    async def fetch_product(self, product_id: str) -> Optional[ProductSnapshot]:
        ...


class CustomerDirectory(Protocol):
    async def fetch_created_at(self, user_id: str) -> Optional[datetime]:
        ...


class UpstreamService:
    def __init__(self, client: httpx.AsyncClient, base_url: str, name: str,
                 retries: int = 2, backoff_seconds: float = 0.2):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.name = name
        self.retries = max(0, retries)
        self.backoff_seconds = backoff_seconds

    async def get_document(self, path: str) -> Optional[Dict[str, Any]]:
        url = f"{self.base_url}{path}"
        last_error = None
        for attempt in range(1, self.retries + 2):
            try:
                response = await self.client.get(url)
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {e}"
            else:
                if response.status_code == 404:
                    return None
                if response.status_code < 500:
                    if response.status_code >= 400:
                        raise UpstreamUnavailable(f"{self.name} answered {response.status_code} for {url}")
                    try:
                        return response.json()
                    except ValueError as e:
                        raise UpstreamUnavailable(f"{self.name} returned invalid JSON for {url}") from e
                last_error = f"HTTP {response.status_code}"

            logger.warning(
                f"{self.name} request failed (attempt {attempt}): {last_error}",
                extra={'extra_fields': {'url': url, 'attempt': attempt}}
            )
            if attempt <= self.retries:
                await asyncio.sleep(self.backoff_seconds * attempt)

        raise UpstreamUnavailable(f"{self.name} unavailable for {url}: {last_error}")


class HttpProductCatalog:
    def __init__(self, upstream: UpstreamService):
        self.upstream = upstream

    async def fetch_product(self, product_id: str) -> Optional[ProductSnapshot]:
        doc = await self.upstream.get_document(f"/products/{product_id}")
        if doc is None:
            return None
        return ProductSnapshot.from_document(product_id, doc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Read ISO-8601 strings, epoch seconds/milliseconds or ``{"_seconds": n}`` objects."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dict):
        value = value.get("_seconds", value.get("seconds"))
        if value is None:
            return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


class HttpCustomerDirectory:
    def __init__(self, upstream: UpstreamService):
        self.upstream = upstream

    async def fetch_created_at(self, user_id: str) -> Optional[datetime]:
        doc = await self.upstream.get_document(f"/customers/{user_id}")
        if doc is None:
            return None
        return parse_timestamp(doc.get("createdAt", doc.get("created_at")))
