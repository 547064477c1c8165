"""Product catalog fetching with a short-lived cache."""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class CatalogCache:
    """Single cached catalog value with a staleness window."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.value: Optional[List[Dict[str, Any]]] = None
        self.fetched_at: Optional[float] = None

    def is_fresh(self) -> bool:
        if self.value is None or self.fetched_at is None:
            return False
        return self.clock() - self.fetched_at < self.ttl_seconds

    def store(self, value: List[Dict[str, Any]]) -> None:
        self.value = value
        self.fetched_at = self.clock()

    def clear(self) -> None:
        self.value = None
        self.fetched_at = None


class ProductCatalog:
    def __init__(self, http_client: httpx.AsyncClient, url: str, cache: CatalogCache):
        self.http_client = http_client
        self.url = url
        self.cache = cache

    async def get_products(self) -> List[Dict[str, Any]]:
        """Return the product list, or an empty list if the catalog is unreachable."""
        if self.cache.is_fresh() and self.cache.value is not None:
            return self.cache.value

        try:
            response = await self.fetch_raw()
            response.raise_for_status()
            products = response.json().get("product")
        except (httpx.HTTPError, ValueError, AttributeError) as exc:
            logger.error("Error fetching product catalog: %s", exc)
            return []

        if not isinstance(products, list):
            logger.error("Product catalog has no 'product' list")
            return []

        products = [product for product in products if isinstance(product, dict)]
        self.cache.store(products)
        return products

    async def fetch_raw(self) -> httpx.Response:
        return await self.http_client.get(self.url)
