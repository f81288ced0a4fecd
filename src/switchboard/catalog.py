"""Read-mostly snapshot of the sellable service catalog.

Items are loaded in bulk from the catalog store and swapped in wholesale when
the time-to-live expires, so an analysis pass that grabbed a snapshot keeps
comparing against one consistent set of items even if a refresh lands
mid-call.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


@dataclass(frozen=True)
class CatalogItem:
    id: str
    code: str
    name: str
    keywords: frozenset = field(default_factory=frozenset)
    negative_keywords: frozenset = field(default_factory=frozenset)
    price_pence: int = 0
    embedding: Optional[tuple] = None
    active: bool = True
    description: str = ""

    def __post_init__(self):
        if self.price_pence < 0:
            raise ValueError(f"price_pence must be >= 0, got {self.price_pence} for {self.code}")

    @property
    def name_tokens(self) -> frozenset:
        return frozenset(self.name.lower().split())

    @classmethod
    def from_dict(cls, data: dict) -> "CatalogItem":
        """Build an item from a catalog store record.

        Accepts both the store's camelCase keys and snake_case. Embeddings may
        arrive as a list or as a JSON-encoded string; an unreadable embedding
        is dropped rather than failing the whole load.
        """
        embedding = data.get("embedding", data.get("embeddingVector"))
        if isinstance(embedding, str):
            try:
                embedding = json.loads(embedding)
            except json.JSONDecodeError:
                logger.warning("Unreadable embedding for catalog item %s", data.get("id"))
                embedding = None
        if embedding is not None:
            embedding = tuple(float(v) for v in embedding)

        keywords = data.get("keywords") or []
        negative = data.get("negative_keywords", data.get("negativeKeywords")) or []
        return cls(
            id=str(data["id"]),
            code=data.get("code", data.get("skuCode", "")),
            name=data.get("name", ""),
            keywords=frozenset(k.lower().strip() for k in keywords if k and k.strip()),
            negative_keywords=frozenset(k.lower().strip() for k in negative if k and k.strip()),
            price_pence=int(data.get("price_pence", data.get("pricePence", 0)) or 0),
            embedding=embedding,
            active=bool(data.get("active", data.get("isActive", True))),
            description=data.get("description") or "",
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "price_pence": self.price_pence,
        }


CatalogLoader = Callable[[], Awaitable[list[CatalogItem]]]


class CatalogCache:
    """TTL cache over a catalog loader with whole-snapshot replacement.

    ``clock`` is injected so refresh timing is deterministic in tests. A failed
    refresh keeps serving the previous snapshot (or an empty one if nothing
    has loaded yet) and retries on the next call.
    """

    def __init__(
        self,
        loader: CatalogLoader,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._items: tuple = ()
        self._loaded_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        return (self._clock() - self._loaded_at) >= self.ttl_seconds

    async def snapshot(self) -> tuple:
        """Return the current tuple of active items, refreshing if stale."""
        if not self.is_stale:
            return self._items
        async with self._lock:
            # Another caller may have refreshed while we waited on the lock
            if self.is_stale:
                await self._refresh()
        return self._items

    async def refresh(self) -> tuple:
        async with self._lock:
            await self._refresh()
        return self._items

    def invalidate(self) -> None:
        self._loaded_at = None

    async def _refresh(self) -> None:
        try:
            loaded = await self._loader()
        except Exception as e:
            logger.error(f"Catalog refresh failed, keeping {len(self._items)} cached items: {e}")
            return
        self._items = tuple(item for item in loaded if item.active)
        self._loaded_at = self._clock()
        logger.info("[Catalog] Loaded %d active items", len(self._items))


class HttpCatalogSource:
    """Fetches catalog records from the catalog store's HTTP endpoint."""

    def __init__(
        self,
        url: str,
        api_key: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        if client is not None:
            self._client = client
        else:
            headers = {"Accept": "application/json"}
            if api_key:
                headers["X-API-Key"] = api_key
            self._client = httpx.AsyncClient(headers=headers, timeout=self.timeout)

    async def close(self):
        await self._client.aclose()

    async def __call__(self) -> list[CatalogItem]:
        resp = await self._client.get(self.url)
        resp.raise_for_status()
        return parse_catalog_records(resp.json())


def parse_catalog_records(body) -> list[CatalogItem]:
    """Build items from a list of records, or from an ``{"items": [...]}`` body.

    A malformed record is logged and skipped, the rest still load.
    """
    records = body.get("items", []) if isinstance(body, dict) else body
    items = []
    for record in records:
        try:
            items.append(CatalogItem.from_dict(record))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping malformed catalog record: %s", e)
    return items


def load_catalog_file(path: str | Path) -> list[CatalogItem]:
    """Load catalog records from a JSON file (a list, or ``{"items": [...]}``)."""
    return parse_catalog_records(json.loads(Path(path).read_text()))


def static_loader(items: list[CatalogItem]) -> CatalogLoader:
    """Wrap a fixed item list as a loader (offline replay, tests)."""
    async def _load() -> list[CatalogItem]:
        return list(items)
    return _load
