"""Holdings lookups against the marketplace data source.

The data source is a PostgREST endpoint exposing one row per item with an
``owner``, a ``prevOwner`` (set while an item is escrowed by the
marketplace), a collection ``slug`` and a JSON ``values`` attribute map.
Items listed for sale are still counted for their previous owner.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from rolegate.core.errors import AssetProviderError
from rolegate.core.rules import AssetHolding, Exact, RuleField
from rolegate.core.settings import settings

logger = logging.getLogger(__name__)

HTTP_BAD_REQUEST = 400


class AssetProvider(Protocol):
    """Source of a holder's current inventory."""

    async def count_matching(
        self,
        address: str,
        slug: RuleField,
        attribute_key: RuleField,
        attribute_value: RuleField,
        min_items_hint: int | None = None,
    ) -> int: ...

    async def snapshot(self, address: str) -> list[AssetHolding]: ...


@dataclass(frozen=True)
class AssetSourceConfig:
    """Immutable configuration for the marketplace data source."""

    base_url: str | None
    api_key: str | None
    table: str
    escrow_address: str | None
    timeout_seconds: float


def load_asset_source_config() -> AssetSourceConfig:
    """Build configuration object from global settings."""
    return AssetSourceConfig(
        base_url=settings.asset_api_url,
        api_key=settings.asset_api_key,
        table=settings.asset_table,
        escrow_address=settings.marketplace_escrow_address,
        timeout_seconds=float(settings.asset_http_timeout_seconds),
    )


class MarketplaceAssetProvider:
    """HTTP client for the marketplace's PostgREST item table."""

    def __init__(self, config: AssetSourceConfig | None = None) -> None:
        self.config = config or load_asset_source_config()
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return bool(self.config.base_url)

    async def _ensure_client(self) -> httpx.AsyncClient:
        if not self.enabled:
            raise AssetProviderError("Asset data source is not configured")

        async with self._client_lock:
            if self._client is None:
                headers: dict[str, str] = {"Accept": "application/json"}
                if self.config.api_key:
                    headers["apikey"] = self.config.api_key
                    headers["Authorization"] = f"Bearer {self.config.api_key}"
                self._client = httpx.AsyncClient(
                    base_url=(self.config.base_url or "").rstrip("/"),
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    headers=headers,
                )
        return self._client

    def _owner_filter(self, address: str) -> str:
        owner = address.lower()
        if self.config.escrow_address:
            escrow = self.config.escrow_address.lower()
            return f"(owner.eq.{owner},and(owner.eq.{escrow},prevOwner.eq.{owner}))"
        return f"(owner.eq.{owner})"

    async def _select(self, params: Mapping[str, Any]) -> list[dict[str, Any]]:
        client = await self._ensure_client()
        path = f"/rest/v1/{self.config.table}"
        try:
            response = await client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise AssetProviderError(f"Asset data source request failed: {exc}") from exc

        if response.status_code >= HTTP_BAD_REQUEST:
            raise AssetProviderError(
                f"Asset data source responded with {response.status_code}",
            )
        payload = response.json()
        if not isinstance(payload, list):
            raise AssetProviderError("Asset data source returned an unexpected payload")
        return payload

    async def count_matching(
        self,
        address: str,
        slug: RuleField,
        attribute_key: RuleField,
        attribute_value: RuleField,
        min_items_hint: int | None = None,
    ) -> int:
        """Count the holder's items passing the given filters.

        With a positive ``min_items_hint`` the query stops after that many rows,
        so the result is capped at the hint. That is enough to decide
        ``count >= min_items``.
        """
        params: dict[str, Any] = {
            "select": "slug",
            "or": self._owner_filter(address),
        }
        if isinstance(slug, Exact):
            params["slug"] = f"eq.{slug.value}"
        if isinstance(attribute_key, Exact) and isinstance(attribute_value, Exact):
            params[f"values->>{attribute_key.value}"] = f"eq.{attribute_value.value}"
        if min_items_hint is not None and min_items_hint > 0:
            params["limit"] = min_items_hint

        rows = await self._select(params)
        logger.debug("Address %s has %d matching items for %s", address, len(rows), params)
        return len(rows)

    async def snapshot(self, address: str) -> list[AssetHolding]:
        """Return every item the address owns or has escrowed."""
        rows = await self._select({"select": "slug,values", "or": self._owner_filter(address)})
        holdings: list[AssetHolding] = []
        for row in rows:
            slug = row.get("slug")
            if not slug:
                continue
            values = row.get("values")
            holdings.append(
                AssetHolding(
                    collection_slug=str(slug),
                    attributes=values if isinstance(values, dict) else {},
                )
            )
        return holdings

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


class _AssetProviderSingleton:
    _instance: MarketplaceAssetProvider | None = None

    @classmethod
    def get_instance(cls) -> MarketplaceAssetProvider:
        if cls._instance is None:
            cls._instance = MarketplaceAssetProvider()
        return cls._instance


def get_asset_provider() -> AssetProvider:
    """Return the process-wide asset provider."""
    return _AssetProviderSingleton.get_instance()
