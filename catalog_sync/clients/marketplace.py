"""
Marketplace API client.

Thin wrapper over the marketplace REST endpoints used by the
reconciliation pipeline: item read/update/create, description, seller
item search and the current-user lookup.
"""

import logging
from typing import Any, Dict, List, Optional

from catalog_sync.executor import RequestExecutor

logger = logging.getLogger(__name__)

SEARCH_PAGE_SIZE = 50
SEARCH_MAX_PAGES = 4
MULTIGET_SIZE = 10


class MarketplaceClient:
    """
    Client for the marketplace seller API.

    Args:
        executor: Retrying request executor
        base_url: Marketplace API root
        access_token: Bearer token
        user_id: Seller id; looked up through ``/users/me`` when None
    """

    def __init__(
        self,
        executor: RequestExecutor,
        base_url: str,
        access_token: Optional[str],
        user_id: Optional[str] = None
    ):
        self.executor = executor
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self._user_id = user_id

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    async def _call(self, method: str, path: str, **kwargs) -> Any:
        return await self.executor.request_json(
            method, f"{self.base_url}{path}", headers=self.headers, **kwargs
        )

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    async def get_item(self, item_id: str) -> Dict[str, Any]:
        """Live item. Raises ResourceNotFoundError when it no longer exists."""
        return await self._call("GET", f"/items/{item_id}")

    async def get_items(self, item_ids: List[str]) -> List[Dict[str, Any]]:
        """Multi-get; returns the bodies of items that answered 200."""
        if not item_ids:
            return []
        entries = await self._call("GET", "/items", params={"ids": ",".join(item_ids)})
        return [
            entry.get("body") or {}
            for entry in entries or []
            if isinstance(entry, dict) and entry.get("code") == 200
        ]

    async def update_item(self, item_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        logger.debug(f"Updating item {item_id}: {sorted(changes)}")
        return await self._call("PUT", f"/items/{item_id}", json=changes)

    async def create_item(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call("POST", "/items", json=payload)

    async def put_description(self, item_id: str, plain_text: str):
        """Set the plain-text description. PUT is idempotent: creates or replaces."""
        await self._call("PUT", f"/items/{item_id}/description", json={"plain_text": plain_text})

    async def set_status(self, item_id: str, status: str) -> Dict[str, Any]:
        return await self.update_item(item_id, {"status": status})

    async def pause_item(self, item_id: str) -> Dict[str, Any]:
        return await self.set_status(item_id, "paused")

    async def activate_item(self, item_id: str) -> Dict[str, Any]:
        return await self.set_status(item_id, "active")

    async def close_item(self, item_id: str) -> Dict[str, Any]:
        return await self.set_status(item_id, "closed")

    # ------------------------------------------------------------------
    # Seller
    # ------------------------------------------------------------------

    async def get_user_id(self) -> str:
        """Seller id, cached after the first ``/users/me`` lookup."""
        if self._user_id is None:
            me = await self._call("GET", "/users/me")
            self._user_id = str(me["id"])
        return self._user_id

    async def search_active_item_ids(
        self,
        max_pages: int = SEARCH_MAX_PAGES,
        page_size: int = SEARCH_PAGE_SIZE
    ) -> List[str]:
        """Ids of the seller's active items, walking at most ``max_pages`` pages."""
        user_id = await self.get_user_id()
        item_ids: List[str] = []

        for page in range(max_pages):
            data = await self._call(
                "GET",
                f"/users/{user_id}/items/search",
                params={"status": "active", "offset": page * page_size, "limit": page_size},
            ) or {}
            results = data.get("results") or []
            item_ids.extend(str(r) for r in results)

            total = (data.get("paging") or {}).get("total", 0)
            if len(results) < page_size or len(item_ids) >= total:
                break

        return item_ids

    async def find_item_by_sku(self, sku: str) -> Optional[str]:
        """
        Id of an active seller item whose SELLER_SKU attribute equals ``sku``.

        Items are fetched in groups of ten and compared attribute by attribute.
        """
        item_ids = await self.search_active_item_ids()

        for start in range(0, len(item_ids), MULTIGET_SIZE):
            for item in await self.get_items(item_ids[start:start + MULTIGET_SIZE]):
                if item_sku(item) == sku:
                    return str(item.get("id"))
        return None


def item_sku(item: Dict[str, Any]) -> Optional[str]:
    """SELLER_SKU attribute of a marketplace item (or its seller_custom_field)."""
    for attribute in item.get("attributes") or []:
        if attribute.get("id") == "SELLER_SKU":
            value = attribute.get("value_name")
            return str(value) if value is not None else None
    custom = item.get("seller_custom_field")
    return str(custom) if custom else None
