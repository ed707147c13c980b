"""
In-memory supplier and marketplace used by the tests
"""

import json
import re
from typing import Any, Dict, List, Optional

import httpx


SUPPLIER_URL = "https://supplier.test/esa/api/v1"
MARKETPLACE_URL = "https://marketplace.test"
SELLER_ID = "777"

ALLOWED_REGIONS = (
    "region free", "row", "latin america", "latam", "global", "worldwide", "international",
)

_PRODUCT_PATH = re.compile(r"/products/(?P<id>[^/]+)$")
_ITEM_PATH = re.compile(r"^/items/(?P<id>[^/]+)$")
_DESCRIPTION_PATH = re.compile(r"^/items/(?P<id>[^/]+)/description$")
_SEARCH_PATH = re.compile(r"^/users/(?P<uid>[^/]+)/items/search$")


def make_product(
    name: str = "Hollow Knight",
    platform: str = "Steam",
    price: float = 10.0,
    region: str = "Region Free",
    offers: Optional[List[Dict[str, Any]]] = None,
    **extra
) -> Dict[str, Any]:
    """Supplier product document in the supplier's wire format"""
    product = {
        "name": name,
        "originalName": name,
        "platform": platform,
        "regionalLimitations": region,
        "offers": offers if offers is not None else [{"price": price, "qty": 5}],
        "images": {
            "cover": {"url": "https://img.test/cover.jpg"},
            "screenshots": [{"url": f"https://img.test/shot{i}.jpg"} for i in range(3)],
        },
        "publishers": ["Team Cherry"],
        "description": "A challenging adventure.",
    }
    product.update(extra)
    return product


class FakeRemote:
    """
    In-memory supplier and marketplace behind one ``httpx.MockTransport``.

    Supplier requests are recognised by their ``/products/{id}`` path,
    everything else is served as the marketplace.
    """

    def __init__(self):
        self.products: Dict[str, Dict[str, Any]] = {}
        self.supplier_status: Dict[str, int] = {}
        self.items: Dict[str, Dict[str, Any]] = {}
        self.descriptions: Dict[str, str] = {}
        self.item_status_codes: Dict[str, int] = {}
        self.create_errors: List[Dict[str, Any]] = []
        self.update_errors: List[Dict[str, Any]] = []
        self.marketplace_status: Optional[int] = None
        self.calls: List[tuple] = []
        self._next_id = 1000

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def add_item(self, item_id: str, sku: str, status: str = "active", price: int = 18990,
                 title: str = "Hollow Knight | Steam Código Digital") -> Dict[str, Any]:
        item = {
            "id": item_id,
            "status": status,
            "price": price,
            "title": title,
            "attributes": [{"id": "SELLER_SKU", "value_name": sku}],
        }
        self.items[item_id] = item
        return item

    def calls_to(self, method: str, prefix: str = "") -> List[tuple]:
        return [c for c in self.calls if c[0] == method and c[1].startswith(prefix)]

    # ------------------------------------------------------------------
    # Transport handler
    # ------------------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        path = request.url.path
        self.calls.append((request.method, path, body))

        match = _PRODUCT_PATH.search(path)
        if match:
            return self._supplier(match.group("id"))

        if self.marketplace_status is not None:
            return httpx.Response(self.marketplace_status, json={"message": "forced"})
        return self._marketplace(request, path, body)

    def _supplier(self, product_id: str) -> httpx.Response:
        if product_id in self.supplier_status:
            return httpx.Response(self.supplier_status[product_id], json={"message": "error"})
        if product_id not in self.products:
            return httpx.Response(404, json={"message": "Product not found"})
        return httpx.Response(200, json=self.products[product_id])

    def _marketplace(self, request: httpx.Request, path: str, body: Any) -> httpx.Response:
        method = request.method

        if method == "GET" and path == "/users/me":
            return httpx.Response(200, json={"id": int(SELLER_ID)})

        match = _SEARCH_PATH.match(path)
        if method == "GET" and match:
            active = [i for i, item in self.items.items() if item["status"] == "active"]
            offset = int(request.url.params.get("offset", 0))
            limit = int(request.url.params.get("limit", 50))
            return httpx.Response(200, json={
                "results": active[offset:offset + limit],
                "paging": {"total": len(active), "offset": offset, "limit": limit},
            })

        if method == "GET" and path == "/items":
            ids = request.url.params.get("ids", "").split(",")
            return httpx.Response(200, json=[
                {"code": 200, "body": self.items[i]} if i in self.items else {"code": 404, "body": {}}
                for i in ids
            ])

        if method == "POST" and path == "/items":
            if self.create_errors:
                return httpx.Response(400, json=self.create_errors.pop(0))
            self._next_id += 1
            item_id = f"MLC{self._next_id}"
            item = dict(body, id=item_id, status="active")
            self.items[item_id] = item
            return httpx.Response(201, json=item)

        match = _DESCRIPTION_PATH.match(path)
        if method == "PUT" and match:
            self.descriptions[match.group("id")] = body["plain_text"]
            return httpx.Response(200, json={"plain_text": body["plain_text"]})

        match = _ITEM_PATH.match(path)
        if match:
            item_id = match.group("id")
            if item_id in self.item_status_codes:
                return httpx.Response(self.item_status_codes[item_id], json={"message": "error"})
            if item_id not in self.items:
                return httpx.Response(404, json={"message": "Item not found"})
            if method == "GET":
                return httpx.Response(200, json=self.items[item_id])
            if method == "PUT":
                if self.update_errors and "status" not in body:
                    return httpx.Response(400, json=self.update_errors.pop(0))
                self.items[item_id].update(body)
                return httpx.Response(200, json=self.items[item_id])

        return httpx.Response(405, json={"message": f"{method} {path} not allowed"})


