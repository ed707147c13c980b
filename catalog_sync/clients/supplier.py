"""
Supplier catalog client.
"""

import logging
from typing import Optional

from catalog_sync.executor import RequestExecutor
from schemas.supplier import SourceProduct

logger = logging.getLogger(__name__)


class SupplierClient:
    """
    Read-only client for the supplier product API.

    Args:
        executor: Retrying request executor
        base_url: Supplier API root, e.g. ``https://gateway.example.net/esa/api/v1``
        api_key: Value of the ``X-Api-Key`` header
    """

    def __init__(self, executor: RequestExecutor, base_url: str, api_key: Optional[str]):
        self.executor = executor
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    async def fetch_product(self, supplier_id: str) -> SourceProduct:
        """
        Fetch one product by id.

        Raises:
            ResourceNotFoundError: The supplier does not know the id
            AuthenticationError: The API key was rejected
        """
        payload = await self.executor.request_json(
            "GET",
            f"{self.base_url}/products/{supplier_id}",
            headers={"X-Api-Key": self.api_key or ""},
        )
        product = SourceProduct.from_payload(supplier_id, payload or {})
        logger.debug(
            f"Supplier product {supplier_id}: {len(product.offers)} offers, "
            f"{len(product.valid_offers())} valid"
        )
        return product
