"""
HTTP clients for the supplier catalog and the marketplace.

Both clients send every request through a shared RequestExecutor, so
retries, backoff and error classification behave the same everywhere.
"""

from catalog_sync.clients.supplier import SupplierClient
from catalog_sync.clients.marketplace import MarketplaceClient

__all__ = ["SupplierClient", "MarketplaceClient"]
