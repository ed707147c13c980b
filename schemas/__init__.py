"""
Pydantic schemas for data validation and serialization.

Schemas:
    supplier: Supplier product and offer models (single place where the
        supplier's availability fields are normalized)
    listing: Listing content derived for the marketplace
    api: API endpoint request/response schemas

Usage:
    from schemas import SourceProduct, DerivedListing
    from schemas.api import SyncRequest, JobResponse

Example:
    product = SourceProduct.from_payload("123", {
        "name": "Hades",
        "platform": "Steam",
        "offers": [{"price": 5.0, "qty": 0}, {"price": 7.0, "stock": True}],
    })
    assert product.lowest_valid_offer().price == 7.0
"""

from schemas.supplier import Offer, SourceProduct
from schemas.listing import DerivedListing

__all__ = [
    "Offer",
    "SourceProduct",
    "DerivedListing",
]
