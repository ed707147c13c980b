"""
Pydantic schema for a marketplace listing derived from a supplier product
"""

from pydantic import BaseModel, Field
from typing import List


class DerivedListing(BaseModel):
    """Listing content computed for one supplier product."""

    title: str = Field(..., min_length=10, max_length=60)
    description: str
    price: int = Field(..., gt=0)
    product_type: str
    platform: str
    pictures: List[str] = Field(default_factory=list)
