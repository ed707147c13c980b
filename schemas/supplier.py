"""
Pydantic schemas for supplier catalog payloads.

The supplier API has used several field names for offer availability over
time (``quantity``, ``qty``, ``quantityOffers``, ``stock``). They are folded
into a single ``available`` flag here, so nothing downstream inspects the
raw offer shapes.
"""

from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Dict, Any
import math

_QUANTITY_FIELDS = ("quantity", "qty", "quantityOffers")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class Offer(BaseModel):
    """Canonical supplier offer: a price and whether it can be bought."""

    price: Optional[float] = None
    available: bool = False

    @model_validator(mode="before")
    @classmethod
    def normalize_availability(cls, data: Any) -> Any:
        """Fold the historical availability fields into ``available``."""
        if not isinstance(data, dict):
            return {"price": None, "available": False}

        price = data.get("price")
        if "available" in data:
            available = bool(data["available"])
        else:
            available = any(
                _is_number(data.get(field)) and data.get(field) > 0
                for field in _QUANTITY_FIELDS
            ) or data.get("stock") is True

        return {
            "price": price if _is_number(price) else None,
            "available": available,
        }

    @property
    def is_valid(self) -> bool:
        """Valid iff it has a positive finite price and is in stock."""
        return (
            self.price is not None
            and math.isfinite(self.price)
            and self.price > 0
            and self.available
        )


class SourceProduct(BaseModel):
    """
    Supplier product as consumed by the reconciliation pipeline.

    Built with ``SourceProduct.from_payload`` from the raw supplier JSON.
    """

    supplier_id: str
    name: Optional[str] = None
    original_name: Optional[str] = None
    platform: Optional[str] = None
    format: Optional[str] = None
    region_limitations: Optional[str] = None
    offers: List[Offer] = Field(default_factory=list)
    cover_image: Optional[str] = None
    screenshots: List[str] = Field(default_factory=list)
    publishers: List[str] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)
    description: Optional[str] = None

    @classmethod
    def from_payload(cls, supplier_id: str, payload: Dict[str, Any]) -> "SourceProduct":
        """Map a raw supplier product document onto the canonical model."""
        payload = payload or {}
        images = payload.get("images") or {}

        cover = images.get("cover") if isinstance(images, dict) else None
        cover_url = cover.get("url") if isinstance(cover, dict) else None

        screenshots = []
        for shot in (images.get("screenshots") or []) if isinstance(images, dict) else []:
            url = shot.get("url") if isinstance(shot, dict) else shot
            if isinstance(url, str) and url:
                screenshots.append(url)

        features = payload.get("features") or []
        if isinstance(features, str):
            features = [features]

        name = payload.get("name") or payload.get("originalName")

        return cls(
            supplier_id=str(supplier_id),
            name=name,
            original_name=payload.get("originalName"),
            platform=payload.get("platform"),
            format=payload.get("format"),
            region_limitations=payload.get("regionalLimitations"),
            offers=[Offer.model_validate(o) for o in payload.get("offers") or []],
            cover_image=cover_url,
            screenshots=screenshots,
            publishers=[str(p) for p in payload.get("publishers") or [] if p],
            features=[str(f) for f in features if f],
            description=payload.get("description"),
        )

    @property
    def display_name(self) -> Optional[str]:
        return self.original_name or self.name

    def valid_offers(self) -> List[Offer]:
        return [offer for offer in self.offers if offer.is_valid]

    def lowest_valid_offer(self) -> Optional[Offer]:
        """Cheapest offer that has a price and stock."""
        offers = self.valid_offers()
        if not offers:
            return None
        return min(offers, key=lambda o: o.price)
