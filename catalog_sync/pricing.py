"""
Marketplace price derivation.

Pure functions that turn a supplier offer price (EUR) into a marketplace
price in the target currency:

    fee      = first fee tier whose ceiling covers the price (or fallback)
    cost     = (price + fee) * rate
    final    = cost * (1 + margin)        # margin depends on the cost bracket
    final   += low_price_surcharge        # only below the surcharge threshold
    final   *= vat_multiplier
    price    = ceil(final / 1000) * 1000 - 10

Every derived price therefore ends in 990.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple
import logging
import math

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeeTier:
    """Supplier fee applied to offers priced at or below ``max_price``."""
    max_price: float
    fee: float


@dataclass(frozen=True)
class MarginTier:
    """Margin applied when the cost is strictly below ``max_cost``."""
    max_cost: float
    margin: float


DEFAULT_FEE_TIERS: Tuple[FeeTier, ...] = (
    FeeTier(1, 0.81),
    FeeTier(2, 0.92),
    FeeTier(3, 1.03),
    FeeTier(4, 1.14),
    FeeTier(5, 1.25),
    FeeTier(6, 1.36),
    FeeTier(7, 1.47),
    FeeTier(8, 1.58),
    FeeTier(9, 1.69),
    FeeTier(10, 1.80),
    FeeTier(20, 1.94),
    FeeTier(30, 2.43),
    FeeTier(40, 2.93),
    FeeTier(50, 3.43),
)


@dataclass(frozen=True)
class FeeSchedule:
    tiers: Tuple[FeeTier, ...] = DEFAULT_FEE_TIERS
    fallback_fee: float = 3.50

    def fee_for(self, price: float) -> float:
        for tier in self.tiers:
            if tier.max_price >= price:
                return tier.fee
        return self.fallback_fee


@dataclass(frozen=True)
class PricingPolicy:
    """
    Constants of the price formula.

    Attributes:
        fees: Supplier fee schedule
        margin_tiers: Margin brackets by cost, checked in order
        default_margin: Margin when no bracket matches
        surcharge_threshold: Prices below this get ``low_price_surcharge``
        low_price_surcharge: Flat amount added to cheap listings
        vat_multiplier: Tax multiplier applied last
        rounding_step: Prices are rounded up to this step minus ``rounding_offset``
    """
    fees: FeeSchedule = field(default_factory=FeeSchedule)
    margin_tiers: Tuple[MarginTier, ...] = (MarginTier(3500, 0.75),)
    default_margin: float = 0.30
    surcharge_threshold: float = 9990
    low_price_surcharge: float = 700
    vat_multiplier: float = 1.19
    rounding_step: int = 1000
    rounding_offset: int = 10

    def margin_for(self, cost: float) -> float:
        for tier in self.margin_tiers:
            if cost < tier.max_cost:
                return tier.margin
        return self.default_margin


DEFAULT_POLICY = PricingPolicy()


@dataclass(frozen=True)
class PriceQuote:
    """Result of a price derivation. Both fields are None when it failed."""
    rate: Optional[float]
    price: Optional[int]

    @property
    def ok(self) -> bool:
        return self.price is not None


EMPTY_QUOTE = PriceQuote(None, None)


def _positive_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def derive_price(
    source_price: Any,
    rate: Any,
    policy: PricingPolicy = DEFAULT_POLICY
) -> PriceQuote:
    """
    Derive the marketplace price for a supplier offer price.

    Args:
        source_price: Supplier offer price
        rate: Exchange rate from the supplier currency to the target currency
        policy: Formula constants

    Returns:
        PriceQuote with the integer price, or EMPTY_QUOTE when either input
        is missing, non-numeric, non-finite or not positive. Never raises.
    """
    price = _positive_number(source_price)
    fx = _positive_number(rate)
    if price is None or fx is None:
        return EMPTY_QUOTE

    fee = policy.fees.fee_for(price)
    cost = (price + fee) * fx
    final = cost * (1 + policy.margin_for(cost))

    if final < policy.surcharge_threshold:
        final += policy.low_price_surcharge

    final *= policy.vat_multiplier

    if not math.isfinite(final):
        return EMPTY_QUOTE

    step = policy.rounding_step
    rounded = math.ceil(final / step) * step - policy.rounding_offset
    return PriceQuote(rate=fx, price=int(rounded))


async def quote_with_provider(
    source_price: Any,
    rate_provider: Callable[[], Awaitable[float]],
    policy: PricingPolicy = DEFAULT_POLICY
) -> PriceQuote:
    """Resolve the rate through ``rate_provider`` and derive the price."""
    try:
        rate = await rate_provider()
    except Exception as e:
        logger.warning(f"Exchange rate unavailable: {e}")
        return EMPTY_QUOTE
    return derive_price(source_price, rate, policy)


def price_within_bounds(price: int, minimum: int, maximum: int) -> bool:
    return minimum <= price <= maximum


def price_ratio_ok(
    price: int,
    source_price: float,
    reference_rate: Optional[float],
    min_ratio: Optional[float],
    max_ratio: Optional[float]
) -> bool:
    """
    Sanity band for derived prices.

    The ratio ``price / (source_price * reference_rate)`` must fall inside
    ``[min_ratio, max_ratio]``. With no reference rate the check passes.
    """
    if not reference_rate or not source_price:
        return True
    ratio = price / (source_price * reference_rate)
    if min_ratio is not None and ratio < min_ratio:
        return False
    if max_ratio is not None and ratio > max_ratio:
        return False
    return True

