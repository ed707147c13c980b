"""
Per-id reconciliation state machine.

For one supplier id:

    Reserve -> DuplicateScan -> FetchSource -> Validate -> RegionCheck
        -> PriceDerivation -> BuildListing -> Dispatch (update | create)

Each run ends in exactly one UnitOutcome (published, updated, skipped or
error) which is also written to the activity log. Authentication failures
and other job-fatal errors are re-raised for the orchestrator.
"""

import logging
import math
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from catalog_sync.clients.marketplace import MarketplaceClient
from catalog_sync.clients.supplier import SupplierClient
from catalog_sync.activity import ActivityLogger
from catalog_sync.executor import RetryPolicy
from catalog_sync.listing import (
    MIN_TITLE_LENGTH,
    build_description,
    build_item_payload,
    build_pictures,
    build_title,
    classify_product,
    fallback_description,
    fallback_title,
    normalize_platform,
    region_verdict,
)
from catalog_sync.pricing import (
    DEFAULT_POLICY,
    PricingPolicy,
    price_ratio_ok,
    price_within_bounds,
    quote_with_provider,
)
from catalog_sync.recovery import CreateAttempt, categorize, correct_create, correct_update
from catalog_sync.store import ReconciledProductStore
from core.config import settings
from core.exceptions import (
    AuthenticationError,
    FatalRequestError,
    JobFatalError,
    MarketplaceValidationError,
    RateLimitError,
    ReconciliationError,
    ReconciliationSkip,
    RemoteServiceError,
    ReservationLostError,
    ResourceNotFoundError,
    StoreError,
)
from models.base import ActivityLevel, ListingStatus
from models.reconciled_product import ReconciledProduct
from schemas.listing import DerivedListing
from schemas.supplier import SourceProduct

logger = logging.getLogger(__name__)

# Errors that abort the whole job instead of a single unit
JOB_FATAL_ERRORS = (AuthenticationError, JobFatalError)

# Remote calls a unit can make while holding its reservation (source fetch,
# SKU lookup, create plus its corrected retry, description, cleanup)
REMOTE_CALLS_PER_UNIT = 6

_OUTCOME_LEVELS = {
    "published": ActivityLevel.SUCCESS,
    "updated": ActivityLevel.SUCCESS,
    "skipped": ActivityLevel.INFO,
    "error": ActivityLevel.ERROR,
}


@dataclass
class ProcessingUnit:
    """Work item for one supplier id within a job."""
    supplier_id: str
    job_id: Optional[str] = None


@dataclass
class UnitOutcome:
    """Terminal result of one unit."""
    supplier_id: str
    status: str
    reason: Optional[str] = None
    message: Optional[str] = None
    marketplace_id: Optional[str] = None
    price: Optional[int] = None
    title: Optional[str] = None
    recovered: bool = False
    elapsed_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ReconcilerOptions:
    """Thresholds and marketplace constants used by the state machine."""
    min_price: int = 100
    max_price: int = 50_000_000
    price_tolerance: int = 5
    allowed_regions: Tuple[str, ...] = ()
    reservation_ttl_seconds: int = 900
    recent_guard_seconds: int = 600
    outlier_reference_rate: Optional[float] = None
    outlier_min_ratio: Optional[float] = None
    outlier_max_ratio: Optional[float] = None
    category_id: str = ""
    currency_id: str = ""
    listing_type: str = "gold_pro"
    max_pictures: int = 6

    @classmethod
    def from_settings(cls) -> "ReconcilerOptions":
        return cls(
            min_price=settings.MIN_LISTING_PRICE,
            max_price=settings.MAX_LISTING_PRICE,
            price_tolerance=settings.PRICE_UPDATE_TOLERANCE,
            allowed_regions=tuple(settings.ALLOWED_REGIONS),
            reservation_ttl_seconds=settings.RESERVATION_TTL_SECONDS,
            recent_guard_seconds=settings.RECENT_RECORD_GUARD_SECONDS,
            outlier_reference_rate=settings.PRICE_OUTLIER_REFERENCE_RATE,
            outlier_min_ratio=settings.PRICE_OUTLIER_MIN_RATIO,
            outlier_max_ratio=settings.PRICE_OUTLIER_MAX_RATIO,
            category_id=settings.MARKETPLACE_CATEGORY_ID,
            currency_id=settings.MARKETPLACE_CURRENCY_ID,
            listing_type=settings.MARKETPLACE_LISTING_TYPE,
            max_pictures=settings.MARKETPLACE_MAX_PICTURES,
        )


@dataclass
class _Pricing:
    source_price: float
    price: int


class Reconciler:
    """
    Reconcile supplier ids against the marketplace.

    Args:
        supplier: Supplier catalog client
        marketplace: Marketplace client
        store: Reconciled record store
        rate_provider: Coroutine function returning the exchange rate
        options: Thresholds and marketplace constants
        policy: Price formula constants
    """

    def __init__(
        self,
        supplier: SupplierClient,
        marketplace: MarketplaceClient,
        store: ReconciledProductStore,
        rate_provider: Callable[[], Awaitable[float]],
        options: Optional[ReconcilerOptions] = None,
        policy: PricingPolicy = DEFAULT_POLICY
    ):
        self.supplier = supplier
        self.marketplace = marketplace
        self.store = store
        self.rate_provider = rate_provider
        self.options = options or ReconcilerOptions.from_settings()
        self.policy = policy
        self.reservation_ttl_seconds = self.options.reservation_ttl_seconds

    def fit_reservation_ttl(self, policy: RetryPolicy) -> int:
        """
        Stretch the reservation TTL so a unit retrying every remote call up
        to ``policy`` limits still holds its reservation when it publishes.

        Returns:
            The effective TTL in seconds
        """
        floor = math.ceil(policy.worst_case_seconds() * REMOTE_CALLS_PER_UNIT)
        self.reservation_ttl_seconds = max(self.options.reservation_ttl_seconds, floor)
        return self.reservation_ttl_seconds

    async def reconcile(self, unit: ProcessingUnit, activity: ActivityLogger) -> UnitOutcome:
        """
        Run the state machine for one id.

        Returns:
            The unit outcome

        Raises:
            AuthenticationError, JobFatalError: The job must stop
        """
        sid = unit.supplier_id
        started = time.monotonic()

        try:
            outcome = await self._run(unit, activity)
        except JOB_FATAL_ERRORS as e:
            await activity.log(
                f"Fatal error, stopping job: {e.message}",
                ActivityLevel.ERROR, supplier_id=sid, step="fatal", details=e.to_dict()
            )
            raise
        except ReconciliationSkip as skip:
            outcome = UnitOutcome(sid, "skipped", reason=skip.reason, message=skip.message)
        except ReconciliationError as e:
            outcome = UnitOutcome(sid, "error", reason=e.reason, message=e.message)
        except RateLimitError as e:
            outcome = UnitOutcome(sid, "error", reason="rate_limited", message=e.message)
        except FatalRequestError as e:
            outcome = UnitOutcome(sid, "error", reason="request_not_allowed", message=e.message)
        except RemoteServiceError as e:
            outcome = UnitOutcome(sid, "error", reason="remote_error", message=e.message)
        except StoreError as e:
            outcome = UnitOutcome(sid, "error", reason="store_error", message=e.message)

        outcome.elapsed_seconds = round(time.monotonic() - started, 3)
        await activity.log(
            outcome.message or outcome.status,
            _OUTCOME_LEVELS[outcome.status],
            supplier_id=sid,
            step=outcome.status,
            details=outcome.to_dict(),
        )
        return outcome

    # ========================================================================
    # Reserve
    # ========================================================================

    async def _run(self, unit: ProcessingUnit, activity: ActivityLogger) -> UnitOutcome:
        sid = unit.supplier_id
        await self.store.purge_stale_reservations(sid, self.reservation_ttl_seconds)

        reservation_id = await self.store.reserve(sid, unit.job_id)
        if reservation_id is None:
            raise ReconciliationSkip("conflict", f"{sid} is being processed by another unit")

        try:
            return await self._reconcile_reserved(unit, reservation_id, activity)
        finally:
            await self._release(reservation_id, sid)

    async def _release(self, reservation_id: int, supplier_id: str):
        try:
            await self.store.release(reservation_id)
        except StoreError as e:
            # The stale-reservation purge removes the row after its TTL
            logger.error(f"[{supplier_id}] Failed to release reservation {reservation_id}: {e}")

    async def _reconcile_reserved(
        self,
        unit: ProcessingUnit,
        reservation_id: int,
        activity: ActivityLogger
    ) -> UnitOutcome:
        sid = unit.supplier_id

        records = await self.store.records_for(sid)
        reference = await self._scan_duplicates(sid, records, activity)

        product = await self._fetch_source(sid)
        await self._validate(product, reference, activity)
        region = await self._check_region(product, reference, activity)
        pricing = await self._derive_price(product)
        listing = self._build_listing(product, pricing.price)

        if reference is not None and reference.marketplace_id and reference.status != ListingStatus.CLOSED:
            outcome = await self._update_existing(unit, reference, product, listing, pricing, region, activity)
            if outcome is not None:
                return outcome

        return await self._create(unit, reservation_id, product, listing, pricing, region, activity)

    # ========================================================================
    # DuplicateScan
    # ========================================================================

    async def _live_status(self, marketplace_id: str) -> Optional[str]:
        """Live listing status; None when it no longer exists, "unknown" on errors."""
        try:
            item = await self.marketplace.get_item(marketplace_id)
        except ResourceNotFoundError:
            return None
        except JOB_FATAL_ERRORS:
            raise
        except RemoteServiceError as e:
            logger.warning(f"Could not read listing {marketplace_id}: {e.message}")
            return "unknown"
        return item.get("status")

    async def _scan_duplicates(
        self,
        supplier_id: str,
        records: List[ReconciledProduct],
        activity: ActivityLogger
    ) -> Optional[ReconciledProduct]:
        """
        Collapse several settled records into one reference record.

        Among records whose live listing is active the most recently
        created one is kept (lowest price on ties). The other listings are
        closed on the marketplace and their records marked closed_duplicate
        one at a time.
        """
        if len(records) <= 1:
            return records[0] if records else None

        live: Dict[int, Optional[str]] = {}
        for record in records:
            if record.marketplace_id:
                live[record.id] = await self._live_status(record.marketplace_id)

        active = [r for r in records if live.get(r.id) == "active"]
        if active:
            keeper = max(
                active,
                key=lambda r: (r.created_at, -(r.price if r.price is not None else float("inf")))
            )
        else:
            cutoff = datetime.utcnow() - timedelta(seconds=self.options.recent_guard_seconds)
            if any(r.created_at >= cutoff for r in records):
                raise ReconciliationSkip(
                    "recent",
                    f"{len(records)} records without an active listing, one created in the last "
                    f"{self.options.recent_guard_seconds}s"
                )
            keeper = records[0]

        closed = 0
        for record in records:
            if record.id == keeper.id:
                continue
            status = live.get(record.id)
            if record.marketplace_id and status not in (None, "closed"):
                try:
                    await self.marketplace.close_item(record.marketplace_id)
                except JOB_FATAL_ERRORS:
                    raise
                except RemoteServiceError as e:
                    await activity.log(
                        f"Could not close duplicate listing {record.marketplace_id}: {e.message}",
                        ActivityLevel.WARNING, supplier_id=supplier_id, step="duplicate_scan"
                    )
            await self.store.set_status(record.id, ListingStatus.CLOSED_DUPLICATE)
            closed += 1

        await activity.log(
            f"Kept listing {keeper.marketplace_id}, retired {closed} duplicate record(s)",
            ActivityLevel.WARNING, supplier_id=supplier_id, step="duplicate_scan",
            details={"kept": keeper.marketplace_id, "retired": closed}
        )
        return keeper

    # ========================================================================
    # FetchSource / Validate / RegionCheck
    # ========================================================================

    async def _fetch_source(self, supplier_id: str) -> SourceProduct:
        try:
            return await self.supplier.fetch_product(supplier_id)
        except ResourceNotFoundError:
            raise ReconciliationSkip("not_found", f"Supplier has no product {supplier_id}")

    async def _pause_reference(
        self,
        reference: Optional[ReconciledProduct],
        reason: str,
        activity: ActivityLogger
    ):
        """Pause the live listing of ``reference`` (if any) and mark it paused."""
        if reference is None or not reference.marketplace_id:
            return
        if reference.status in (ListingStatus.PAUSED, ListingStatus.CLOSED):
            return

        try:
            await self.marketplace.pause_item(reference.marketplace_id)
        except ResourceNotFoundError:
            await self.store.set_status(reference.id, ListingStatus.CLOSED)
            return
        except JOB_FATAL_ERRORS:
            raise
        except RemoteServiceError as e:
            await activity.log(
                f"Could not pause listing {reference.marketplace_id}: {e.message}",
                ActivityLevel.WARNING, supplier_id=reference.supplier_id, step="pause"
            )
            return

        await self.store.set_status(reference.id, ListingStatus.PAUSED)
        await activity.log(
            f"Paused listing {reference.marketplace_id} ({reason})",
            ActivityLevel.WARNING, supplier_id=reference.supplier_id, step="pause"
        )

    async def _validate(
        self,
        product: SourceProduct,
        reference: Optional[ReconciledProduct],
        activity: ActivityLogger
    ):
        if not product.name:
            await self._pause_reference(reference, "invalid", activity)
            raise ReconciliationSkip("invalid", "Supplier product has no name")

        if not product.offers:
            await self._pause_reference(reference, "no offers", activity)
            raise ReconciliationSkip("invalid", "Supplier product has no offers")

        if not product.valid_offers():
            await self._pause_reference(reference, "out of stock", activity)
            raise ReconciliationSkip("invalid", "No offer with price and stock")

    async def _check_region(
        self,
        product: SourceProduct,
        reference: Optional[ReconciledProduct],
        activity: ActivityLogger
    ) -> str:
        verdict = region_verdict(product.region_limitations, self.options.allowed_regions)
        if not verdict.allowed:
            await self._pause_reference(reference, "region", activity)
            raise ReconciliationSkip("region", f"Region not allowed: {product.region_limitations}")
        return product.region_limitations or ""

    # ========================================================================
    # PriceDerivation / BuildListing
    # ========================================================================

    async def _derive_price(self, product: SourceProduct) -> _Pricing:
        offer = product.lowest_valid_offer()
        quote = await quote_with_provider(offer.price, self.rate_provider, self.policy)

        if not quote.ok:
            raise ReconciliationSkip("fx", "Price could not be derived (exchange rate unavailable)")

        if not price_within_bounds(quote.price, self.options.min_price, self.options.max_price):
            raise ReconciliationSkip(
                "price_range",
                f"Price {quote.price} outside [{self.options.min_price}, {self.options.max_price}]"
            )

        if not price_ratio_ok(
            quote.price,
            offer.price,
            self.options.outlier_reference_rate,
            self.options.outlier_min_ratio,
            self.options.outlier_max_ratio,
        ):
            raise ReconciliationSkip("price_outlier", f"Price {quote.price} outside the sanity band")

        return _Pricing(source_price=offer.price, price=quote.price)

    def _build_listing(self, product: SourceProduct, price: int) -> DerivedListing:
        product_type = classify_product(product)
        title = build_title(product, product_type)
        if len(title) < MIN_TITLE_LENGTH:
            raise ReconciliationSkip("invalid", f"Title too short: {title!r}")

        return DerivedListing(
            title=title,
            description=build_description(product, product_type),
            price=price,
            product_type=product_type,
            platform=normalize_platform(product.platform),
            pictures=build_pictures(product, self.options.max_pictures),
        )

    # ========================================================================
    # Dispatch: update
    # ========================================================================

    async def _update_existing(
        self,
        unit: ProcessingUnit,
        reference: ReconciledProduct,
        product: SourceProduct,
        listing: DerivedListing,
        pricing: _Pricing,
        region: str,
        activity: ActivityLogger
    ) -> Optional[UnitOutcome]:
        """
        Update the live listing of ``reference``.

        A listing published under the fallback title keeps it: the built
        title was rejected once already, so it is not pushed again.

        Returns None when the listing no longer exists, so the caller
        creates a new one.
        """
        sid = unit.supplier_id
        mid = reference.marketplace_id

        try:
            item = await self.marketplace.get_item(mid)
        except ResourceNotFoundError:
            await self.store.set_status(reference.id, ListingStatus.CLOSED)
            await activity.log(
                f"Listing {mid} no longer exists; creating a new one",
                ActivityLevel.WARNING, supplier_id=sid, step="update"
            )
            return None

        live_status = item.get("status")
        reactivated = False
        if live_status == "paused" and reference.status == ListingStatus.PAUSED:
            await self.marketplace.activate_item(mid)
            live_status = "active"
            reactivated = True
            await activity.log(f"Reactivated listing {mid}", ActivityLevel.INFO, supplier_id=sid, step="update")

        if live_status != "active":
            raise ReconciliationSkip("not_active", f"Listing {mid} is {live_status}")

        desired_title = listing.title
        if reference.title and reference.title == fallback_title(product):
            desired_title = reference.title

        changes: Dict[str, Any] = {}
        live_price = item.get("price")
        if live_price is None or abs(float(live_price) - listing.price) > self.options.price_tolerance:
            changes["price"] = listing.price
        live_title = (item.get("title") or "").strip()
        if live_title != desired_title.strip():
            changes["title"] = desired_title

        if not changes and not reactivated:
            if reference.status != ListingStatus.ACTIVE:
                await self.store.set_status(reference.id, ListingStatus.ACTIVE)
            raise ReconciliationSkip("up_to_date", f"Listing {mid} already matches")

        recovered = False
        if changes:
            changes, recovered = await self._apply_update(sid, mid, changes, activity)

        final_price = changes.get("price", int(live_price) if live_price is not None else listing.price)
        final_title = changes.get("title", live_title or desired_title)
        await self.store.record_update(
            reference.id,
            price=final_price,
            title=final_title,
            source_price=pricing.source_price,
            region=region,
            job_id=unit.job_id,
        )

        return UnitOutcome(
            sid,
            "updated",
            reason="reactivated" if reactivated and not changes else None,
            message=f"Updated listing {mid}: {', '.join(sorted(changes)) or 'status'}",
            marketplace_id=mid,
            price=final_price,
            title=final_title,
            recovered=recovered,
        )

    async def _apply_update(
        self,
        supplier_id: str,
        marketplace_id: str,
        changes: Dict[str, Any],
        activity: ActivityLogger
    ) -> Tuple[Dict[str, Any], bool]:
        """PUT ``changes``; on a validation error retry once with a corrected body."""
        try:
            await self.marketplace.update_item(marketplace_id, changes)
            return changes, False
        except MarketplaceValidationError as e:
            category = categorize(e)
            corrected = correct_update(category, changes)
            if corrected is None:
                raise ReconciliationError(
                    "marketplace_validation",
                    f"Update rejected ({category.value}): {e.message}",
                    original_exception=e
                )

            await activity.log(
                f"Update rejected ({category.value}); retrying with {sorted(corrected)}",
                ActivityLevel.WARNING, supplier_id=supplier_id, step="recovery",
                details={"payload": e.payload}
            )
            try:
                await self.marketplace.update_item(marketplace_id, corrected)
            except MarketplaceValidationError as retry_error:
                raise ReconciliationError(
                    "marketplace_validation",
                    f"Corrected update rejected: {retry_error.message}",
                    original_exception=retry_error
                )
            return corrected, True

    # ========================================================================
    # Dispatch: create
    # ========================================================================

    async def _create(
        self,
        unit: ProcessingUnit,
        reservation_id: int,
        product: SourceProduct,
        listing: DerivedListing,
        pricing: _Pricing,
        region: str,
        activity: ActivityLogger
    ) -> UnitOutcome:
        sid = unit.supplier_id

        existing = await self.marketplace.find_item_by_sku(sid)
        if existing:
            raise ReconciliationSkip(
                "sku_duplicate", f"Active listing {existing} already carries SKU {sid}"
            )

        attempt = CreateAttempt(title=listing.title, pictures=tuple(listing.pictures))
        item, attempt, recovered = await self._post_item(reservation_id, product, listing, attempt, activity)
        mid = str(item["id"])

        description = listing.description or fallback_description(product)
        try:
            await self.marketplace.put_description(mid, description)
        except JOB_FATAL_ERRORS:
            raise
        except RemoteServiceError as e:
            await activity.log(
                f"Listing {mid} created but description failed: {e.message}",
                ActivityLevel.WARNING, supplier_id=sid, step="description"
            )

        try:
            await self.store.promote_reservation(
                reservation_id,
                sid,
                mid,
                price=listing.price,
                title=attempt.title,
                source_price=pricing.source_price,
                region=region,
                product_type=listing.product_type,
                job_id=unit.job_id,
            )
        except StoreError as e:
            # Every live listing needs a record
            await self._close_unrecorded(sid, mid, activity)
            if isinstance(e, ReservationLostError):
                raise ReconciliationError(
                    "reservation_lost",
                    f"Reservation expired while publishing; listing {mid} closed",
                    context={"marketplace_id": mid},
                    original_exception=e
                )
            raise

        return UnitOutcome(
            sid,
            "published",
            message=f"Published listing {mid}",
            marketplace_id=mid,
            price=listing.price,
            title=attempt.title,
            recovered=recovered,
        )

    async def _ensure_reservation(self, reservation_id: int, supplier_id: str):
        """Stop before publishing when the reservation was purged meanwhile."""
        if not await self.store.holds_reservation(reservation_id):
            raise ReconciliationError(
                "reservation_lost",
                f"Reservation for {supplier_id} expired before publishing",
                context={"reservation_id": reservation_id}
            )

    async def _close_unrecorded(self, supplier_id: str, marketplace_id: str, activity: ActivityLogger):
        try:
            await self.marketplace.close_item(marketplace_id)
        except JOB_FATAL_ERRORS:
            raise
        except RemoteServiceError as e:
            await activity.log(
                f"Listing {marketplace_id} could not be recorded nor closed: {e.message}",
                ActivityLevel.ERROR, supplier_id=supplier_id, step="publish",
                details={"marketplace_id": marketplace_id}
            )
            return
        await activity.log(
            f"Closed listing {marketplace_id}: it could not be recorded",
            ActivityLevel.WARNING, supplier_id=supplier_id, step="publish",
            details={"marketplace_id": marketplace_id}
        )

    def _payload(self, product: SourceProduct, listing: DerivedListing, attempt: CreateAttempt) -> Dict[str, Any]:
        return build_item_payload(
            product,
            attempt.title,
            listing.price,
            listing.description if attempt.include_description else None,
            list(attempt.pictures),
            category_id=self.options.category_id,
            currency_id=self.options.currency_id,
            listing_type=self.options.listing_type,
            minimal_attributes=attempt.minimal_attributes,
        )

    async def _post_item(
        self,
        reservation_id: int,
        product: SourceProduct,
        listing: DerivedListing,
        attempt: CreateAttempt,
        activity: ActivityLogger
    ) -> Tuple[Dict[str, Any], CreateAttempt, bool]:
        """POST the listing; on a validation error retry once with a corrected request."""
        sid = product.supplier_id
        await self._ensure_reservation(reservation_id, sid)
        try:
            return await self.marketplace.create_item(self._payload(product, listing, attempt)), attempt, False
        except MarketplaceValidationError as e:
            category = categorize(e)
            corrected = correct_create(category, attempt, fallback_title(product))
            if corrected is None:
                raise ReconciliationError(
                    "marketplace_validation",
                    f"Create rejected ({category.value}): {e.message}",
                    original_exception=e
                )

            await activity.log(
                f"Create rejected ({category.value}); retrying with a corrected listing",
                ActivityLevel.WARNING, supplier_id=sid, step="recovery",
                details={"payload": e.payload}
            )
            await self._ensure_reservation(reservation_id, sid)
            try:
                item = await self.marketplace.create_item(self._payload(product, listing, corrected))
            except MarketplaceValidationError as retry_error:
                raise ReconciliationError(
                    "marketplace_validation",
                    f"Corrected create rejected: {retry_error.message}",
                    original_exception=retry_error
                )
            return item, corrected, True
