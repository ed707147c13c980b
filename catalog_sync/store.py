"""
Persistence for reconciled product records and per-id reservations.

Reservation protocol:
1. Stale ``processing`` rows older than the TTL are purged for the id
2. A ``processing`` row is inserted with ON CONFLICT DO NOTHING against
   the partial unique index on supplier_id (status = 'processing')
3. No row returned means another unit holds the id
4. Before publishing, the holder checks that its row still exists
5. The row is either promoted into the created listing record or deleted
   on every other terminal path; promoting a row that was purged fails

Every method opens its own short session from the session factory and
reports database failures as StoreError.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import ReservationLostError, StoreError
from models.base import ListingStatus
from models.reconciled_product import ReconciledProduct

logger = logging.getLogger(__name__)

_RESERVATION_WHERE = text("status = 'processing'")

_SETTLED_EXCLUDED = (ListingStatus.PROCESSING, ListingStatus.CLOSED_DUPLICATE)


class ReconciledProductStore:
    """
    Store for ReconciledProduct rows.

    Args:
        session_factory: ``async_sessionmaker`` producing AsyncSession objects
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @staticmethod
    def _insert_for(session: AsyncSession):
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert
        if dialect == "sqlite":
            return sqlite.insert
        raise StoreError(
            f"Unsupported database dialect for reservations: {dialect}",
            context={"operation": "reserve", "dialect": dialect}
        )

    # ========================================================================
    # Reservations
    # ========================================================================

    async def purge_stale_reservations(self, supplier_id: str, ttl_seconds: int) -> int:
        """Delete processing rows for the id older than ``ttl_seconds``."""
        cutoff = datetime.utcnow() - timedelta(seconds=ttl_seconds)
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    delete(ReconciledProduct).where(
                        ReconciledProduct.supplier_id == supplier_id,
                        ReconciledProduct.status == ListingStatus.PROCESSING,
                        ReconciledProduct.created_at < cutoff,
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(
                f"Failed to purge stale reservations for {supplier_id}",
                context={"operation": "purge", "supplier_id": supplier_id},
                original_exception=e
            )

        if result.rowcount:
            logger.warning(f"Purged {result.rowcount} stale reservation(s) for {supplier_id}")
        return result.rowcount or 0

    async def reserve(self, supplier_id: str, job_id: Optional[str] = None) -> Optional[int]:
        """
        Atomically claim the id.

        Returns:
            The reservation row id, or None when another unit holds it
        """
        now = datetime.utcnow()
        try:
            async with self.session_factory() as session:
                insert = self._insert_for(session)
                stmt = (
                    insert(ReconciledProduct)
                    .values(
                        supplier_id=supplier_id,
                        status=ListingStatus.PROCESSING,
                        job_id=job_id,
                        created_at=now,
                        updated_at=now,
                    )
                    .on_conflict_do_nothing(
                        index_elements=["supplier_id"],
                        index_where=_RESERVATION_WHERE,
                    )
                    .returning(ReconciledProduct.id)
                )
                result = await session.execute(stmt)
                reservation_id = result.scalar_one_or_none()
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(
                f"Failed to reserve {supplier_id}",
                context={"operation": "reserve", "supplier_id": supplier_id},
                original_exception=e
            )

        return reservation_id

    async def holds_reservation(self, reservation_id: int) -> bool:
        """True while the reservation row exists and is still ``processing``."""
        try:
            async with self.session_factory() as session:
                found = await session.scalar(
                    select(ReconciledProduct.id).where(
                        ReconciledProduct.id == reservation_id,
                        ReconciledProduct.status == ListingStatus.PROCESSING,
                    )
                )
        except SQLAlchemyError as e:
            raise StoreError(
                f"Failed to check reservation {reservation_id}",
                context={"operation": "fence", "reservation_id": reservation_id},
                original_exception=e
            )
        return found is not None

    async def release(self, reservation_id: int):
        """Delete a reservation row (no-op once it has been promoted)."""
        try:
            async with self.session_factory() as session:
                await session.execute(
                    delete(ReconciledProduct).where(
                        ReconciledProduct.id == reservation_id,
                        ReconciledProduct.status == ListingStatus.PROCESSING,
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(
                f"Failed to release reservation {reservation_id}",
                context={"operation": "release", "reservation_id": reservation_id},
                original_exception=e
            )

    async def promote_reservation(
        self,
        reservation_id: int,
        supplier_id: str,
        marketplace_id: str,
        price: int,
        title: str,
        source_price: Optional[float] = None,
        region: Optional[str] = None,
        product_type: Optional[str] = None,
        job_id: Optional[str] = None
    ):
        """
        Turn the reservation row into the active record of a new listing.

        Older settled records of the same id are superseded
        (closed_duplicate) in the same transaction.

        Raises:
            ReservationLostError: The reservation no longer exists (purged
                after its TTL); nothing is written
            StoreError: The database failed
        """
        now = datetime.utcnow()
        context = {"operation": "promote", "supplier_id": supplier_id, "marketplace_id": marketplace_id}
        try:
            async with self.session_factory() as session:
                promoted = await session.execute(
                    update(ReconciledProduct)
                    .where(
                        ReconciledProduct.id == reservation_id,
                        ReconciledProduct.status == ListingStatus.PROCESSING,
                    )
                    .values(
                        status=ListingStatus.ACTIVE,
                        marketplace_id=marketplace_id,
                        price=price,
                        title=title,
                        source_price=source_price,
                        region=region,
                        product_type=product_type,
                        job_id=job_id,
                        updated_at=now,
                    )
                )
                if promoted.rowcount != 1:
                    await session.rollback()
                    raise ReservationLostError(
                        f"Reservation {reservation_id} for {supplier_id} expired before "
                        f"listing {marketplace_id} could be recorded",
                        context=dict(context, reservation_id=reservation_id)
                    )

                await session.execute(
                    update(ReconciledProduct)
                    .where(
                        ReconciledProduct.supplier_id == supplier_id,
                        ReconciledProduct.id != reservation_id,
                        ReconciledProduct.status.not_in(_SETTLED_EXCLUDED),
                    )
                    .values(status=ListingStatus.CLOSED_DUPLICATE, updated_at=now)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(
                f"Failed to persist listing {marketplace_id} for {supplier_id}",
                context=context,
                original_exception=e
            )

    # ========================================================================
    # Settled records
    # ========================================================================

    async def records_for(self, supplier_id: str) -> List[ReconciledProduct]:
        """Settled (non-processing, non-duplicate) records, newest first."""
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(ReconciledProduct)
                    .where(
                        ReconciledProduct.supplier_id == supplier_id,
                        ReconciledProduct.status.not_in(_SETTLED_EXCLUDED),
                    )
                    .order_by(ReconciledProduct.created_at.desc(), ReconciledProduct.id.desc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError(
                f"Failed to load records for {supplier_id}",
                context={"operation": "load", "supplier_id": supplier_id},
                original_exception=e
            )

    async def load_for_ids(self, supplier_ids: Iterable[str]) -> Dict[str, List[ReconciledProduct]]:
        """Bulk variant of ``records_for`` keyed by supplier id."""
        ids = list(supplier_ids)
        grouped: Dict[str, List[ReconciledProduct]] = {sid: [] for sid in ids}
        if not ids:
            return grouped

        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(ReconciledProduct)
                    .where(
                        ReconciledProduct.supplier_id.in_(ids),
                        ReconciledProduct.status.not_in(_SETTLED_EXCLUDED),
                    )
                    .order_by(ReconciledProduct.created_at.desc(), ReconciledProduct.id.desc())
                )
                records = result.scalars().all()
        except SQLAlchemyError as e:
            raise StoreError(
                f"Failed to load records for {len(ids)} ids",
                context={"operation": "load", "supplier_ids": ids[:20]},
                original_exception=e
            )

        for record in records:
            grouped.setdefault(record.supplier_id, []).append(record)
        return grouped

    async def set_status(self, record_id: int, status: ListingStatus):
        try:
            async with self.session_factory() as session:
                await session.execute(
                    update(ReconciledProduct)
                    .where(ReconciledProduct.id == record_id)
                    .values(status=status, updated_at=datetime.utcnow())
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(
                f"Failed to mark record {record_id} as {status.value}",
                context={"operation": "mark", "record_id": record_id, "status": status.value},
                original_exception=e
            )

    async def record_update(
        self,
        record_id: int,
        price: int,
        title: str,
        source_price: Optional[float] = None,
        region: Optional[str] = None,
        job_id: Optional[str] = None
    ):
        """Store what was just pushed to the live listing."""
        try:
            async with self.session_factory() as session:
                await session.execute(
                    update(ReconciledProduct)
                    .where(ReconciledProduct.id == record_id)
                    .values(
                        status=ListingStatus.ACTIVE,
                        price=price,
                        title=title,
                        source_price=source_price,
                        region=region,
                        job_id=job_id,
                        updated_at=datetime.utcnow(),
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(
                f"Failed to record update of record {record_id}",
                context={"operation": "update", "record_id": record_id},
                original_exception=e
            )

    async def supplier_ids_with_status(self, statuses: Iterable[ListingStatus]) -> List[str]:
        """Distinct supplier ids having a record in one of ``statuses``."""
        statuses = list(statuses)
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(ReconciledProduct.supplier_id)
                    .where(ReconciledProduct.status.in_(statuses))
                    .distinct()
                    .order_by(ReconciledProduct.supplier_id)
                )
                return [row[0] for row in result.all()]
        except SQLAlchemyError as e:
            raise StoreError(
                "Failed to list supplier ids",
                context={"operation": "list", "statuses": [s.value for s in statuses]},
                original_exception=e
            )
