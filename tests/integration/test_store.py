"""
Reservation protocol and record store tests (SQLite via aiosqlite)
"""

import asyncio
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from catalog_sync.store import ReconciledProductStore
from core.exceptions import ReservationLostError, StoreError
from models.base import ListingStatus
from models.reconciled_product import ReconciledProduct


async def add_record(session_factory, supplier_id, marketplace_id, status=ListingStatus.ACTIVE,
                     price=18990, age_seconds=3600):
    created = datetime.utcnow() - timedelta(seconds=age_seconds)
    async with session_factory() as session:
        record = ReconciledProduct(
            supplier_id=supplier_id,
            marketplace_id=marketplace_id,
            status=status,
            price=price,
            title="Hollow Knight | Steam Código Digital",
            created_at=created,
            updated_at=created,
        )
        session.add(record)
        await session.commit()
        return record.id


@pytest.mark.asyncio
async def test_reserve_is_exclusive(store):
    first = await store.reserve("100", "job-a")
    second = await store.reserve("100", "job-b")

    assert first is not None
    assert second is None


@pytest.mark.asyncio
async def test_concurrent_reservations_single_winner(store):
    results = await asyncio.gather(*(store.reserve("200") for _ in range(5)))
    assert len([r for r in results if r is not None]) == 1


@pytest.mark.asyncio
async def test_release_allows_new_reservation(store):
    reservation = await store.reserve("300")
    await store.release(reservation)

    assert await store.reserve("300") is not None


@pytest.mark.asyncio
async def test_stale_reservations_are_purged(store, session_factory):
    reservation = await store.reserve("400")
    async with session_factory() as session:
        await session.execute(
            update(ReconciledProduct)
            .where(ReconciledProduct.id == reservation)
            .values(created_at=datetime.utcnow() - timedelta(hours=1))
        )
        await session.commit()

    assert await store.purge_stale_reservations("400", ttl_seconds=900) == 1
    assert await store.reserve("400") is not None


@pytest.mark.asyncio
async def test_fresh_reservations_are_not_purged(store):
    await store.reserve("450")
    assert await store.purge_stale_reservations("450", ttl_seconds=900) == 0


@pytest.mark.asyncio
async def test_promote_supersedes_older_records(store, session_factory):
    old_id = await add_record(session_factory, "500", "MLC1", status=ListingStatus.CLOSED)
    reservation = await store.reserve("500")

    await store.promote_reservation(
        reservation, "500", "MLC2", price=18990, title="Hollow Knight | Steam Código Digital",
        source_price=10.0, region="Region Free", product_type="key", job_id="job-1",
    )
    await store.release(reservation)

    async with session_factory() as session:
        rows = {r.id: r for r in (await session.execute(select(ReconciledProduct))).scalars()}

    assert rows[old_id].status == ListingStatus.CLOSED_DUPLICATE
    assert rows[reservation].status == ListingStatus.ACTIVE
    assert rows[reservation].marketplace_id == "MLC2"
    assert [r.marketplace_id for r in await store.records_for("500")] == ["MLC2"]


@pytest.mark.asyncio
async def test_records_for_excludes_reservations_and_duplicates(store, session_factory):
    await add_record(session_factory, "600", "MLC10", age_seconds=100)
    await add_record(session_factory, "600", "MLC11", status=ListingStatus.CLOSED_DUPLICATE)
    await add_record(session_factory, "600", "MLC12", status=ListingStatus.PAUSED, age_seconds=50)
    await store.reserve("600")

    records = await store.records_for("600")
    assert [r.marketplace_id for r in records] == ["MLC12", "MLC10"]

    grouped = await store.load_for_ids(["600", "601"])
    assert len(grouped["600"]) == 2
    assert grouped["601"] == []


@pytest.mark.asyncio
async def test_supplier_ids_with_status(store, session_factory):
    await add_record(session_factory, "700", "MLC20")
    await add_record(session_factory, "701", "MLC21", status=ListingStatus.PAUSED)
    await add_record(session_factory, "702", "MLC22", status=ListingStatus.CLOSED)

    ids = await store.supplier_ids_with_status([ListingStatus.ACTIVE, ListingStatus.PAUSED])
    assert ids == ["700", "701"]


@pytest.mark.asyncio
async def test_holds_reservation_until_released(store):
    reservation = await store.reserve("800")
    assert await store.holds_reservation(reservation) is True

    await store.release(reservation)
    assert await store.holds_reservation(reservation) is False


@pytest.mark.asyncio
async def test_promoting_a_purged_reservation_fails_without_writing(store, session_factory):
    old_id = await add_record(session_factory, "810", "MLC30")
    reservation = await store.reserve("810")
    async with session_factory() as session:
        await session.execute(delete(ReconciledProduct).where(ReconciledProduct.id == reservation))
        await session.commit()

    with pytest.raises(ReservationLostError) as exc_info:
        await store.promote_reservation(reservation, "810", "MLC31", price=18990, title="Celeste | Steam")

    assert exc_info.value.context["operation"] == "promote"
    records = await store.records_for("810")
    assert [r.id for r in records] == [old_id]
    assert records[0].status == ListingStatus.ACTIVE


# ============================================================================
# Database failures
# ============================================================================

@pytest_asyncio.fixture
async def broken_store(tmp_path):
    """Store over a database without tables: every statement fails"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}", poolclass=NullPool)
    yield ReconciledProductStore(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))
    await engine.dispose()


@pytest.mark.asyncio
@pytest.mark.parametrize("operation, call", [
    ("purge", lambda s: s.purge_stale_reservations("1", ttl_seconds=900)),
    ("reserve", lambda s: s.reserve("1")),
    ("fence", lambda s: s.holds_reservation(1)),
    ("release", lambda s: s.release(1)),
    ("promote", lambda s: s.promote_reservation(1, "1", "MLC1", price=18990, title="Celeste | Steam")),
    ("load", lambda s: s.records_for("1")),
    ("load", lambda s: s.load_for_ids(["1", "2"])),
    ("mark", lambda s: s.set_status(1, ListingStatus.PAUSED)),
    ("update", lambda s: s.record_update(1, price=18990, title="Celeste | Steam")),
    ("list", lambda s: s.supplier_ids_with_status([ListingStatus.ACTIVE])),
])
async def test_database_failures_raise_store_error(broken_store, operation, call):
    with pytest.raises(StoreError) as exc_info:
        await call(broken_store)

    assert exc_info.value.context["operation"] == operation
    assert exc_info.value.original_exception is not None
