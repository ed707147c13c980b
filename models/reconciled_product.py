from sqlalchemy import Column, String, Integer, Float, DateTime, Index, text
from datetime import datetime
from models.base import Base, BigIntegerPK, ListingStatus, enum_column_type


class ReconciledProduct(Base):
    """
    Links a supplier product id to a marketplace listing.

    Purpose:
    - Remember which marketplace listing represents a supplier product
    - Last price/title pushed to the marketplace (update diffing)
    - Reservation rows (status=processing) for per-id mutual exclusion

    Design Decisions:
    - A partial unique index on supplier_id for processing rows makes the
      reservation an atomic insert: at most one unit can hold an id
    - A partial unique index on marketplace_id for every non-duplicate row
      keeps a listing referenced by at most one live record
    - Superseded records are kept as closed_duplicate for auditing
    """
    __tablename__ = "reconciled_products"

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)

    # Identity
    supplier_id = Column(String(64), nullable=False, index=True)
    marketplace_id = Column(String(64), nullable=True)

    status = Column(
        enum_column_type(ListingStatus),
        nullable=False,
        default=ListingStatus.PROCESSING,
        index=True
    )

    # Last published listing state
    price = Column(Integer, nullable=True)
    source_price = Column(Float, nullable=True)
    title = Column(String(120), nullable=True)
    region = Column(String(255), nullable=True)
    product_type = Column(String(32), nullable=True)

    # Job that created or last touched the record
    job_id = Column(String(36), nullable=True, index=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Indexes
    __table_args__ = (
        Index(
            "uq_reconciled_supplier_processing",
            "supplier_id",
            unique=True,
            postgresql_where=text("status = 'processing'"),
            sqlite_where=text("status = 'processing'"),
        ),
        Index(
            "uq_reconciled_marketplace_live",
            "marketplace_id",
            unique=True,
            postgresql_where=text("status <> 'closed_duplicate'"),
            sqlite_where=text("status <> 'closed_duplicate'"),
        ),
        Index("idx_reconciled_supplier_status", "supplier_id", "status"),
    )

    def __repr__(self):
        return (
            f"<ReconciledProduct(supplier_id={self.supplier_id}, "
            f"marketplace_id={self.marketplace_id}, status={self.status})>"
        )
