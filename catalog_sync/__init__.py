"""
Catalog reconciliation pipeline.

This package keeps marketplace listings in line with the supplier catalog:
one supplier id in, at most one live listing out.

Modules:
    executor: HTTP request executor with retry, backoff and error classification
    batch: Bounded-concurrency batch scheduler with unit and chunk timeouts
    pricing: Marketplace price derivation from supplier offer prices
    listing: Titles, descriptions, region checks and item payloads
    recovery: Marketplace validation error categories and corrected retries
    store: Reconciled product records and the reservation protocol
    reconciler: Per-id state machine (reserve, validate, price, update or create)
    orchestrator: Chunked job execution with progress tracking
    jobs: Persistent job registry
    activity: Structured activity log writer
    settings_store: Processing config, marketplace tokens and exchange rate
    service: Wiring used by the API, the scheduler and the CLI
    scheduler: APScheduler integration for periodic resyncs

Subpackages:
    clients: Supplier and marketplace HTTP clients

Architecture:
    Each id goes through the same steps:

    1. Reserve - Claim the id through a partial unique index
    2. Validate - Fetch the supplier product, check stock and region
    3. Price - Derive the marketplace price and check its bounds
    4. Reconcile - Update the live listing, or create a new one

    Skips and per-id errors are recorded as outcomes; authentication
    failures stop the whole job.

Usage:
    from catalog_sync.service import SyncService

Example:
    service = SyncService()
    report = await service.sync(["12345", "67890"])

    print(f"Published {report['summary']['published']} listings")
"""

__all__ = [
    "SyncService",
    "SyncOrchestrator",
    "Reconciler",
    "ReconciledProductStore",
    "SyncScheduler",
]
