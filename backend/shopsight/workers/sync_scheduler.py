"""
Periodic Shopify Sync Worker.

Background job that keeps every connected store current by running a full
sync (customers, products, orders) for each eligible tenant:
- active and connected
- not IN_PROGRESS, or IN_PROGRESS with an expired lease

Tenants are synced sequentially, one full sync at a time.

Run as: python -m shopsight.workers.sync_scheduler

Configuration (config/ingestion.yml, env overrides):
- SYNC_INTERVAL_SECONDS: Seconds between cycles (default: 900)
- SYNC_SCHEDULER_ENABLED: Set to false to idle the worker (default: true)
- SYNC_LEASE_MINUTES: Lease after which a stuck sync is retried (default: 120)
"""

import logging
import signal
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from shopsight.config.settings import get_ingestion_settings
from shopsight.database.session import session_scope
from shopsight.services.tenant_sync import (
    SyncAlreadyInProgressError,
    TenantSyncService,
    select_tenants_for_sync,
)

logger = logging.getLogger(__name__)

ServiceFactory = Callable[[Session, str], TenantSyncService]

_shutdown = False


def _handle_signal(signum, frame):
    global _shutdown
    logger.info("Shutdown signal received", extra={"signal": signum})
    _shutdown = True


@dataclass
class SyncCycleStats:
    """Track sync cycle statistics."""
    tenants_selected: int = 0
    tenants_synced: int = 0
    tenants_failed: int = 0
    tenants_skipped: int = 0
    errors: int = 0
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        duration = (datetime.now(timezone.utc) - self.start_time).total_seconds()
        return {
            "tenants_selected": self.tenants_selected,
            "tenants_synced": self.tenants_synced,
            "tenants_failed": self.tenants_failed,
            "tenants_skipped": self.tenants_skipped,
            "errors": self.errors,
            "duration_seconds": round(duration, 2),
        }


def _sync_tenant(db: Session, tenant_id: str, service_factory: ServiceFactory, stats: SyncCycleStats) -> None:
    try:
        result = service_factory(db, tenant_id).sync_all_data()
    except SyncAlreadyInProgressError:
        logger.info("Tenant sync already running, skipped", extra={"tenant_id": tenant_id})
        stats.tenants_skipped += 1
        return
    except Exception:
        logger.error("Tenant sync crashed", extra={"tenant_id": tenant_id}, exc_info=True)
        db.rollback()
        stats.errors += 1
        return

    if result.success:
        stats.tenants_synced += 1
    else:
        stats.tenants_failed += 1


def run_cycle(
    db: Optional[Session] = None,
    service_factory: Optional[ServiceFactory] = None,
    now: Optional[datetime] = None,
) -> SyncCycleStats:
    """Run one sync pass over every eligible tenant."""
    stats = SyncCycleStats()
    settings = get_ingestion_settings()
    factory = service_factory or (lambda session, tenant_id: TenantSyncService(session, tenant_id))

    def _run(session: Session) -> None:
        tenant_ids = select_tenants_for_sync(
            session,
            now=now or datetime.now(timezone.utc),
            lease_minutes=settings.sync_lease_minutes,
        )
        stats.tenants_selected = len(tenant_ids)
        for tenant_id in tenant_ids:
            if _shutdown:
                break
            _sync_tenant(session, tenant_id, factory, stats)

    try:
        if db is not None:
            _run(db)
        else:
            with session_scope() as session:
                _run(session)
    except Exception:
        logger.error("Sync cycle failed", exc_info=True)
        stats.errors += 1

    logger.info("Sync cycle complete", extra=stats.to_dict())
    return stats


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    settings = get_ingestion_settings()
    interval = int(settings.sync_interval_seconds)

    logger.info(
        "Sync scheduler worker started",
        extra={"interval_seconds": interval, "enabled": settings.scheduler_enabled},
    )

    while not _shutdown:
        if settings.scheduler_enabled:
            run_cycle()
        # Sleep in 1-second increments for responsive shutdown
        for _ in range(interval):
            if _shutdown:
                break
            time.sleep(1)

    logger.info("Sync scheduler worker stopped")


if __name__ == "__main__":
    main()
