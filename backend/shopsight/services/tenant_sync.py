"""
Tenant sync service: Shopify connection and the full-sync state machine.

States:
    NEVER -> IN_PROGRESS -> {COMPLETED, FAILED}
    COMPLETED | FAILED -> IN_PROGRESS   (next manual or periodic trigger)

Entering IN_PROGRESS is an atomic compare-and-set committed before the first
page fetch, so concurrent triggers observe it. A stale IN_PROGRESS (process
crash mid-sync) becomes eligible again once its lease expires.

A full sync pages customers, then products, then orders; every record of a
page is mapped and reconciled before the next page is requested. Stages that
finished before a failure stay committed: sync is not transactional across
entity kinds.

SECURITY: All operations are tenant-scoped via tenant_id from JWT (manual)
or the tenant scan (periodic).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from shopsight.config.settings import IngestionSettings, get_ingestion_settings
from shopsight.ingestion.field_mapper import PayloadMappingError, map_record
from shopsight.ingestion.kinds import SYNC_ORDER, EntityKind
from shopsight.ingestion.reconciler import IngestionReconciler
from shopsight.integrations.shopify.client import ShopifyCatalogClient, normalize_shop_domain
from shopsight.integrations.shopify.exceptions import ShopifyAPIError
from shopsight.models.customer import Customer
from shopsight.models.order import Order
from shopsight.models.product import Product
from shopsight.models.tenant import SyncStatus, Tenant, as_utc
from shopsight.platform.secrets import decrypt_secret, encrypt_secret, redact_secrets

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, str, Optional[str]], ShopifyCatalogClient]

SETUP_STAGE = "setup"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TenantSyncError(Exception):
    """Base exception for tenant sync errors."""
    pass


class TenantNotFoundError(TenantSyncError):
    """Tenant does not exist."""
    pass


class ShopifyNotConnectedError(TenantSyncError):
    """Tenant has no verified Shopify connection."""
    pass


class ShopifyConnectionFailedError(TenantSyncError):
    """Credential verification against Shopify failed."""
    pass


class SyncAlreadyInProgressError(TenantSyncError):
    """Another sync holds a live lease for this tenant."""
    pass


class SyncStageError(TenantSyncError):
    """A sync stage failed; carries the stage name and the cause."""

    def __init__(self, stage: str, cause: Exception):
        super().__init__(f"{stage}: {cause}")
        self.stage = stage
        self.cause = cause


@dataclass
class SyncResult:
    """Outcome of one full sync."""
    success: bool
    message: str
    counts: Dict[str, int] = field(default_factory=dict)
    completed_at: Optional[datetime] = None
    failed_stage: Optional[str] = None


@dataclass
class ConnectionStatus:
    connected: bool
    shop_domain: Optional[str]
    sync_status: SyncStatus
    last_sync_at: Optional[datetime]
    sync_message: Optional[str]
    counts: Dict[str, int] = field(default_factory=dict)


def format_success_message(counts: Dict[str, int]) -> str:
    return "Successfully synced {} customers, {} products, {} orders".format(
        counts.get(EntityKind.CUSTOMERS.value, 0),
        counts.get(EntityKind.PRODUCTS.value, 0),
        counts.get(EntityKind.ORDERS.value, 0),
    )


def select_tenants_for_sync(
    db_session: Session,
    now: Optional[datetime] = None,
    lease_minutes: Optional[int] = None,
) -> List[str]:
    """
    Tenant ids eligible for the periodic sync.

    Eligible: active, connected, and not IN_PROGRESS (or IN_PROGRESS with an
    expired lease).
    """
    now = now or _utcnow()
    if lease_minutes is None:
        lease_minutes = get_ingestion_settings().sync_lease_minutes
    cutoff = now - timedelta(minutes=lease_minutes)

    rows = (
        db_session.query(Tenant.id)
        .filter(
            Tenant.is_active.is_(True),
            Tenant.shopify_connected.is_(True),
            Tenant.shop_domain.isnot(None),
            or_(
                Tenant.sync_status != SyncStatus.IN_PROGRESS,
                Tenant.sync_started_at.is_(None),
                Tenant.sync_started_at <= cutoff,
            ),
        )
        .order_by(Tenant.id)
        .all()
    )
    return [row[0] for row in rows]


class TenantSyncService:
    """
    Connects a tenant to Shopify and runs full syncs for it.

    SECURITY: tenant_id comes from the verified context, never from input.
    """

    def __init__(
        self,
        db_session: Session,
        tenant_id: str,
        client_factory: Optional[ClientFactory] = None,
        settings: Optional[IngestionSettings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize the service.

        Args:
            db_session: Database session
            tenant_id: Tenant ID from JWT or the tenant scan
            client_factory: Builds a catalog client from (domain, token, api_version)
            settings: Ingestion settings (default: singleton)
            clock: Current-time source

        Raises:
            ValueError: If tenant_id is empty or None
        """
        if not tenant_id:
            raise ValueError("tenant_id is required")

        self.db = db_session
        self.tenant_id = tenant_id
        self.settings = settings or get_ingestion_settings()
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock

    def _default_client_factory(
        self, shop_domain: str, access_token: str, api_version: Optional[str]
    ) -> ShopifyCatalogClient:
        return ShopifyCatalogClient(
            shop_domain,
            access_token,
            api_version=api_version,
            settings=self.settings,
        )

    def get_tenant(self) -> Tenant:
        tenant = self.db.query(Tenant).filter(Tenant.id == self.tenant_id).populate_existing().first()
        if tenant is None:
            raise TenantNotFoundError(f"Tenant {self.tenant_id} not found")
        return tenant

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connect(self, shop_domain: str, access_token: str) -> Tenant:
        """
        Verify the credential against Shopify and persist it on success.

        Raises:
            TenantNotFoundError: unknown tenant
            ShopifyConnectionFailedError: invalid domain, domain owned by
                another tenant, or Shopify rejected the credential
        """
        tenant = self.get_tenant()

        try:
            domain = normalize_shop_domain(shop_domain)
        except ValueError as e:
            raise ShopifyConnectionFailedError(str(e))

        if not access_token:
            raise ShopifyConnectionFailedError("Shopify access token is required")

        owner = (
            self.db.query(Tenant.id)
            .filter(Tenant.shop_domain == domain, Tenant.id != self.tenant_id)
            .first()
        )
        if owner is not None:
            raise ShopifyConnectionFailedError(
                f"Shop {domain} is already connected to another account"
            )

        api_version = self.settings.api_version
        try:
            with self._client_factory(domain, access_token, api_version) as client:
                shop = client.verify_connection()
        except ShopifyAPIError as e:
            logger.warning(
                "Shopify credential verification failed",
                extra=redact_secrets({
                    "tenant_id": self.tenant_id,
                    "shop_domain": domain,
                    "status_code": e.status_code,
                    "error": e.message,
                }),
            )
            raise ShopifyConnectionFailedError(f"Failed to connect to Shopify: {e.message}") from e

        tenant.shop_domain = domain
        tenant.shopify_access_token_encrypted = encrypt_secret(access_token)
        tenant.shopify_api_version = api_version
        tenant.shopify_connected = True
        self.db.commit()

        logger.info(
            "Shopify store connected",
            extra={
                "tenant_id": self.tenant_id,
                "shop_domain": domain,
                "shop_name": shop.get("name"),
            },
        )
        return tenant

    def get_connection_status(self) -> ConnectionStatus:
        tenant = self.get_tenant()
        return ConnectionStatus(
            connected=bool(tenant.shopify_connected),
            shop_domain=tenant.shop_domain,
            sync_status=tenant.sync_status,
            last_sync_at=as_utc(tenant.last_sync_at),
            sync_message=tenant.sync_message,
            counts=self._stored_counts(),
        )

    def _stored_counts(self) -> Dict[str, int]:
        def count(model) -> int:
            return self.db.query(func.count(model.id)).filter(model.tenant_id == self.tenant_id).scalar() or 0

        return {
            EntityKind.CUSTOMERS.value: count(Customer),
            EntityKind.PRODUCTS.value: count(Product),
            EntityKind.ORDERS.value: count(Order),
        }

    # ------------------------------------------------------------------
    # Full sync
    # ------------------------------------------------------------------

    def sync_all_data(self) -> SyncResult:
        """
        Run one full sync: customers, products, orders.

        Returns:
            SyncResult (success or failure; stage failures do not raise)

        Raises:
            TenantNotFoundError: unknown tenant
            ShopifyNotConnectedError: no verified connection
            SyncAlreadyInProgressError: another sync holds a live lease
        """
        tenant = self.get_tenant()
        if not tenant.shopify_connected or not tenant.shop_domain:
            raise ShopifyNotConnectedError("Shopify store is not connected")

        self._begin_sync()

        counts: Dict[str, int] = {kind.value: 0 for kind in SYNC_ORDER}
        try:
            self._run_stages(counts)
        except SyncStageError as e:
            return self._finish_failed(e, counts)

        return self._finish_completed(counts)

    def _begin_sync(self) -> None:
        """Compare-and-set into IN_PROGRESS, committed immediately."""
        now = self._clock()
        cutoff = now - timedelta(minutes=self.settings.sync_lease_minutes)

        updated = (
            self.db.query(Tenant)
            .filter(
                Tenant.id == self.tenant_id,
                or_(
                    Tenant.sync_status != SyncStatus.IN_PROGRESS,
                    Tenant.sync_started_at.is_(None),
                    Tenant.sync_started_at <= cutoff,
                ),
            )
            .update(
                {
                    Tenant.sync_status: SyncStatus.IN_PROGRESS,
                    Tenant.sync_started_at: now,
                    Tenant.sync_message: "Sync in progress",
                },
                synchronize_session=False,
            )
        )
        self.db.commit()

        if updated == 0:
            raise SyncAlreadyInProgressError("A sync is already in progress for this store")

        logger.info("Tenant sync started", extra={"tenant_id": self.tenant_id})

    def _run_stages(self, counts: Dict[str, int]) -> None:
        try:
            tenant = self.get_tenant()
            access_token = decrypt_secret(tenant.shopify_access_token_encrypted)
            client = self._client_factory(
                tenant.shop_domain,
                access_token,
                tenant.shopify_api_version or self.settings.api_version,
            )
        except Exception as e:
            raise SyncStageError(SETUP_STAGE, e) from e

        reconciler = IngestionReconciler(self.db, self.tenant_id)
        with client:
            for kind in SYNC_ORDER:
                try:
                    counts[kind.value] = self._sync_kind(client, reconciler, kind)
                except Exception as e:
                    raise SyncStageError(kind.value, e) from e

    def _sync_kind(
        self,
        client: ShopifyCatalogClient,
        reconciler: IngestionReconciler,
        kind: EntityKind,
    ) -> int:
        """Page through one entity kind until no continuation cursor remains."""
        synced = 0
        cursor: Optional[str] = None
        pages = 0

        while True:
            page = client.fetch_page(kind, cursor=cursor, page_size=self.settings.page_size)
            pages += 1

            for raw in page.records:
                try:
                    mapped = map_record(kind, raw)
                except PayloadMappingError as e:
                    logger.warning(
                        "Skipping unmappable record",
                        extra={
                            "tenant_id": self.tenant_id,
                            "entity_kind": kind.value,
                            "error": str(e),
                        },
                    )
                    continue
                reconciler.upsert(kind, mapped)
                synced += 1

            if not page.next_cursor:
                break
            cursor = page.next_cursor

        logger.info(
            "Sync stage completed",
            extra={
                "tenant_id": self.tenant_id,
                "entity_kind": kind.value,
                "records": synced,
                "pages": pages,
            },
        )
        return synced

    def _finish_completed(self, counts: Dict[str, int]) -> SyncResult:
        completed_at = self._clock()
        message = format_success_message(counts)

        tenant = self.get_tenant()
        tenant.sync_status = SyncStatus.COMPLETED
        tenant.sync_message = message
        tenant.last_sync_at = completed_at
        tenant.sync_started_at = None
        self.db.commit()

        logger.info(
            "Tenant sync completed",
            extra={"tenant_id": self.tenant_id, "counts": counts},
        )
        return SyncResult(success=True, message=message, counts=dict(counts), completed_at=completed_at)

    def _finish_failed(self, error: SyncStageError, counts: Dict[str, int]) -> SyncResult:
        self.db.rollback()

        completed_at = self._clock()
        message = f"Sync failed at {error.stage} stage: {error.cause}"

        tenant = self.get_tenant()
        tenant.sync_status = SyncStatus.FAILED
        tenant.sync_message = message
        tenant.sync_started_at = None
        self.db.commit()

        logger.error(
            "SYNC_FAILURE_ALERT: Tenant sync failed",
            extra=redact_secrets({
                "tenant_id": self.tenant_id,
                "stage": error.stage,
                "error": str(error.cause),
                "error_type": type(error.cause).__name__,
                "counts": counts,
            }),
        )
        return SyncResult(
            success=False,
            message=message,
            counts=dict(counts),
            completed_at=completed_at,
            failed_stage=error.stage,
        )
