"""Flash sale sync: paginated fetch, batched upsert and stale cleanup."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.models.flash_sale import FlashSale
from app.models.sync_status import SyncStatus
from app.services.activity_logger import ActivityLogger
from app.services.api_call_logger import ApiCallLogger
from app.services.batch_writer import BatchUpsertWriter
from app.services.credential_provider import CredentialProvider, ShopCredentials
from app.services.exceptions import ConfigurationError, public_error
from app.services.notifier import ChangeNotifier
from app.services.remote_fetcher import fetch_flash_sale_page, fetch_pages
from app.services.shopee_client import ShopeeClient
from app.services.stale_reaper import reap_stale
from app.services.sync_run import SyncPhase, SyncRun
from app.services.sync_status_service import PIPELINE_FLASH_SALES, SyncStatusService, is_stale

logger = logging.getLogger(__name__)

SYNC_FUNCTION = "flash-sale-sync"


def flash_sale_to_row(shop_id: int, user_id: str, sale: Dict[str, Any], synced_at: datetime) -> Dict[str, Any]:
    """Map a flash_sale_list entry to a flash_sales row."""
    return {
        "shop_id": shop_id,
        "flash_sale_id": sale["flash_sale_id"],
        "timeslot_id": sale.get("timeslot_id"),
        "status": sale.get("status"),
        "start_time": sale.get("start_time"),
        "end_time": sale.get("end_time"),
        "enabled_item_count": sale.get("enabled_item_count") or 0,
        "item_count": sale.get("item_count") or 0,
        "type": sale.get("type"),
        "remindme_count": sale.get("remindme_count") or 0,
        "click_count": sale.get("click_count") or 0,
        "raw_response": sale,
        "synced_by": user_id,
        "synced_at": synced_at,
    }


class FlashSaleSyncService:
    """Keeps the flash_sales table in line with a shop's flash sale list."""

    def __init__(
        self,
        credential_provider: CredentialProvider,
        status_service: SyncStatusService,
        notifier: ChangeNotifier,
        api_call_logger: Optional[ApiCallLogger] = None,
        activity_logger: Optional[ActivityLogger] = None,
        client_factory: Optional[Callable[[ShopCredentials], Any]] = None,
        page_size: Optional[int] = None,
        batch_size: Optional[int] = None,
        stale_minutes: Optional[int] = None
    ):
        self.credential_provider = credential_provider
        self.status_service = status_service
        self.notifier = notifier
        self.api_call_logger = api_call_logger
        self.activity_logger = activity_logger
        self.client_factory = client_factory or self._default_client
        self.page_size = page_size or settings.flash_sale_page_size
        self.stale_minutes = stale_minutes or settings.flash_sale_stale_minutes
        self.writer = BatchUpsertWriter(
            FlashSale,
            ["shop_id", "flash_sale_id"],
            batch_size=batch_size or settings.upsert_batch_size
        )

    def _default_client(self, credentials: ShopCredentials) -> ShopeeClient:
        return ShopeeClient(credentials, call_logger=self.api_call_logger, sync_function=SYNC_FUNCTION)

    def get_status(self, db: Session, shop_id: int, user_id: str) -> Dict[str, Any]:
        """Last sync time, staleness and running state for a shop and user."""
        last_synced_at = self.status_service.last_synced_at(db, PIPELINE_FLASH_SALES, shop_id, user_id)
        return {
            "shop_id": shop_id,
            "user_id": user_id,
            "last_synced_at": last_synced_at.isoformat() if last_synced_at else None,
            "is_stale": is_stale(last_synced_at, self.stale_minutes),
            "is_syncing": self.status_service.is_running(db, PIPELINE_FLASH_SALES, shop_id, user_id),
        }

    async def sync_if_stale(self, db: Session, shop_id: int, user_id: str) -> Optional[Dict[str, Any]]:
        """Run a sync only when the last one is older than the stale window.

        Returns:
            The sync result, or None when data is fresh or a run is already going.
        """
        last_synced_at = self.status_service.last_synced_at(db, PIPELINE_FLASH_SALES, shop_id, user_id)
        if not is_stale(last_synced_at, self.stale_minutes):
            logger.info(f"Flash sales of shop {shop_id} are fresh (synced at {last_synced_at}), skipping")
            return None

        if self.status_service.is_running(db, PIPELINE_FLASH_SALES, shop_id, user_id):
            return None

        return await self.sync(db, shop_id, user_id)

    async def sync(self, db: Session, shop_id: int, user_id: str, source: str = "manual") -> Dict[str, Any]:
        """Fetch every flash sale of a shop and store it.

        Rows that the remote no longer lists are deleted, but only when the
        fetch collected the full reported total and every batch was written.

        Args:
            db: Database session.
            shop_id: Shop to sync.
            user_id: User triggering the sync.
            source: "manual" or "scheduled".

        Returns:
            Dictionary with success, synced, total, failed, api_calls, pages
            and reaped (plus error when the run failed).

        Raises:
            SyncInProgressError: If a flash sale sync for this shop and user is running.
        """
        run = SyncRun(pipeline=PIPELINE_FLASH_SALES, shop_id=shop_id)
        logger.info(f"Starting flash sale sync for shop {shop_id} (user {user_id})")

        try:
            credentials = self.credential_provider.get_credentials(db, shop_id)
        except ConfigurationError as e:
            run.fail(str(e))
            return self._finish_failed(run, user_id, source)

        self.status_service.claim(db, PIPELINE_FLASH_SALES, shop_id, user_id)
        try:
            fetched_count = await self._run(db, run, credentials, user_id)
            self.status_service.mark_synced(db, PIPELINE_FLASH_SALES, shop_id, user_id)
        except Exception as e:
            db.rollback()
            logger.error(f"Flash sale sync for shop {shop_id} failed: {e}")
            run.fail(public_error(e))
            return self._finish_failed(run, user_id, source)
        finally:
            self.status_service.release(db, PIPELINE_FLASH_SALES, shop_id, user_id)

        self.notifier.notify(shop_id, FlashSale.__tablename__)
        self.notifier.notify(shop_id, SyncStatus.__tablename__)

        logger.info(
            f"Done: {fetched_count} flash sales for shop {shop_id} in {run.api_calls} API calls "
            f"(written: {run.fetched}, failed: {run.failed}, reaped: {run.reaped})"
        )

        if self.activity_logger:
            self.activity_logger.log_run(
                action_type="flash_sale_sync",
                action_category="flash_sale",
                status="success",
                shop_id=shop_id,
                user_id=user_id,
                description=f"Flash sale sync: {fetched_count}/{run.total} programs",
                source=source,
                response_data={
                    "synced_count": run.fetched,
                    "total_count": run.total,
                    "api_calls": run.api_calls,
                },
            )

        return self._response(run, success=True)

    async def _run(self, db: Session, run: SyncRun, credentials: ShopCredentials, user_id: str) -> int:
        run.advance(SyncPhase.FETCHING)
        async with self.client_factory(credentials) as client:
            result = await fetch_pages(
                lambda offset, limit: fetch_flash_sale_page(client, offset, limit),
                self.page_size
            )

        run.total = result.total_count
        run.pages = result.pages
        run.api_calls = result.api_calls
        run.exhaustive = result.exhaustive
        run.fetch_error = result.error

        if not result.items:
            run.advance(SyncPhase.DONE)
            return 0

        run.advance(SyncPhase.WRITING)
        synced_at = datetime.utcnow()
        rows = self._dedupe(
            [flash_sale_to_row(run.shop_id, user_id, sale, synced_at) for sale in result.items]
        )
        upsert = self.writer.upsert(db, rows)
        run.fetched = upsert.written
        run.failed = upsert.failed

        if run.exhaustive and upsert.written > 0 and upsert.failed == 0:
            run.advance(SyncPhase.REAPING)
            run.reaped = reap_stale(db, FlashSale, run.shop_id, synced_at, exhaustive=True)

        run.advance(SyncPhase.DONE)
        return len(result.items)

    @staticmethod
    def _dedupe(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        # Offset pages can overlap when sales are added mid-fetch; one row per key in a statement
        by_id: Dict[Any, Dict[str, Any]] = {}
        for row in rows:
            by_id[row["flash_sale_id"]] = row
        return list(by_id.values())

    @staticmethod
    def _response(run: SyncRun, success: bool) -> Dict[str, Any]:
        response = {
            "success": success,
            "synced": run.fetched,
            "total": run.total,
            "failed": run.failed,
            "api_calls": run.api_calls,
            "pages": run.pages,
            "reaped": run.reaped,
        }
        if run.error:
            response["error"] = run.error
        if run.fetch_error:
            response["fetch_error"] = run.fetch_error
        return response

    def _finish_failed(self, run: SyncRun, user_id: str, source: str) -> Dict[str, Any]:
        if self.activity_logger:
            self.activity_logger.log_run(
                action_type="flash_sale_sync",
                action_category="flash_sale",
                status="failed",
                shop_id=run.shop_id,
                user_id=user_id,
                description="Flash sale sync failed",
                source=source,
                error_message=run.error,
            )
        return self._response(run, success=False)
