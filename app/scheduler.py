"""Scheduled escrow sync across shops.

Uses APScheduler to trigger the finance sync twice an hour (minutes 15 and 45,
offset from the order sync).
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.config import settings
from app.models.order import Order, ORDER_STATUS_COMPLETED
from app.models.shop import Shop
from app.models.sync_status import SHOP_WIDE_USER_ID
from app.services.exceptions import SyncInProgressError
from app.services.finance_sync_service import FinanceSyncService
from app.services.sync_status_service import PIPELINE_FINANCE, is_stale

logger = logging.getLogger(__name__)

FINANCE_JOB_ID = "escrow-sync-job"


class ScheduledSync:
    """Runs the finance sync for the shops with the largest escrow backlog."""

    def __init__(
        self,
        finance_sync_service: FinanceSyncService,
        session_factory: Callable[[], Session],
        max_shops: Optional[int] = None,
        stagger_seconds: Optional[float] = None,
        fresh_minutes: Optional[int] = None
    ):
        self.finance_sync_service = finance_sync_service
        self.session_factory = session_factory
        self.max_shops = max_shops or settings.scheduler_max_shops
        self.stagger_seconds = (
            settings.scheduler_shop_stagger_seconds if stagger_seconds is None else stagger_seconds
        )
        self.fresh_minutes = fresh_minutes or settings.scheduler_finance_fresh_minutes

    def select_shops(self, db: Session) -> List[Tuple[int, int]]:
        """Active shops with an access token and pending completed orders.

        Returns:
            (shop_id, pending_count) tuples, largest backlog first.
        """
        pending = func.count(Order.order_sn)
        rows = db.query(Shop.shop_id, pending).join(
            Order, Order.shop_id == Shop.shop_id
        ).filter(
            Shop.access_token_encrypted.isnot(None),
            Shop.status == "active",
            Order.order_status == ORDER_STATUS_COMPLETED,
            or_(Order.is_escrow_fetched.is_(None), Order.is_escrow_fetched.is_(False))
        ).group_by(Shop.shop_id).having(pending > 0).order_by(
            pending.desc()
        ).limit(self.max_shops).all()

        return [(shop_id, count) for shop_id, count in rows]

    async def run_finance_cycle(self) -> Dict[str, Any]:
        """Trigger the finance sync for each selected shop in turn.

        A shop synced within the freshness window is skipped. A failure in one
        shop is logged and the cycle continues with the next.
        """
        summary = {"shops": 0, "synced": 0, "skipped": 0, "failed": 0}
        db = self.session_factory()
        try:
            shops = self.select_shops(db)
            summary["shops"] = len(shops)
            logger.info(f"Escrow sync cycle: {len(shops)} shops with pending orders")

            triggered = 0
            for shop_id, pending_count in shops:
                last_synced_at = self.finance_sync_service.status_service.last_synced_at(
                    db, PIPELINE_FINANCE, shop_id, SHOP_WIDE_USER_ID
                )
                if not is_stale(last_synced_at, self.fresh_minutes):
                    logger.info(f"Shop {shop_id} escrow synced at {last_synced_at}, skipping")
                    summary["skipped"] += 1
                    continue

                # Stagger shops to stay under the escrow API rate limit
                if triggered and self.stagger_seconds:
                    await asyncio.sleep(self.stagger_seconds)
                triggered += 1

                try:
                    result = await self.finance_sync_service.sync_shop(db, shop_id, source="scheduled")
                except SyncInProgressError:
                    summary["skipped"] += 1
                    continue
                except Exception as e:
                    logger.error(f"Scheduled escrow sync for shop {shop_id} failed: {e}")
                    db.rollback()
                    summary["failed"] += 1
                    continue

                if result.get("success"):
                    summary["synced"] += 1
                    logger.info(
                        f"Triggered escrow sync for shop {shop_id} ({pending_count} pending orders) "
                        f"[{summary['synced']}/{len(shops)}]"
                    )
                else:
                    summary["failed"] += 1
                    logger.warning(f"Escrow sync for shop {shop_id} failed: {result.get('error')}")
        finally:
            db.close()

        logger.info(
            f"Escrow sync cycle completed: {summary['synced']}/{summary['shops']} shops synced, "
            f"{summary['skipped']} skipped, {summary['failed']} failed"
        )
        return summary


def create_scheduler(scheduled_sync: ScheduledSync) -> AsyncIOScheduler:
    """Build the scheduler with the escrow sync job registered."""
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        scheduled_sync.run_finance_cycle,
        trigger=CronTrigger(minute="15,45"),
        id=FINANCE_JOB_ID,
        name="Escrow sync for shops with pending completed orders",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler
