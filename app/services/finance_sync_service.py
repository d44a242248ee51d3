"""Finance (escrow) sync for completed orders."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.config import settings
from app.models.order import Order, ORDER_STATUS_COMPLETED
from app.models.order_escrow import OrderEscrow
from app.models.sync_status import SHOP_WIDE_USER_ID
from app.services.activity_logger import ActivityLogger
from app.services.api_call_logger import ApiCallLogger
from app.services.batch_writer import BatchUpsertWriter
from app.services.candidate_selector import count_pending, mark_escrow_fetched, select_pending
from app.services.credential_provider import CredentialProvider, ShopCredentials
from app.services.exceptions import ConfigurationError, RemoteTransientError, public_error
from app.services.notifier import ChangeNotifier
from app.services.remote_fetcher import fetch_escrow_detail
from app.services.shopee_client import ShopeeClient
from app.services.sync_run import SyncPhase, SyncRun
from app.services.sync_status_service import PIPELINE_FINANCE, SyncStatusService

logger = logging.getLogger(__name__)

SYNC_FUNCTION = "finance-sync"


def escrow_to_row(shop_id: int, escrow: Dict[str, Any], synced_at: datetime) -> Dict[str, Any]:
    """Map a get_escrow_detail response to an order_escrows row.

    Every column is present so that an upsert replaces the whole row.
    """
    income = escrow.get("order_income") or {}
    return {
        "shop_id": shop_id,
        "order_sn": escrow["order_sn"],
        "buyer_user_name": escrow.get("buyer_user_name"),
        "return_order_sn_list": escrow.get("return_order_sn_list") or [],
        "escrow_amount": income.get("escrow_amount"),
        "escrow_amount_after_adjustment": income.get("escrow_amount_after_adjustment"),
        "buyer_total_amount": income.get("buyer_total_amount"),
        "original_price": income.get("original_price"),
        "seller_discount": income.get("seller_discount"),
        "shopee_discount": income.get("shopee_discount"),
        "voucher_from_seller": income.get("voucher_from_seller"),
        "voucher_from_shopee": income.get("voucher_from_shopee"),
        "coins": income.get("coins"),
        "buyer_paid_shipping_fee": income.get("buyer_paid_shipping_fee"),
        "actual_shipping_fee": income.get("actual_shipping_fee"),
        "commission_fee": income.get("commission_fee"),
        "service_fee": income.get("service_fee"),
        "seller_transaction_fee": income.get("seller_transaction_fee"),
        "buyer_payment_method": income.get("buyer_payment_method"),
        "items": income.get("items") or [],
        "order_income": income,
        "buyer_payment_info": escrow.get("buyer_payment_info"),
        "synced_at": synced_at,
    }


class FinanceSyncService:
    """Fetches escrow details of completed orders and stores them."""

    def __init__(
        self,
        credential_provider: CredentialProvider,
        status_service: SyncStatusService,
        notifier: ChangeNotifier,
        api_call_logger: Optional[ApiCallLogger] = None,
        activity_logger: Optional[ActivityLogger] = None,
        client_factory: Optional[Callable[[ShopCredentials], Any]] = None,
        batch_size: Optional[int] = None,
        candidate_limit: Optional[int] = None,
        rate_limit_delay: Optional[float] = None
    ):
        """Initialize finance sync service.

        Args:
            credential_provider: Source of shop credentials.
            status_service: SyncStatus reads/writes and run claims.
            notifier: Receives a change event per finished run.
            api_call_logger: Logger handed to the Shopee client.
            activity_logger: Logger for the run outcome.
            client_factory: Builds an async-context-manager client from credentials.
            batch_size: Orders fetched and written per chunk.
            candidate_limit: Maximum orders per run.
            rate_limit_delay: Seconds between escrow calls.
        """
        self.credential_provider = credential_provider
        self.status_service = status_service
        self.notifier = notifier
        self.api_call_logger = api_call_logger
        self.activity_logger = activity_logger
        self.client_factory = client_factory or self._default_client
        self.batch_size = batch_size or settings.finance_batch_size
        self.candidate_limit = candidate_limit or settings.finance_candidate_limit
        self.rate_limit_delay = (
            settings.finance_rate_limit_delay if rate_limit_delay is None else rate_limit_delay
        )
        self.writer = BatchUpsertWriter(OrderEscrow, ["shop_id", "order_sn"], batch_size=self.batch_size)

    def _default_client(self, credentials: ShopCredentials) -> ShopeeClient:
        return ShopeeClient(credentials, call_logger=self.api_call_logger, sync_function=SYNC_FUNCTION)

    async def sync_shop(
        self,
        db: Session,
        shop_id: int,
        force_all: bool = False,
        user_id: str = SHOP_WIDE_USER_ID,
        source: str = "manual"
    ) -> Dict[str, Any]:
        """Sync escrow details for a shop's completed orders.

        Default mode only fetches orders whose escrow was never fetched;
        ``force_all`` re-fetches every completed order (up to the cap).

        Args:
            db: Database session.
            shop_id: Shop to sync.
            force_all: Ignore the is_escrow_fetched flag.
            user_id: Owner of the SyncStatus row.
            source: "manual" or "scheduled", stored in the activity log.

        Returns:
            Dictionary with success, fetched, failed, total and api_calls
            (plus error when the run failed).

        Raises:
            SyncInProgressError: If a finance sync for this shop is already running.
        """
        run = SyncRun(pipeline=PIPELINE_FINANCE, shop_id=shop_id)
        logger.info(f"Starting finance sync for shop {shop_id} (force_all: {force_all})")

        try:
            credentials = self.credential_provider.get_credentials(db, shop_id)
        except ConfigurationError as e:
            run.fail(str(e))
            return self._finish_failed(run, user_id, source)

        self.status_service.claim(db, PIPELINE_FINANCE, shop_id, user_id)
        try:
            await self._run(db, run, credentials, force_all)
            # Stamp before the claim is released so the scheduler sees the run as fresh
            self.status_service.mark_synced(db, PIPELINE_FINANCE, shop_id, user_id)
        except Exception as e:
            db.rollback()
            logger.error(f"Finance sync for shop {shop_id} failed: {e}")
            run.fail(public_error(e))
            return self._finish_failed(run, user_id, source)
        finally:
            self.status_service.release(db, PIPELINE_FINANCE, shop_id, user_id)

        self.notifier.notify(shop_id, OrderEscrow.__tablename__)
        self.notifier.notify(shop_id, Order.__tablename__)

        logger.info(f"Finance sync for shop {shop_id} completed. Fetched: {run.fetched}, Failed: {run.failed}")

        if self.activity_logger:
            self.activity_logger.log_run(
                action_type="finance_sync",
                action_category="finance",
                status="success",
                shop_id=shop_id,
                user_id=None if user_id == SHOP_WIDE_USER_ID else user_id,
                description=f"Escrow sync: {run.fetched}/{run.total} orders",
                source=source,
                response_data=run.counts(),
            )

        return {"success": True, **run.counts()}

    async def _run(self, db: Session, run: SyncRun, credentials: ShopCredentials, force_all: bool) -> None:
        run.advance(SyncPhase.FETCHING)
        orders = select_pending(db, run.shop_id, force_all=force_all, limit=self.candidate_limit)
        run.total = len(orders)

        if not orders:
            logger.info(f"No orders to process for shop {run.shop_id}")
            run.advance(SyncPhase.DONE)
            return

        logger.info(f"Found {run.total} orders to fetch escrow for shop {run.shop_id}")
        order_sns = [order.order_sn for order in orders]
        chunk_count = (len(order_sns) + self.batch_size - 1) // self.batch_size

        async with self.client_factory(credentials) as client:
            for index, start in enumerate(range(0, len(order_sns), self.batch_size), start=1):
                if run.phase == SyncPhase.WRITING:
                    run.advance(SyncPhase.FETCHING)
                logger.info(f"Processing batch {index}/{chunk_count}")

                chunk = order_sns[start:start + self.batch_size]
                rows = await self._fetch_chunk(client, run, chunk)

                run.advance(SyncPhase.WRITING)
                self._write_chunk(db, run, rows)

        run.advance(SyncPhase.DONE)

    async def _fetch_chunk(self, client, run: SyncRun, order_sns: List[str]) -> List[Dict[str, Any]]:
        rows = []
        for order_sn in order_sns:
            if run.api_calls and self.rate_limit_delay:
                await asyncio.sleep(self.rate_limit_delay)

            run.api_calls += 1
            try:
                escrow = await fetch_escrow_detail(client, order_sn)
            except RemoteTransientError as e:
                if not run.made_progress and not rows:
                    # First call of the run: the API is unreachable, give up
                    raise
                logger.warning(f"get_escrow_detail failed for {order_sn}: {e}")
                escrow = None

            if escrow is None:
                run.failed += 1
                continue

            escrow.setdefault("order_sn", order_sn)
            rows.append(escrow_to_row(run.shop_id, escrow, datetime.utcnow()))

        return rows

    def _write_chunk(self, db: Session, run: SyncRun, rows: List[Dict[str, Any]]) -> None:
        if not rows:
            return

        result = self.writer.upsert(db, rows)
        run.fetched += result.written
        run.failed += result.failed

        written_sns = [order_sn for _, order_sn in result.written_keys]
        mark_escrow_fetched(db, run.shop_id, written_sns)

    def _finish_failed(self, run: SyncRun, user_id: str, source: str) -> Dict[str, Any]:
        if self.activity_logger:
            self.activity_logger.log_run(
                action_type="finance_sync",
                action_category="finance",
                status="failed",
                shop_id=run.shop_id,
                user_id=None if user_id == SHOP_WIDE_USER_ID else user_id,
                description="Escrow sync failed",
                source=source,
                error_message=run.error,
            )
        return {"success": False, **run.counts(), "error": run.error}

    def get_stats(self, db: Session, shop_id: int) -> Dict[str, Any]:
        """Finance statistics of a shop.

        Returns:
            Dictionary with total_completed, escrow_fetched, escrow_pending,
            total_escrow_amount and total_gmv.
        """
        completed = db.query(Order).filter(
            Order.shop_id == shop_id,
            Order.order_status == ORDER_STATUS_COMPLETED
        )

        total_completed = completed.count()
        escrow_fetched = completed.filter(Order.is_escrow_fetched.is_(True)).count()
        escrow_pending = count_pending(db, shop_id)

        total_escrow_amount = db.query(
            func.coalesce(func.sum(OrderEscrow.escrow_amount), 0)
        ).filter(OrderEscrow.shop_id == shop_id).scalar()

        total_gmv = db.query(
            func.coalesce(func.sum(Order.total_amount), 0)
        ).filter(
            Order.shop_id == shop_id,
            Order.order_status == ORDER_STATUS_COMPLETED
        ).scalar()

        return {
            "total_completed": total_completed,
            "escrow_fetched": escrow_fetched,
            "escrow_pending": escrow_pending,
            "total_escrow_amount": float(total_escrow_amount or 0),
            "total_gmv": float(total_gmv or 0),
        }
