"""Tests for the finance (escrow) sync pipeline."""

import pytest
from unittest.mock import MagicMock, patch
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from app.models import Order, OrderEscrow
from app.models.sync_status import SHOP_WIDE_USER_ID
from app.services.activity_logger import ActivityLogger
from app.services.exceptions import RemoteTransientError, SyncInProgressError
from app.services.finance_sync_service import FinanceSyncService, escrow_to_row
from app.services.notifier import ChangeNotifier
from app.services.remote_fetcher import ESCROW_DETAIL_PATH
from app.services.sync_status_service import PIPELINE_FINANCE, SyncStatusService
from conftest import FakeShopeeClient, error_response, escrow_response


def escrow_handler(errors=(), transient=()):
    """Escrow answers: logical error for ``errors``, RemoteTransientError for ``transient``."""
    def handler(path, params):
        assert path == ESCROW_DETAIL_PATH
        order_sn = params["order_sn"]
        if order_sn in transient:
            return RemoteTransientError(f"Timeout calling {path}")
        if order_sn in errors:
            return error_response()
        return escrow_response(order_sn)
    return handler


@pytest.fixture
def notifier():
    return ChangeNotifier()


@pytest.fixture
def status_service():
    return SyncStatusService()


@pytest.fixture
def make_service(credential_provider, status_service, notifier):
    """Factory building the service around a FakeShopeeClient."""
    def _make_service(handler, **kwargs):
        client = FakeShopeeClient(handler)
        kwargs.setdefault("rate_limit_delay", 0)
        service = FinanceSyncService(
            credential_provider=credential_provider,
            status_service=status_service,
            notifier=notifier,
            client_factory=lambda credentials: client,
            **kwargs
        )
        return service, client
    return _make_service


def flags(db_session, shop_id=123):
    db_session.expire_all()
    return {
        order.order_sn: order.is_escrow_fetched
        for order in db_session.query(Order).filter(Order.shop_id == shop_id).all()
    }


def test_escrow_to_row_maps_income():
    row = escrow_to_row(123, escrow_response("A", escrow_amount=42.5)["response"], synced_at=None)

    assert row["shop_id"] == 123
    assert row["order_sn"] == "A"
    assert row["escrow_amount"] == 42.5
    assert row["commission_fee"] == 5.0
    assert row["buyer_payment_method"] == "COD"
    assert row["items"] == [{"item_id": 1, "model_quantity_purchased": 1}]
    assert row["voucher_from_shopee"] is None


class TestFinanceSync:
    """Tests for sync_shop."""

    @pytest.mark.asyncio
    async def test_partial_remote_errors(self, db_session, create_shop, create_orders, make_service, status_service):
        """Test shop 123 with A and C succeeding and B reporting an error."""
        create_shop(123)
        create_orders(123, [("A", 3), ("B", 2), ("C", 1)])
        service, client = make_service(escrow_handler(errors={"B"}))

        result = await service.sync_shop(db_session, 123)

        assert result == {"success": True, "total": 3, "fetched": 2, "failed": 1, "api_calls": 3}
        assert flags(db_session) == {"A": True, "B": False, "C": True}
        assert {row.order_sn for row in db_session.query(OrderEscrow).all()} == {"A", "C"}
        assert status_service.last_synced_at(db_session, PIPELINE_FINANCE, 123, SHOP_WIDE_USER_ID) is not None
        assert [call["params"]["order_sn"] for call in client.calls] == ["A", "B", "C"]

    @pytest.mark.asyncio
    async def test_second_run_is_idempotent(self, db_session, create_shop, create_orders, make_service):
        """Test that a repeated default run fetches nothing and keeps stored rows."""
        create_shop(123)
        create_orders(123, [("A", 2), ("C", 1)])
        service, client = make_service(escrow_handler())

        await service.sync_shop(db_session, 123)
        stored_before = {row.order_sn: row.escrow_amount for row in db_session.query(OrderEscrow).all()}

        result = await service.sync_shop(db_session, 123)

        assert result["success"] is True
        assert result["fetched"] == 0
        assert result["total"] == 0
        assert len(client.calls) == 2
        db_session.expire_all()
        assert {row.order_sn: row.escrow_amount for row in db_session.query(OrderEscrow).all()} == stored_before

    @pytest.mark.asyncio
    async def test_force_all_refetches_everything(self, db_session, create_shop, create_orders, make_service):
        """Test that force mode re-fetches orders already marked fetched."""
        create_shop(123)
        create_orders(123, [("A", 2)], is_escrow_fetched=True)
        create_orders(123, [("B", 1)])
        service, client = make_service(escrow_handler())

        result = await service.sync_shop(db_session, 123, force_all=True)

        assert result["total"] == 2
        assert result["fetched"] == 2
        assert flags(db_session) == {"A": True, "B": True}

    @pytest.mark.asyncio
    async def test_force_all_keeps_rows_remote_no_longer_returns(self, db_session, create_shop, create_orders, make_service):
        """Test that a skipped record keeps its previously stored data."""
        create_shop(123)
        create_orders(123, [("A", 1)])
        service, _ = make_service(escrow_handler())
        await service.sync_shop(db_session, 123)

        service, _ = make_service(escrow_handler(errors={"A"}))
        result = await service.sync_shop(db_session, 123, force_all=True)

        assert result["failed"] == 1
        db_session.expire_all()
        escrow = db_session.query(OrderEscrow).one()
        assert escrow.escrow_amount == 90.0
        assert flags(db_session) == {"A": True}

    @pytest.mark.asyncio
    async def test_candidate_cap_drains_over_runs(self, db_session, create_shop, create_orders, make_service):
        """Test that 800 pending orders take a run of 500 then a run of 300, newest first."""
        create_shop(123)
        create_orders(123, [(f"SN{i:04d}", 1700000000 + i) for i in range(800)])
        service, client = make_service(escrow_handler(), candidate_limit=500, batch_size=50)

        first = await service.sync_shop(db_session, 123)

        assert first["total"] == 500
        assert first["fetched"] == 500
        fetched = {sn for sn, flag in flags(db_session).items() if flag}
        assert fetched == {f"SN{i:04d}" for i in range(300, 800)}
        assert client.calls[0]["params"]["order_sn"] == "SN0799"

        second = await service.sync_shop(db_session, 123)

        assert second["total"] == 300
        assert second["fetched"] == 300
        assert all(flags(db_session).values())

    @pytest.mark.asyncio
    async def test_missing_credentials_fail_before_fetch(self, db_session, create_orders, make_service, status_service):
        """Test that an unknown shop aborts the run without any remote call."""
        create_orders(123, [("A", 1)])
        service, client = make_service(escrow_handler())

        result = await service.sync_shop(db_session, 123)

        assert result["success"] is False
        assert "not found" in result["error"]
        assert client.calls == []
        assert status_service.last_synced_at(db_session, PIPELINE_FINANCE, 123, SHOP_WIDE_USER_ID) is None

    @pytest.mark.asyncio
    async def test_shop_without_token_fails(self, db_session, create_shop, make_service):
        create_shop(123, access_token=None)
        service, _ = make_service(escrow_handler())

        result = await service.sync_shop(db_session, 123)

        assert result["success"] is False
        assert "access token" in result["error"]

    @pytest.mark.asyncio
    async def test_first_call_transient_failure_is_terminal(
        self, db_session, create_shop, create_orders, make_service, status_service
    ):
        """Test that an unreachable API on the very first call fails the run."""
        create_shop(123)
        create_orders(123, [("A", 2), ("B", 1)])
        service, client = make_service(escrow_handler(transient={"A", "B"}))

        result = await service.sync_shop(db_session, 123)

        assert result["success"] is False
        assert "Timeout" in result["error"]
        assert len(client.calls) == 1
        assert flags(db_session) == {"A": False, "B": False}
        assert status_service.last_synced_at(db_session, PIPELINE_FINANCE, 123, SHOP_WIDE_USER_ID) is None
        assert not status_service.is_running(db_session, PIPELINE_FINANCE, 123, SHOP_WIDE_USER_ID)

    @pytest.mark.asyncio
    async def test_later_transient_failure_is_skipped(self, db_session, create_shop, create_orders, make_service):
        """Test that a transient error after progress only skips that order."""
        create_shop(123)
        create_orders(123, [("A", 3), ("B", 2), ("C", 1)])
        service, _ = make_service(escrow_handler(transient={"B"}))

        result = await service.sync_shop(db_session, 123)

        assert result["success"] is True
        assert result["fetched"] == 2
        assert result["failed"] == 1
        assert flags(db_session) == {"A": True, "B": False, "C": True}

    @pytest.mark.asyncio
    async def test_failed_write_batch_leaves_orders_pending(self, db_session, create_shop, create_orders, make_service):
        """Test that orders of a batch that failed to persist are not marked fetched."""
        create_shop(123)
        create_orders(123, [("A", 4), ("B", 3), ("C", 2), ("D", 1)])
        service, _ = make_service(escrow_handler(), batch_size=2)

        original_write_batch = service.writer._write_batch
        calls = []

        def flaky_write_batch(db, batch):
            calls.append(batch)
            if len(calls) == 2:
                raise SQLAlchemyError("disk I/O error")
            original_write_batch(db, batch)

        service.writer._write_batch = flaky_write_batch

        result = await service.sync_shop(db_session, 123)

        assert result["success"] is True
        assert result["fetched"] == 2
        assert result["failed"] == 2
        assert flags(db_session) == {"A": True, "B": True, "C": False, "D": False}

    @pytest.mark.asyncio
    async def test_run_in_progress_rejected(self, db_session, create_shop, create_orders, make_service, status_service):
        create_shop(123)
        create_orders(123, [("A", 1)])
        service, client = make_service(escrow_handler())
        status_service.claim(db_session, PIPELINE_FINANCE, 123, SHOP_WIDE_USER_ID)

        with pytest.raises(SyncInProgressError):
            await service.sync_shop(db_session, 123)

        assert client.calls == []

    @pytest.mark.asyncio
    async def test_change_notification_and_activity_log(
        self, db_session, create_shop, create_orders, make_service, notifier
    ):
        """Test that a finished run notifies listeners and records its outcome."""
        create_shop(123)
        create_orders(123, [("A", 1)])
        activity_logger = MagicMock(spec=ActivityLogger)
        service, _ = make_service(escrow_handler(), activity_logger=activity_logger)
        events = []
        notifier.subscribe(events.append)

        await service.sync_shop(db_session, 123, source="scheduled")

        assert {(event.shop_id, event.table) for event in events} == {(123, "order_escrows"), (123, "orders")}
        kwargs = activity_logger.log_run.call_args.kwargs
        assert kwargs["status"] == "success"
        assert kwargs["source"] == "scheduled"
        assert kwargs["response_data"]["fetched"] == 1


class TestFinanceSyncCleanup:
    """Tests for claim and status handling around failed and successful runs."""

    @pytest.mark.asyncio
    async def test_database_error_releases_claim(
        self, db_session, create_shop, create_orders, make_service, status_service
    ):
        """Test that a driver error mid-run leaves the shop claimable for the next run."""
        create_shop(123)
        create_orders(123, [("A", 1)])
        service, _ = make_service(escrow_handler())
        db_error = OperationalError(
            "SELECT orders.order_sn FROM orders WHERE orders.shop_id = ?", {"shop_id": 123},
            Exception("database is locked")
        )

        with patch("app.services.finance_sync_service.select_pending", side_effect=db_error):
            failed = await service.sync_shop(db_session, 123)

        assert failed["success"] is False
        assert not status_service.is_running(db_session, PIPELINE_FINANCE, 123, SHOP_WIDE_USER_ID)
        assert status_service.get_status(db_session, 123, SHOP_WIDE_USER_ID).finance_claimed_at is None

        second = await service.sync_shop(db_session, 123)

        assert second["success"] is True
        assert second["fetched"] == 1

    @pytest.mark.asyncio
    async def test_database_error_is_not_returned_verbatim(self, db_session, create_shop, create_orders, make_service):
        create_shop(123)
        create_orders(123, [("A", 1)])
        service, _ = make_service(escrow_handler())
        db_error = OperationalError(
            "SELECT orders.order_sn FROM orders WHERE orders.shop_id = ?", {"shop_id": 123},
            Exception("database is locked")
        )

        with patch("app.services.finance_sync_service.select_pending", side_effect=db_error):
            result = await service.sync_shop(db_session, 123)

        assert "OperationalError" in result["error"]
        assert "SELECT" not in result["error"]
        assert "database is locked" not in result["error"]

    @pytest.mark.asyncio
    async def test_failed_run_rolls_back_before_release(
        self, db_session, create_shop, create_orders, make_service, status_service
    ):
        create_shop(123)
        create_orders(123, [("A", 1)])
        service, _ = make_service(escrow_handler())
        events = []
        original_rollback = db_session.rollback
        original_release = status_service.release

        def rollback():
            events.append("rollback")
            original_rollback()

        def release(*args):
            events.append("release")
            original_release(*args)

        db_session.rollback = rollback
        status_service.release = release

        db_error = OperationalError("SELECT 1", {}, Exception("connection lost"))

        with patch("app.services.finance_sync_service.select_pending", side_effect=db_error):
            await service.sync_shop(db_session, 123)

        assert events[:2] == ["rollback", "release"]

    @pytest.mark.asyncio
    async def test_last_synced_written_before_claim_released(
        self, db_session, create_shop, create_orders, make_service, status_service
    ):
        """Test that a run never looks idle and stale at the same time."""
        create_shop(123)
        create_orders(123, [("A", 1)])
        service, _ = make_service(escrow_handler())
        seen_at_release = []
        original_release = status_service.release

        def release(db, pipeline, shop_id, user_id):
            seen_at_release.append(status_service.last_synced_at(db, pipeline, shop_id, user_id))
            original_release(db, pipeline, shop_id, user_id)

        status_service.release = release

        result = await service.sync_shop(db_session, 123)

        assert result["success"] is True
        assert len(seen_at_release) == 1
        assert seen_at_release[0] is not None


class TestFinanceStats:
    """Tests for get_stats."""

    @pytest.mark.asyncio
    async def test_stats(self, db_session, create_shop, create_orders, make_service):
        create_shop(123)
        create_orders(123, [("A", 3), ("B", 2)], total_amount=100.0)
        create_orders(123, [("C", 1)], status="SHIPPED", total_amount=50.0)
        service, _ = make_service(escrow_handler(errors={"B"}))

        await service.sync_shop(db_session, 123)
        stats = service.get_stats(db_session, 123)

        assert stats == {
            "total_completed": 2,
            "escrow_fetched": 1,
            "escrow_pending": 1,
            "total_escrow_amount": 90.0,
            "total_gmv": 200.0,
        }
