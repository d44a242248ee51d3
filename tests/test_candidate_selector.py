"""Tests for escrow candidate selection."""

from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.models import Order
from app.services.candidate_selector import count_pending, mark_escrow_fetched, select_pending


def order_sns(orders):
    return [order.order_sn for order in orders]


class TestSelectPending:
    """Tests for select_pending."""

    def test_only_completed_and_pending(self, db_session, create_orders):
        """Test that open orders and fetched orders are excluded."""
        create_orders(123, [("A", 3), ("B", 2)])
        create_orders(123, [("C", 4)], is_escrow_fetched=True)
        create_orders(123, [("D", 5)], status="SHIPPED")
        create_orders(456, [("E", 6)])

        assert order_sns(select_pending(db_session, 123)) == ["A", "B"]

    def test_null_and_false_are_pending(self, db_session, create_orders):
        """Test that an unset flag is treated like false."""
        create_orders(123, [("A", 1)], is_escrow_fetched=None)
        create_orders(123, [("B", 2)], is_escrow_fetched=False)

        assert order_sns(select_pending(db_session, 123)) == ["B", "A"]
        assert count_pending(db_session, 123) == 2

    def test_newest_first_and_capped(self, db_session, create_orders):
        """Test ordering by create_time descending with a cap."""
        create_orders(123, [(f"SN{i:03d}", 1700000000 + i) for i in range(10)])

        selected = select_pending(db_session, 123, limit=4)

        assert order_sns(selected) == ["SN009", "SN008", "SN007", "SN006"]

    def test_ties_are_deterministic(self, db_session, create_orders):
        """Test that orders created at the same time come back in a stable order."""
        create_orders(123, [("A", 100), ("C", 100), ("B", 100)])

        assert order_sns(select_pending(db_session, 123)) == ["C", "B", "A"]

    def test_force_all_ignores_flag(self, db_session, create_orders):
        """Test that force mode returns fetched orders too, but still only completed ones."""
        create_orders(123, [("A", 1)])
        create_orders(123, [("B", 2)], is_escrow_fetched=True)
        create_orders(123, [("C", 3)], status="CANCELLED")

        assert order_sns(select_pending(db_session, 123, force_all=True)) == ["B", "A"]


class TestMarkEscrowFetched:
    """Tests for mark_escrow_fetched."""

    def test_flags_flipped_for_given_orders(self, db_session, create_orders):
        create_orders(123, [("A", 1), ("B", 2), ("C", 3)])
        create_orders(456, [("A", 1)])

        assert mark_escrow_fetched(db_session, 123, ["A", "C"]) == 2

        db_session.expire_all()
        flags = {
            (order.shop_id, order.order_sn): order.is_escrow_fetched
            for order in db_session.query(Order).all()
        }
        assert flags == {(123, "A"): True, (123, "B"): False, (123, "C"): True, (456, "A"): False}

    def test_empty_list_is_noop(self, db_session):
        assert mark_escrow_fetched(db_session, 123, []) == 0

    def test_failure_is_logged_not_raised(self):
        """Test that a database error leaves orders pending without raising."""
        db = MagicMock(spec=Session)
        db.query.return_value.filter.return_value.update.side_effect = OperationalError(
            "UPDATE orders", {}, Exception("database is locked")
        )

        assert mark_escrow_fetched(db, 123, ["A"]) == 0
        db.rollback.assert_called_once()
