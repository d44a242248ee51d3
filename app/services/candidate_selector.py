"""Selection of orders whose escrow detail still has to be fetched."""

import logging
from typing import List, Sequence

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.models.order import Order, ORDER_STATUS_COMPLETED

logger = logging.getLogger(__name__)


def _escrow_pending_filter():
    # NULL and False are both "not fetched yet"
    return or_(Order.is_escrow_fetched.is_(None), Order.is_escrow_fetched.is_(False))


def select_pending(
    db: Session,
    shop_id: int,
    force_all: bool = False,
    limit: int = None
) -> List[Order]:
    """Select COMPLETED orders of a shop to fetch escrow for.

    Only completed orders are considered, the income of an open order can
    still change. Results are newest first and capped, so a large backlog
    drains over several runs.

    Args:
        db: Database session.
        shop_id: Shop to select for.
        force_all: Ignore the fetched flag and return every completed order.
        limit: Maximum number of orders (defaults to settings.finance_candidate_limit).

    Returns:
        Orders ordered by create_time descending.
    """
    limit = limit or settings.finance_candidate_limit

    query = db.query(Order).filter(
        Order.shop_id == shop_id,
        Order.order_status == ORDER_STATUS_COMPLETED
    )

    if not force_all:
        query = query.filter(_escrow_pending_filter())

    return query.order_by(
        Order.create_time.desc(),
        Order.order_sn.desc()
    ).limit(limit).all()


def count_pending(db: Session, shop_id: int) -> int:
    """Count completed orders of a shop whose escrow is not fetched yet."""
    return db.query(Order).filter(
        Order.shop_id == shop_id,
        Order.order_status == ORDER_STATUS_COMPLETED,
        _escrow_pending_filter()
    ).count()


def mark_escrow_fetched(db: Session, shop_id: int, order_sns: Sequence[str]) -> int:
    """Set is_escrow_fetched = true for the given orders.

    A failure is logged and reported as 0 updated rows; the orders stay
    pending and are picked up again by the next run.

    Returns:
        Number of orders updated.
    """
    if not order_sns:
        return 0

    try:
        updated = db.query(Order).filter(
            Order.shop_id == shop_id,
            Order.order_sn.in_(list(order_sns))
        ).update({Order.is_escrow_fetched: True}, synchronize_session=False)
        db.commit()
        return updated
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to mark {len(order_sns)} orders of shop {shop_id} as fetched: {e}")
        return 0
