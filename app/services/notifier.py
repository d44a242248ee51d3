"""In-process "data changed" signal for dashboards and caches."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    shop_id: int
    table: str
    changed_at: datetime


class ChangeNotifier:
    """Publishes ChangeEvents keyed by shop and table.

    Delivery is at-most-once and best-effort: a failing subscriber is logged
    and skipped, it never reaches the publishing sync run.
    """

    def __init__(self):
        self._subscribers: List[Callable[[ChangeEvent], None]] = []
        self._last_changed: Dict[Tuple[int, str], datetime] = {}

    def subscribe(self, callback: Callable[[ChangeEvent], None]) -> Callable[[], None]:
        """Register a callback. Returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def notify(self, shop_id: int, table: str) -> ChangeEvent:
        event = ChangeEvent(shop_id=shop_id, table=table, changed_at=datetime.utcnow())
        self._last_changed[(shop_id, table)] = event.changed_at

        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Change subscriber failed for {table} of shop {shop_id}: {e}")

        return event

    def last_changed(self, shop_id: int, table: Optional[str] = None) -> Dict[str, datetime]:
        """Last change time per table for a shop, optionally for one table only."""
        return {
            changed_table: changed_at
            for (changed_shop, changed_table), changed_at in self._last_changed.items()
            if changed_shop == shop_id and (table is None or changed_table == table)
        }
