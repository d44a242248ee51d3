"""Database models package."""

from app.models.shop import Shop
from app.models.order import Order
from app.models.order_escrow import OrderEscrow
from app.models.flash_sale import FlashSale
from app.models.sync_status import SyncStatus
from app.models.api_call_log import ApiCallLog
from app.models.activity_log import ActivityLog

__all__ = [
    "Shop",
    "Order",
    "OrderEscrow",
    "FlashSale",
    "SyncStatus",
    "ApiCallLog",
    "ActivityLog",
]
