"""Services package."""

from app.services.encryption_service import EncryptionService
from app.services.finance_sync_service import FinanceSyncService
from app.services.flash_sale_sync_service import FlashSaleSyncService
from app.services.sync_status_service import SyncStatusService

__all__ = ["EncryptionService", "FinanceSyncService", "FlashSaleSyncService", "SyncStatusService"]
