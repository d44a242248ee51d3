"""Shared service wiring for the API routers."""

from functools import lru_cache

from app.database.database import SessionLocal
from app.services.activity_logger import ActivityLogger
from app.services.api_call_logger import ApiCallLogger
from app.services.credential_provider import CredentialProvider
from app.services.encryption_service import EncryptionService
from app.services.finance_sync_service import FinanceSyncService
from app.services.flash_sale_sync_service import FlashSaleSyncService
from app.services.notifier import ChangeNotifier
from app.services.sync_status_service import SyncStatusService

# Process-wide collaborators: one notifier and one pair of background loggers
change_notifier = ChangeNotifier()
api_call_logger = ApiCallLogger(session_factory=SessionLocal)
activity_logger = ActivityLogger(session_factory=SessionLocal)


@lru_cache
def get_credential_provider() -> CredentialProvider:
    """Get credential provider (validates the encryption key on first use)."""
    return CredentialProvider(EncryptionService())


def get_change_notifier() -> ChangeNotifier:
    return change_notifier


def get_finance_sync_service() -> FinanceSyncService:
    """Get finance sync service instance with dependencies."""
    return FinanceSyncService(
        credential_provider=get_credential_provider(),
        status_service=SyncStatusService(),
        notifier=change_notifier,
        api_call_logger=api_call_logger,
        activity_logger=activity_logger,
    )


def get_flash_sale_sync_service() -> FlashSaleSyncService:
    """Get flash sale sync service instance with dependencies."""
    return FlashSaleSyncService(
        credential_provider=get_credential_provider(),
        status_service=SyncStatusService(),
        notifier=change_notifier,
        api_call_logger=api_call_logger,
        activity_logger=activity_logger,
    )
