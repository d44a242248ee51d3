"""Flash sale sync API endpoints."""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.dependencies import get_flash_sale_sync_service
from app.database.database import get_db
from app.services.exceptions import SyncInProgressError, public_error
from app.services.flash_sale_sync_service import FlashSaleSyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/flash-sale-sync", tags=["flash-sale"])

FLASH_SALE_ACTIONS = ("sync", "sync-if-stale", "status")


class FlashSaleSyncRequest(BaseModel):
    """Flash sale sync request."""

    action: str = "sync"
    shop_id: Optional[int] = None
    user_id: Optional[str] = None


class FlashSaleStatusResponse(BaseModel):
    """Flash sale sync status response."""

    shop_id: int
    user_id: str
    last_synced_at: Optional[str] = None
    is_stale: bool
    is_syncing: bool


@router.post("")
async def flash_sale_sync(
    request: FlashSaleSyncRequest,
    db: Session = Depends(get_db),
    service: FlashSaleSyncService = Depends(get_flash_sale_sync_service)
):
    """Dispatch a flash sale action for one shop and user.

    Actions:
    - sync: fetch every flash sale page and store it
    - sync-if-stale: sync only when the last sync is older than the stale window
    - status: last sync time and staleness
    """
    if not request.shop_id or not request.user_id:
        raise HTTPException(status_code=400, detail="shop_id and user_id are required")

    if request.action not in FLASH_SALE_ACTIONS:
        raise HTTPException(status_code=400, detail=f"Unknown action: {request.action}")

    if request.action == "status":
        return service.get_status(db, request.shop_id, request.user_id)

    try:
        if request.action == "sync-if-stale":
            result = await service.sync_if_stale(db, request.shop_id, request.user_id)
            if result is None:
                return {"success": True, "action": request.action, "skipped": True,
                        **service.get_status(db, request.shop_id, request.user_id)}
        else:
            result = await service.sync(db, request.shop_id, request.user_id)
    except SyncInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Flash sale action {request.action} for shop {request.shop_id} failed: {e}")
        return {"success": False, "action": request.action, "shop_id": request.shop_id, "error": public_error(e)}

    return {"action": request.action, "shop_id": request.shop_id, **result}


@router.get("/status", response_model=FlashSaleStatusResponse)
async def get_flash_sale_status(
    shop_id: int,
    user_id: str,
    db: Session = Depends(get_db),
    service: FlashSaleSyncService = Depends(get_flash_sale_sync_service)
):
    """Get flash sale sync status for a shop and user."""
    return FlashSaleStatusResponse(**service.get_status(db, shop_id, user_id))
