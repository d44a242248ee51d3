"""Finance (escrow) sync API endpoint."""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.dependencies import get_finance_sync_service
from app.database.database import get_db
from app.services.exceptions import SyncInProgressError, public_error
from app.services.finance_sync_service import FinanceSyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/finance-sync", tags=["finance"])

FINANCE_ACTIONS = ("sync", "sync-all", "stats")


class FinanceSyncRequest(BaseModel):
    """Finance sync request."""

    action: str = "sync"
    shop_id: Optional[int] = None


@router.post("")
async def finance_sync(
    request: FinanceSyncRequest,
    db: Session = Depends(get_db),
    service: FinanceSyncService = Depends(get_finance_sync_service)
):
    """Dispatch a finance action for one shop.

    Actions:
    - sync: fetch escrow for COMPLETED orders not fetched yet (scheduler default)
    - sync-all: force re-fetch of every COMPLETED order
    - stats: counts of fetched/pending orders and escrow/GMV totals
    """
    if not request.shop_id:
        raise HTTPException(status_code=400, detail="shop_id is required")

    if request.action not in FINANCE_ACTIONS:
        raise HTTPException(status_code=400, detail=f"Unknown action: {request.action}")

    try:
        if request.action == "stats":
            result = service.get_stats(db, request.shop_id)
        else:
            result = await service.sync_shop(
                db,
                request.shop_id,
                force_all=request.action == "sync-all"
            )
    except SyncInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Finance action {request.action} for shop {request.shop_id} failed: {e}")
        return {"success": False, "action": request.action, "shop_id": request.shop_id, "error": public_error(e)}

    return {"success": True, "action": request.action, "shop_id": request.shop_id, **result}
