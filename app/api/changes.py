"""Data change feed for dashboard refresh."""

from typing import Dict, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.dependencies import get_change_notifier
from app.services.notifier import ChangeNotifier

router = APIRouter(prefix="/api/changes", tags=["changes"])


class ChangesResponse(BaseModel):
    """Last change time per table for a shop."""

    shop_id: int
    tables: Dict[str, str]


@router.get("", response_model=ChangesResponse)
async def get_changes(
    shop_id: int,
    table: Optional[str] = None,
    notifier: ChangeNotifier = Depends(get_change_notifier)
):
    """Get the last time each table of a shop was changed by a sync run.

    Views poll this and refetch a table when its timestamp moves.
    """
    changed = notifier.last_changed(shop_id, table)
    return ChangesResponse(
        shop_id=shop_id,
        tables={name: changed_at.isoformat() for name, changed_at in changed.items()}
    )
