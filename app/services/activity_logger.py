"""Fire-and-forget activity log of sync runs."""

import logging
from typing import Any, Dict, Optional

from app.models.activity_log import ActivityLog
from app.services.api_call_logger import FireAndForgetWriter

logger = logging.getLogger(__name__)


class ActivityLogger(FireAndForgetWriter):
    """Writes one activity_logs row per finished run."""

    def log_run(
        self,
        action_type: str,
        action_category: str,
        status: str,
        shop_id: Optional[int] = None,
        user_id: Optional[str] = None,
        description: Optional[str] = None,
        source: str = "manual",
        response_data: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None
    ) -> None:
        """Queue an activity row. Never blocks or raises."""
        def build_row() -> ActivityLog:
            return ActivityLog(
                user_id=user_id,
                shop_id=shop_id,
                action_type=action_type,
                action_category=action_category,
                description=description,
                status=status,
                source=source,
                response_data=response_data,
                error_message=error_message,
            )

        self._dispatch(build_row, f"activity log for {action_type}")
