"""Non-blocking persistence of Shopee API call metadata."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Set

from sqlalchemy.orm import Session

from app.models.api_call_log import ApiCallLog

logger = logging.getLogger(__name__)

SENSITIVE_PARAM_KEYS = {"access_token", "refresh_token", "partner_key", "sign", "signature"}


@dataclass
class ApiCallRecord:
    """Metadata of one marketplace API call."""

    sync_function: str
    api_endpoint: str
    http_method: str = "GET"
    status: str = "success"
    shop_id: Optional[int] = None
    shopee_error: Optional[str] = None
    shopee_message: Optional[str] = None
    http_status_code: Optional[int] = None
    duration_ms: Optional[int] = None
    request_params: Optional[Dict[str, Any]] = None
    response_summary: Optional[Dict[str, Any]] = field(default=None)


def sanitize_params(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Mask tokens, keys and signatures in request parameters."""
    if not params:
        return None

    return {
        key: "***" if key.lower() in SENSITIVE_PARAM_KEYS else value
        for key, value in params.items()
    }


def get_api_call_status(result: Optional[Dict[str, Any]]) -> Dict[str, Optional[str]]:
    """Derive call status from a Shopee response body.

    Shopee reports success with an empty (or missing) ``error`` field.
    """
    if not result:
        return {"status": "failed", "shopee_error": "null_response", "shopee_message": "No response received"}

    error = result.get("error")
    if not error:
        return {"status": "success", "shopee_error": None, "shopee_message": None}

    return {
        "status": "failed",
        "shopee_error": str(error),
        "shopee_message": result.get("message") or None,
    }


def create_response_summary(result: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Keep only the lightweight parts of a response for the log row."""
    summary: Dict[str, Any] = {}
    if not isinstance(result, dict):
        return summary

    for key in ("error", "message", "request_id"):
        if key in result:
            summary[key] = result[key]

    response = result.get("response")
    if isinstance(response, dict):
        if "total_count" in response:
            summary["total_count"] = response["total_count"]
        for key, value in response.items():
            if isinstance(value, list):
                summary[f"{key}_count"] = len(value)

    return summary


class FireAndForgetWriter:
    """Schedules database writes as background tasks.

    A write never blocks or fails the caller: errors are logged and dropped.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self._pending: Set[asyncio.Task] = set()

    def _dispatch(self, row_factory: Callable[[], Any], description: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop (scripts, sync tests): write inline
            self._write(row_factory, description)
            return

        task = loop.create_task(self._write_async(row_factory, description))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write_async(self, row_factory: Callable[[], Any], description: str) -> None:
        # Session work is blocking; keep it off the event loop
        await asyncio.to_thread(self._write, row_factory, description)

    def _write(self, row_factory: Callable[[], Any], description: str) -> None:
        db = None
        try:
            db = self.session_factory()
            db.add(row_factory())
            db.commit()
        except Exception as e:
            logger.error(f"Failed to write {description}: {e}")
            if db is not None:
                db.rollback()
        finally:
            if db is not None:
                db.close()

    async def drain(self) -> None:
        """Wait for all scheduled writes (used on shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class ApiCallLogger(FireAndForgetWriter):
    """Writes ApiCallRecord entries to the api_call_logs table."""

    def log(self, record: ApiCallRecord) -> None:
        """Queue a log row for an API call."""
        def build_row() -> ApiCallLog:
            return ApiCallLog(
                shop_id=record.shop_id,
                sync_function=record.sync_function,
                api_endpoint=record.api_endpoint,
                http_method=record.http_method,
                status=record.status,
                shopee_error=record.shopee_error,
                shopee_message=record.shopee_message,
                http_status_code=record.http_status_code,
                duration_ms=record.duration_ms,
                request_params=sanitize_params(record.request_params),
                response_summary=record.response_summary,
            )

        self._dispatch(build_row, f"API call log for {record.api_endpoint}")
