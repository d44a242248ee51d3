"""Shopee Open Platform client issuing signed requests."""

import hashlib
import hmac
import json
import logging
import time
from typing import Any, Dict, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from app.config import settings
from app.services.api_call_logger import (
    ApiCallLogger,
    ApiCallRecord,
    create_response_summary,
    get_api_call_status,
)
from app.services.credential_provider import ShopCredentials
from app.services.exceptions import RemoteTransientError

logger = logging.getLogger(__name__)


def generate_sign(
    path: str,
    timestamp: int,
    access_token: str,
    shop_id: int,
    partner_id: int,
    partner_key: str
) -> str:
    """HMAC-SHA256 signature for a shop-level API call."""
    base_string = f"{partner_id}{path}{timestamp}{access_token}{shop_id}"
    return hmac.new(partner_key.encode(), base_string.encode(), hashlib.sha256).hexdigest()


class ShopeeClient:
    """Client for shop-level Shopee API calls."""

    def __init__(
        self,
        credentials: ShopCredentials,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        call_logger: Optional[ApiCallLogger] = None,
        sync_function: str = "shop-sync"
    ):
        """Initialize Shopee client.

        Args:
            credentials: Decrypted shop credentials used for signing.
            base_url: Shopee base URL (defaults to settings.shopee_base_url).
            timeout: Request timeout in seconds (defaults to settings.shopee_timeout_seconds).
            call_logger: Receives one ApiCallRecord per call.
            sync_function: Name of the pipeline issuing calls, stored with each log row.
        """
        self.credentials = credentials
        self.base_url = (base_url or settings.shopee_base_url).rstrip('/')
        self.timeout = timeout or settings.shopee_timeout_seconds
        self.call_logger = call_logger
        self.sync_function = sync_function
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Content-Type": "application/json"}
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get HTTP client.

        Raises:
            RuntimeError: If client is not initialized (use async context manager).
        """
        if self._client is None:
            raise RuntimeError("ShopeeClient must be used as async context manager")
        return self._client

    def _signed_params(self, path: str, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        timestamp = int(time.time())
        creds = self.credentials
        query: Dict[str, Any] = {
            "partner_id": creds.partner_id,
            "timestamp": timestamp,
            "access_token": creds.access_token,
            "shop_id": creds.shop_id,
            "sign": generate_sign(
                path, timestamp, creds.access_token, creds.shop_id, creds.partner_id, creds.partner_key
            ),
        }

        for key, value in (params or {}).items():
            if value is None:
                continue
            query[key] = json.dumps(value) if isinstance(value, list) else value

        return query

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True
    )
    async def _make_request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        """Send a signed request, retrying timeouts and network errors."""
        client = self._get_client()
        return await client.request(
            method=method,
            url=path,
            params=self._signed_params(path, params),
            json=body
        )

    async def call(
        self,
        path: str,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Call a Shopee API path and return the decoded JSON body.

        Business errors are returned as-is in the body (``error``/``message``);
        callers decide whether to skip or fail.

        Args:
            path: API path, e.g. /api/v2/payment/get_escrow_detail.
            method: HTTP method.
            params: Query parameters besides the signing ones.
            body: JSON request body.

        Returns:
            Response JSON data.

        Raises:
            RemoteTransientError: On timeout, network error, 5xx or undecodable body.
        """
        record = ApiCallRecord(
            sync_function=self.sync_function,
            api_endpoint=path,
            http_method=method,
            shop_id=self.credentials.shop_id,
            request_params=dict(params or {}),
        )
        started = time.monotonic()

        try:
            response = await self._make_request(method, path, params=params, body=body)
        except httpx.TimeoutException as e:
            logger.error(f"Timeout for {method} {path} (shop {self.credentials.shop_id})")
            record.status = "timeout"
            self._log_call(record, started)
            raise RemoteTransientError(f"Timeout calling {path}") from e
        except httpx.RequestError as e:
            logger.error(f"Network error for {method} {path}: {e}")
            record.status = "failed"
            record.shopee_error = "network_error"
            record.shopee_message = str(e)
            self._log_call(record, started)
            raise RemoteTransientError(f"Network error calling {path}: {e}") from e

        record.http_status_code = response.status_code

        if response.status_code >= 500:
            logger.error(f"HTTP error {response.status_code} for {method} {path}: {response.text}")
            record.status = "failed"
            record.shopee_error = f"http_{response.status_code}"
            self._log_call(record, started)
            raise RemoteTransientError(f"HTTP {response.status_code} from {path}")

        try:
            data = response.json()
        except ValueError as e:
            record.status = "failed"
            record.shopee_error = "invalid_json"
            self._log_call(record, started)
            raise RemoteTransientError(f"Invalid JSON from {path}") from e

        status = get_api_call_status(data)
        record.status = status["status"]
        record.shopee_error = status["shopee_error"]
        record.shopee_message = status["shopee_message"]
        record.response_summary = create_response_summary(data)
        self._log_call(record, started)

        return data

    def _log_call(self, record: ApiCallRecord, started: float) -> None:
        record.duration_ms = int((time.monotonic() - started) * 1000)
        if self.call_logger:
            self.call_logger.log(record)
