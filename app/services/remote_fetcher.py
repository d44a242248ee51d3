"""Paginated and single-entity fetches against the Shopee API."""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app.services.exceptions import RemoteLogicalError, RemoteTransientError

logger = logging.getLogger(__name__)

ESCROW_DETAIL_PATH = "/api/v2/payment/get_escrow_detail"
FLASH_SALE_LIST_PATH = "/api/v2/shop_flash_sale/get_shop_flash_sale_list"

# type filter of get_shop_flash_sale_list: 0 = all
FLASH_SALE_TYPE_ALL = 0


@dataclass
class Page:
    """One page of a list endpoint."""

    items: List[Dict[str, Any]]
    total_count: int


@dataclass
class FetchResult:
    """Items collected by a paginated fetch."""

    items: List[Dict[str, Any]] = field(default_factory=list)
    total_count: int = 0
    pages: int = 0
    api_calls: int = 0
    error: Optional[str] = None

    @property
    def exhaustive(self) -> bool:
        """True when every remotely reported item was collected."""
        return len(self.items) >= self.total_count


def raise_for_remote_error(result: Dict[str, Any]) -> None:
    """Raise RemoteLogicalError when a Shopee body carries a business error."""
    error = result.get("error") if isinstance(result, dict) else "null_response"
    if error:
        raise RemoteLogicalError(str(error), result.get("message") if isinstance(result, dict) else None)


async def fetch_pages(
    fetch_page: Callable[[int, int], Awaitable[Page]],
    page_size: int
) -> FetchResult:
    """Collect all pages of an offset-paginated list.

    Fetching stops once ``offset`` passes the reported total, once the
    collected item count reaches it, or on an empty page. An error on the
    first page (nothing collected yet) propagates; an error on a later page
    stops the loop and keeps what was collected.

    Args:
        fetch_page: Coroutine taking (offset, limit) and returning a Page.
        page_size: Fixed page size.

    Returns:
        FetchResult with collected items and the last reported total.

    Raises:
        RemoteTransientError: If the first page fails at transport level.
        RemoteLogicalError: If the first page reports a business error.
    """
    if page_size <= 0:
        raise ValueError("page_size must be positive")

    result = FetchResult()
    offset = 0

    while True:
        result.api_calls += 1
        try:
            page = await fetch_page(offset, page_size)
        except (RemoteTransientError, RemoteLogicalError) as e:
            if not result.items:
                raise
            logger.warning(
                f"API error at page {result.pages + 1}, keeping {len(result.items)} fetched items: {e}"
            )
            result.error = str(e)
            break

        result.items.extend(page.items)
        result.total_count = page.total_count
        result.pages += 1
        offset += page_size

        logger.info(
            f"Page {result.pages}: {len(page.items)} items "
            f"(total fetched: {len(result.items)}/{result.total_count})"
        )

        if not page.items:
            break
        if offset >= result.total_count or len(result.items) >= result.total_count:
            break

    return result


async def fetch_flash_sale_page(client, offset: int, limit: int) -> Page:
    """Fetch one page of the shop's flash sale list.

    Raises:
        RemoteTransientError: On transport failure.
        RemoteLogicalError: If Shopee reports an error.
    """
    result = await client.call(
        FLASH_SALE_LIST_PATH,
        params={"type": FLASH_SALE_TYPE_ALL, "offset": offset, "limit": limit}
    )
    raise_for_remote_error(result)

    response = result.get("response") or {}
    return Page(
        items=response.get("flash_sale_list") or [],
        total_count=response.get("total_count") or 0,
    )


async def fetch_escrow_detail(client, order_sn: str) -> Optional[Dict[str, Any]]:
    """Fetch the escrow detail of one order.

    A business error from Shopee (e.g. order not eligible) is not exceptional:
    the order is skipped and ``None`` is returned.

    Raises:
        RemoteTransientError: On transport failure.
    """
    result = await client.call(ESCROW_DETAIL_PATH, params={"order_sn": order_sn})

    try:
        raise_for_remote_error(result)
    except RemoteLogicalError as e:
        logger.info(f"get_escrow_detail error for {order_sn}: {e}")
        return None

    return result.get("response") or None
