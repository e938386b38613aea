"""
Order Platform Client

Fetches order detail from a ShipStation-style API (basic auth) and turns it
into a ShipmentRequest for quoting.

Order webhooks carry only a resource URL. Single-order URLs end in
/orders/{id}; anything else is a batch URL whose body lists the orders.
"""
import base64
import logging
import re
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from rate_router.core.config import Settings, settings as app_settings
from rate_router.core.exceptions import OrderFetchFailure
from rate_router.core.http_client import (
    CircuitOpenError,
    ResilientHTTPClient,
    get_order_platform_client,
)
from rate_router.modules.shipping.providers.base import Dimensions, ShipmentRequest
from rate_router.utils.units import to_grams, to_inches

logger = logging.getLogger(__name__)

ORDER_ID_PATTERN = re.compile(r"/orders/(\d+)(?:[/?#]|$)")

# Statuses that will not change on retry
PERMANENT_STATUSES = {400, 401, 403, 404, 410, 422}

DEFAULT_ORDER_WEIGHT_OZ = Decimal("8")
DEFAULT_ITEM_WEIGHT_OZ = Decimal("4")

# (max items, (length, width, height)) - first match wins
ESTIMATED_BOX_SIZES = [
    (2, (Decimal("10"), Decimal("8"), Decimal("4"))),
    (5, (Decimal("12"), Decimal("10"), Decimal("6"))),
    (None, (Decimal("16"), Decimal("12"), Decimal("8"))),
]


def extract_order_id(resource_url: str) -> Optional[str]:
    """Order id from a single-order resource URL, or None for batch URLs."""
    match = ORDER_ID_PATTERN.search(resource_url or "")
    return match.group(1) if match else None


def estimate_dimensions(item_count: int) -> Dimensions:
    for max_items, size in ESTIMATED_BOX_SIZES:
        if max_items is None or item_count <= max_items:
            return Dimensions(*size)


def _weight_grams(weight: Optional[Dict[str, Any]]) -> int:
    if not weight or not weight.get("value"):
        return 0
    return to_grams(weight["value"], weight.get("units") or "ounces")


def order_weight_grams(order: Dict[str, Any]) -> int:
    """
    Total shipment weight.

    Prefers the order-level weight. Otherwise sums item weights times
    quantity, counting unweighted items at 4 oz each. An order with no
    weight information at all ships as 8 oz.
    """
    total = _weight_grams(order.get("weight"))
    if total:
        return total

    for item in order.get("items") or []:
        quantity = int(item.get("quantity") or 1)
        item_grams = _weight_grams(item.get("weight"))
        if not item_grams:
            item_grams = to_grams(DEFAULT_ITEM_WEIGHT_OZ, "oz")
        total += item_grams * quantity

    return total or to_grams(DEFAULT_ORDER_WEIGHT_OZ, "oz")


def order_item_count(order: Dict[str, Any]) -> int:
    return sum(int(item.get("quantity") or 1) for item in order.get("items") or []) or 1


def order_dimensions(order: Dict[str, Any], item_count: int) -> Dimensions:
    dims = order.get("dimensions") or {}
    try:
        if all(dims.get(k) for k in ("length", "width", "height")):
            unit = dims.get("units") or "inches"
            return Dimensions(
                to_inches(dims["length"], unit),
                to_inches(dims["width"], unit),
                to_inches(dims["height"], unit),
            )
    except ValueError:
        logger.warning(f"Unreadable dimensions on order {order.get('orderId')}, estimating from items")
    return estimate_dimensions(item_count)


def order_to_shipment_request(
    order: Dict[str, Any],
    origin_postal_code: str,
) -> ShipmentRequest:
    """
    Normalize an order payload into a ShipmentRequest.

    Raises:
        OrderFetchFailure: if the order has no destination postal code or an
            unreadable weight (non-transient; a retry would fetch the same order)
    """
    order_id = str(order.get("orderId") or order.get("orderNumber") or "")
    postal_code = ((order.get("shipTo") or {}).get("postalCode") or "").strip()
    if not postal_code:
        raise OrderFetchFailure(
            f"Order {order_id} has no destination postal code",
            order_id=order_id,
            transient=False,
        )

    try:
        weight_grams = order_weight_grams(order)
        item_count = order_item_count(order)
    except ValueError as e:
        raise OrderFetchFailure(
            f"Order {order_id} has an unreadable weight: {e}",
            order_id=order_id,
            transient=False,
        ) from e

    advanced = order.get("advancedOptions") or {}
    organization_id = advanced.get("storeId") or order.get("storeId")

    return ShipmentRequest(
        destination_postal_code=postal_code,
        origin_postal_code=origin_postal_code,
        weight_grams=weight_grams,
        dimensions=order_dimensions(order, item_count),
        item_count=item_count,
        order_id=order_id,
        organization_id=str(organization_id) if organization_id is not None else None,
    )


class OrderPlatformClient:
    """
    Read-only order platform API.

    Usage:
        client = OrderPlatformClient()
        order = await client.get_order("123456")
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[ResilientHTTPClient] = None,
    ):
        self._settings = settings or app_settings
        self._http_client = http_client

    @property
    def base_url(self) -> str:
        return self._settings.ORDER_PLATFORM_BASE_URL.rstrip("/")

    def _get_http_client(self) -> ResilientHTTPClient:
        if self._http_client is None:
            self._http_client = get_order_platform_client()
        return self._http_client

    def _auth_headers(self) -> Dict[str, str]:
        credentials = base64.b64encode(
            f"{self._settings.ORDER_PLATFORM_API_KEY}:{self._settings.ORDER_PLATFORM_API_SECRET}".encode()
        ).decode()
        return {
            "Authorization": f"Basic {credentials}",
            "Content-Type": "application/json",
        }

    async def _get_json(self, url: str, order_id: Optional[str]) -> Any:
        try:
            response = await self._get_http_client().get(url, headers=self._auth_headers())
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise OrderFetchFailure(
                f"Order platform returned {status} for {url}",
                order_id=order_id,
                transient=status not in PERMANENT_STATUSES,
                status_code=status,
            ) from e
        except (httpx.HTTPError, CircuitOpenError) as e:
            raise OrderFetchFailure(
                f"Order platform request failed: {type(e).__name__}: {e}",
                order_id=order_id,
            ) from e

        try:
            return response.json()
        except ValueError as e:
            raise OrderFetchFailure(
                "Order platform returned a non-JSON body",
                order_id=order_id,
                status_code=response.status_code,
            ) from e

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        """
        Raises:
            OrderFetchFailure: transient unless the platform answered with a
                permanent status such as 404
        """
        data = await self._get_json(f"{self.base_url}/orders/{order_id}", order_id)
        if not isinstance(data, dict):
            raise OrderFetchFailure(
                f"Order {order_id} payload is not an object",
                order_id=order_id,
                transient=False,
            )
        return data

    def _is_platform_url(self, url: str) -> bool:
        resource = urlparse(url)
        platform = urlparse(self.base_url)
        return (resource.scheme.lower(), resource.netloc.lower()) == (
            platform.scheme.lower(),
            platform.netloc.lower(),
        )

    async def list_order_ids(self, resource_url: str) -> List[str]:
        """
        Order ids from a batch resource URL.

        Credentials are only ever sent to ORDER_PLATFORM_BASE_URL; a batch URL on
        any other scheme or host is refused without a request.

        Raises:
            OrderFetchFailure: non-transient for a foreign URL or a body without
                an order list
        """
        if not self._is_platform_url(resource_url):
            logger.warning(f"Refusing batch resource outside the order platform: {resource_url}")
            raise OrderFetchFailure(
                f"Batch resource {resource_url} is not on {self.base_url}",
                transient=False,
            )

        data = await self._get_json(resource_url, None)
        orders = data.get("orders") if isinstance(data, dict) else None
        if not isinstance(orders, list):
            raise OrderFetchFailure(
                f"Batch resource {resource_url} has no order list",
                transient=False,
            )
        return [str(o["orderId"]) for o in orders if isinstance(o, dict) and o.get("orderId")]

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.close()
