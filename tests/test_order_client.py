"""
Tests for the order platform client and order normalization.
"""
import base64
from decimal import Decimal

import httpx
import pytest

from rate_router.core.exceptions import OrderFetchFailure
from rate_router.modules.shipping.providers.base import Dimensions
from rate_router.services.order_client import (
    OrderPlatformClient,
    estimate_dimensions,
    extract_order_id,
    order_dimensions,
    order_to_shipment_request,
    order_weight_grams,
)
from tests.conftest import make_settings, mock_http_client


class TestExtractOrderId:
    """Single-order vs batch resource URLs."""

    @pytest.mark.parametrize("url,expected", [
        ("https://ssapi.shipstation.com/orders/123456", "123456"),
        ("https://ssapi.shipstation.com/orders/123456/", "123456"),
        ("https://ssapi.shipstation.com/orders/123456?includeItems=true", "123456"),
        ("https://ssapi.shipstation.com/orders?importBatch=abc123", None),
        ("https://ssapi.shipstation.com/orders/abc", None),
        ("", None),
    ])
    def test_extract(self, url, expected):
        assert extract_order_id(url) == expected


class TestOrderNormalization:
    """Weight, dimensions, and destination from an order payload."""

    def test_order_level_weight_wins(self):
        order = {
            "weight": {"value": 16, "units": "ounces"},
            "items": [{"quantity": 3, "weight": {"value": 10, "units": "ounces"}}],
        }
        assert order_weight_grams(order) == 454

    def test_item_weights_summed_with_default_for_unweighted(self):
        order = {
            "items": [
                {"quantity": 2, "weight": {"value": 3, "units": "ounces"}},
                {"quantity": 1},
            ]
        }
        # 2 x 85g + 113g (4 oz default)
        assert order_weight_grams(order) == 283

    def test_no_weight_information_defaults_to_eight_ounces(self):
        assert order_weight_grams({"weight": {"value": 0}, "items": []}) == 227

    def test_pound_weights(self):
        assert order_weight_grams({"weight": {"value": 51, "units": "pounds"}}) == 23133

    def test_explicit_dimensions_converted(self):
        order = {"dimensions": {"length": 30.48, "width": 25.4, "height": 10.16, "units": "centimeters"}}
        assert order_dimensions(order, 1) == Dimensions(Decimal("12"), Decimal("10"), Decimal("4"))

    def test_missing_dimensions_estimated_from_item_count(self):
        assert order_dimensions({}, 1) == Dimensions(Decimal("10"), Decimal("8"), Decimal("4"))
        assert estimate_dimensions(5) == Dimensions(Decimal("12"), Decimal("10"), Decimal("6"))
        assert estimate_dimensions(6) == Dimensions(Decimal("16"), Decimal("12"), Decimal("8"))

    def test_unreadable_dimension_unit_falls_back(self):
        order = {"dimensions": {"length": 10, "width": 8, "height": 4, "units": "cubits"}}
        assert order_dimensions(order, 3) == estimate_dimensions(3)

    def test_shipment_request(self):
        order = {
            "orderId": 98765,
            "shipTo": {"postalCode": " 10001-1234 "},
            "items": [{"quantity": 2}, {"quantity": 1}],
            "advancedOptions": {"storeId": 7},
        }

        request = order_to_shipment_request(order, "90210")

        assert request.order_id == "98765"
        assert request.destination_postal_code == "10001-1234"
        assert request.origin_postal_code == "90210"
        assert request.item_count == 3
        assert request.weight_grams == 339
        assert request.organization_id == "7"
        assert request.zone is None

    def test_missing_postal_code_is_permanent_failure(self):
        with pytest.raises(OrderFetchFailure) as exc_info:
            order_to_shipment_request({"orderId": 1, "shipTo": {}}, "90210")
        assert exc_info.value.transient is False

    def test_unknown_weight_unit_is_permanent_failure(self):
        order = {
            "orderId": 55,
            "shipTo": {"postalCode": "10001"},
            "weight": {"value": 3, "units": "stone"},
        }
        with pytest.raises(OrderFetchFailure) as exc_info:
            order_to_shipment_request(order, "90210")

        assert exc_info.value.transient is False
        assert exc_info.value.order_id == "55"
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_non_numeric_weight_is_permanent_failure(self):
        order = {
            "orderId": 56,
            "shipTo": {"postalCode": "10001"},
            "weight": {"value": "heavy", "units": "ounces"},
        }
        with pytest.raises(OrderFetchFailure) as exc_info:
            order_to_shipment_request(order, "90210")

        assert exc_info.value.transient is False


class TestOrderPlatformClient:
    """HTTP behaviour against a mocked order platform."""

    @pytest.mark.asyncio
    async def test_get_order_sends_basic_auth(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            seen["path"] = request.url.path
            return httpx.Response(200, json={"orderId": 1001})

        client = OrderPlatformClient(make_settings(), http_client=mock_http_client(handler))
        order = await client.get_order("1001")
        await client.close()

        expected = base64.b64encode(b"ss-key:ss-secret").decode()
        assert order == {"orderId": 1001}
        assert seen["auth"] == f"Basic {expected}"
        assert seen["path"] == "/orders/1001"

    @pytest.mark.asyncio
    async def test_not_found_is_permanent(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"message": "not found"})

        client = OrderPlatformClient(make_settings(), http_client=mock_http_client(handler))
        with pytest.raises(OrderFetchFailure) as exc_info:
            await client.get_order("1001")

        assert exc_info.value.transient is False
        assert exc_info.value.details["status_code"] == 404

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        client = OrderPlatformClient(make_settings(), http_client=mock_http_client(handler))
        with pytest.raises(OrderFetchFailure) as exc_info:
            await client.get_order("1001")

        assert exc_info.value.transient is True

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        client = OrderPlatformClient(make_settings(), http_client=mock_http_client(handler))
        with pytest.raises(OrderFetchFailure) as exc_info:
            await client.get_order("1001")

        assert exc_info.value.transient is True

    @pytest.mark.asyncio
    async def test_non_json_body_fails(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>maintenance</html>")

        client = OrderPlatformClient(make_settings(), http_client=mock_http_client(handler))
        with pytest.raises(OrderFetchFailure):
            await client.get_order("1001")

    @pytest.mark.asyncio
    async def test_list_order_ids_from_batch(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={
                "orders": [{"orderId": 1}, {"orderId": 2}, {"orderNumber": "no-id"}],
                "total": 3,
            })

        client = OrderPlatformClient(make_settings(), http_client=mock_http_client(handler))
        ids = await client.list_order_ids("https://ssapi.shipstation.com/orders?importBatch=abc")

        assert ids == ["1", "2"]

    @pytest.mark.asyncio
    async def test_batch_without_order_list_fails(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"unexpected": True})

        client = OrderPlatformClient(make_settings(), http_client=mock_http_client(handler))
        with pytest.raises(OrderFetchFailure) as exc_info:
            await client.list_order_ids("https://ssapi.shipstation.com/orders?importBatch=abc")

        assert exc_info.value.transient is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", [
        "https://attacker.example/orders?importBatch=abc",
        "http://ssapi.shipstation.com/orders?importBatch=abc",
        "https://ssapi.shipstation.com.attacker.example/orders?importBatch=abc",
    ])
    async def test_batch_url_off_platform_refused_without_request(self, url):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"orders": [{"orderId": 1}]})

        client = OrderPlatformClient(make_settings(), http_client=mock_http_client(handler))
        with pytest.raises(OrderFetchFailure) as exc_info:
            await client.list_order_ids(url)

        assert exc_info.value.transient is False
        assert calls == []

    @pytest.mark.asyncio
    async def test_batch_url_on_configured_base_url_is_fetched(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["host"] = request.url.host
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"orders": [{"orderId": 7}]})

        client = OrderPlatformClient(
            make_settings(ORDER_PLATFORM_BASE_URL="https://orders.internal.test/"),
            http_client=mock_http_client(handler),
        )
        ids = await client.list_order_ids("https://orders.internal.test/orders?importBatch=abc")

        assert ids == ["7"]
        assert seen["host"] == "orders.internal.test"
        assert seen["auth"].startswith("Basic ")
