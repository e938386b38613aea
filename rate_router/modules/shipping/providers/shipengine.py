"""
ShipEngine Rate Provider

Quotes FedEx and USPS through ShipEngine's rate estimate endpoint, which
prices a parcel from postal codes alone:

    POST {SHIPENGINE_BASE_URL}/v1/rates/estimate

Error responses, network failures, and bodies that are not the expected JSON
all become ProviderError; the aggregator substitutes fallback quotes.
"""
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

import httpx

from rate_router.core.exceptions import ProviderError
from rate_router.core.http_client import CircuitOpenError, get_rate_api_client
from rate_router.modules.shipping.providers import register_provider
from rate_router.modules.shipping.providers.base import (
    BaseRateProvider,
    Quote,
    QuoteSource,
    ShipmentRequest,
    utcnow,
)
from rate_router.utils.money import to_cents
from rate_router.utils.units import grams_to_ounces

logger = logging.getLogger(__name__)

ESTIMATE_PATH = "/v1/rates/estimate"

_DAYS_RANGE = re.compile(r"(\d+)\s*(?:-\s*(\d+))?")


def parse_delivery_days(rate: Dict[str, Any]) -> Tuple[Optional[int], Optional[int]]:
    """
    Delivery-days range from a ShipEngine rate.

    Prefers the numeric delivery_days; falls back to carrier_delivery_days
    text such as "1-3 business days".
    """
    days = rate.get("delivery_days")
    if isinstance(days, int) and days > 0:
        return days, days

    text = rate.get("carrier_delivery_days")
    if isinstance(text, str):
        match = _DAYS_RANGE.search(text)
        if match:
            low = int(match.group(1))
            high = int(match.group(2)) if match.group(2) else low
            return min(low, high), max(low, high)

    return None, None


@register_provider("shipengine")
class ShipEngineProvider(BaseRateProvider):
    """FedEx and USPS quotes via ShipEngine."""

    @property
    def provider_name(self) -> str:
        return "shipengine"

    @property
    def carriers(self) -> Tuple[str, ...]:
        return ("fedex", "usps")

    def _carrier_ids(self) -> List[str]:
        ids = [
            self.get_config_value("SHIPENGINE_FEDEX_CARRIER_ID", ""),
            self.get_config_value("SHIPENGINE_USPS_CARRIER_ID", ""),
        ]
        return [carrier_id for carrier_id in ids if carrier_id]

    def _get_http_client(self):
        if self._http_client is None:
            self._http_client = get_rate_api_client(
                timeout=self.get_config_value("PROVIDER_TIMEOUT_SECONDS", 5.0)
            )
        return self._http_client

    def build_request_body(self, request: ShipmentRequest) -> Dict[str, Any]:
        return {
            "carrier_ids": self._carrier_ids(),
            "from_country_code": "US",
            "from_postal_code": request.origin_postal_code,
            "to_country_code": "US",
            "to_postal_code": request.destination_postal_code,
            "weight": {
                "value": float(grams_to_ounces(request.weight_grams)),
                "unit": "ounce",
            },
            "dimensions": {
                "unit": "inch",
                "length": float(request.dimensions.length),
                "width": float(request.dimensions.width),
                "height": float(request.dimensions.height),
            },
        }

    async def get_quotes(self, request: ShipmentRequest) -> List[Quote]:
        api_key = self.get_config_value("SHIPENGINE_API_KEY", "")
        if not api_key or not self._carrier_ids():
            raise ProviderError("ShipEngine is not configured", provider=self.provider_name)

        base_url = self.get_config_value("SHIPENGINE_BASE_URL", "https://api.shipengine.com").rstrip("/")
        client = self._get_http_client()

        try:
            response = await client.post(
                f"{base_url}{ESTIMATE_PATH}",
                json=self.build_request_body(request),
                headers={"API-Key": api_key, "Content-Type": "application/json"},
            )
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"ShipEngine returned {e.response.status_code}",
                provider=self.provider_name,
                status_code=e.response.status_code,
                details={"body": e.response.text[:500]},
            ) from e
        except (httpx.HTTPError, CircuitOpenError) as e:
            raise ProviderError(
                f"ShipEngine request failed: {type(e).__name__}: {e}",
                provider=self.provider_name,
            ) from e

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError(
                "ShipEngine returned a non-JSON body",
                provider=self.provider_name,
                status_code=response.status_code,
                details={"body": response.text[:500]},
            ) from e

        return self.parse_rates(payload)

    def parse_rates(self, payload: Any) -> List[Quote]:
        """Turn an estimate response into quotes for the covered carriers."""
        # The estimate endpoint returns a bare list; /v1/rates nests it
        if isinstance(payload, dict):
            payload = (payload.get("rate_response") or {}).get("rates", payload.get("rates"))
        if not isinstance(payload, list):
            raise ProviderError(
                "ShipEngine response has no rate list",
                provider=self.provider_name,
            )

        quotes = []
        fetched_at = utcnow()
        for rate in payload:
            if not isinstance(rate, dict):
                continue

            carrier = str(rate.get("carrier_code") or "").lower()
            if carrier not in self.carriers:
                continue

            if rate.get("error_messages"):
                logger.info(f"[SHIPENGINE] Skipping {carrier} rate with errors: {rate['error_messages']}")
                continue

            try:
                amount = to_cents((rate.get("shipping_amount") or {}).get("amount"))
                other = to_cents((rate.get("other_amount") or {}).get("amount")) or 0
            except ValueError:
                logger.warning(f"[SHIPENGINE] Unreadable amount in {carrier} rate, skipping")
                continue
            if amount is None:
                continue

            days_min, days_max = parse_delivery_days(rate)
            quotes.append(Quote(
                carrier=carrier,
                service=rate.get("service_type") or rate.get("service_code") or carrier.upper(),
                service_code=rate.get("service_code"),
                amount_cents=amount + other,
                days_min=days_min,
                days_max=days_max,
                source=QuoteSource.LIVE,
                provider=self.provider_name,
                fetched_at=fetched_at,
            ))

        return quotes
