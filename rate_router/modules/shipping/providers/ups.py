"""
UPS Rate Provider

Direct UPS Rating API with OAuth 2.0 client credentials. Requests "Shop"
rates (every available service) with time-in-transit so quotes carry
delivery days.
"""
import base64
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
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
from rate_router.utils.units import grams_to_pounds

logger = logging.getLogger(__name__)

UPS_PRODUCTION_URL = "https://onlinetools.ups.com"
UPS_SANDBOX_URL = "https://wwwcie.ups.com"

OAUTH_TOKEN_PATH = "/security/v1/oauth/token"
RATING_PATH = "/api/rating/v2403/Shoptimeintransit"

MIN_BILLABLE_LBS = Decimal("0.1")

UPS_SERVICE_CODES = {
    "01": "UPS Next Day Air",
    "02": "UPS 2nd Day Air",
    "03": "UPS Ground",
    "12": "UPS 3 Day Select",
    "13": "UPS Next Day Air Saver",
    "14": "UPS Next Day Air Early",
    "59": "UPS 2nd Day Air A.M.",
    "92": "UPS SurePost Less Than 1 lb",
    "93": "UPS SurePost 1 lb or Greater",
}


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _business_days(rated_shipment: Dict[str, Any]) -> Optional[int]:
    guaranteed = rated_shipment.get("GuaranteedDelivery") or {}
    days = guaranteed.get("BusinessDaysInTransit")
    if not days:
        summary = (rated_shipment.get("TimeInTransit") or {}).get("ServiceSummary") or {}
        days = (summary.get("EstimatedArrival") or {}).get("BusinessDaysInTransit")
    try:
        return int(days) if days else None
    except (TypeError, ValueError):
        return None


@register_provider("ups")
class UPSProvider(BaseRateProvider):
    """UPS quotes from the Rating API."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._access_token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None

    @property
    def provider_name(self) -> str:
        return "ups"

    @property
    def carriers(self) -> Tuple[str, ...]:
        return ("ups",)

    @property
    def base_url(self) -> str:
        return UPS_SANDBOX_URL if self.get_config_value("UPS_USE_SANDBOX", False) else UPS_PRODUCTION_URL

    def _get_http_client(self):
        if self._http_client is None:
            self._http_client = get_rate_api_client(
                timeout=self.get_config_value("PROVIDER_TIMEOUT_SECONDS", 5.0)
            )
        return self._http_client

    async def _ensure_token(self) -> str:
        """Ensure we have a valid OAuth token."""
        if self._access_token and self._token_expires_at:
            # Refresh 5 minutes before expiry
            if datetime.now(timezone.utc) < self._token_expires_at - timedelta(minutes=5):
                return self._access_token

        client_id = self.get_config_value("UPS_CLIENT_ID", "")
        client_secret = self.get_config_value("UPS_CLIENT_SECRET", "")
        if not client_id or not client_secret:
            raise ProviderError("UPS is not configured", provider=self.provider_name)

        auth_header = base64.b64encode(f"{client_id}:{client_secret}".encode()).decode()

        try:
            response = await self._get_http_client().post(
                f"{self.base_url}{OAUTH_TOKEN_PATH}",
                headers={
                    "Authorization": f"Basic {auth_header}",
                    "Content-Type": "application/x-www-form-urlencoded",
                },
                data={"grant_type": "client_credentials"},
            )
            data = response.json()
            self._access_token = data["access_token"]
        except httpx.HTTPStatusError as e:
            logger.error(f"UPS OAuth failed: {e.response.status_code} - {e.response.text[:500]}")
            raise ProviderError(
                "Failed to authenticate with UPS",
                provider=self.provider_name,
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, CircuitOpenError) as e:
            raise ProviderError(f"UPS OAuth request failed: {e}", provider=self.provider_name) from e
        except (ValueError, KeyError) as e:
            raise ProviderError("UPS OAuth returned an unreadable body", provider=self.provider_name) from e

        expires_in = int(data.get("expires_in", 3600))
        self._token_expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        logger.info(f"UPS OAuth token obtained, expires in {expires_in}s")
        return self._access_token

    def build_request_body(self, request: ShipmentRequest) -> Dict[str, Any]:
        origin = {"Address": {"PostalCode": request.origin_postal_code, "CountryCode": "US"}}
        destination = {"Address": {"PostalCode": request.destination_postal_code, "CountryCode": "US"}}
        shipper = dict(origin, ShipperNumber=self.get_config_value("UPS_ACCOUNT_NUMBER", ""))
        weight_lbs = max(grams_to_pounds(request.weight_grams), MIN_BILLABLE_LBS)

        return {
            "RateRequest": {
                "Request": {
                    "RequestOption": "Shoptimeintransit",
                    "SubVersion": "2403",
                },
                "Shipment": {
                    "Shipper": shipper,
                    "ShipTo": destination,
                    "ShipFrom": origin,
                    "DeliveryTimeInformation": {"PackageBillType": "03"},
                    "ShipmentTotalWeight": {
                        "UnitOfMeasurement": {"Code": "LBS"},
                        "Weight": str(weight_lbs),
                    },
                    "Package": {
                        "PackagingType": {"Code": "02"},  # Customer Supplied Package
                        "Dimensions": {
                            "UnitOfMeasurement": {"Code": "IN"},
                            "Length": str(request.dimensions.length),
                            "Width": str(request.dimensions.width),
                            "Height": str(request.dimensions.height),
                        },
                        "PackageWeight": {
                            "UnitOfMeasurement": {"Code": "LBS"},
                            "Weight": str(weight_lbs),
                        },
                    },
                },
            }
        }

    async def get_quotes(self, request: ShipmentRequest) -> List[Quote]:
        token = await self._ensure_token()

        try:
            response = await self._get_http_client().post(
                f"{self.base_url}{RATING_PATH}",
                json=self.build_request_body(request),
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                    "transId": f"rr_{datetime.now().strftime('%Y%m%d%H%M%S%f')}",
                    "transactionSrc": "rate-router",
                },
            )
        except httpx.HTTPStatusError as e:
            error_msg = "UPS API error"
            try:
                errors = e.response.json().get("response", {}).get("errors", [])
                if errors:
                    error_msg = errors[0].get("message", error_msg)
            except ValueError:
                pass
            raise ProviderError(
                error_msg,
                provider=self.provider_name,
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, CircuitOpenError) as e:
            raise ProviderError(f"UPS rate request failed: {e}", provider=self.provider_name) from e

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError(
                "UPS returned a non-JSON body",
                provider=self.provider_name,
                status_code=response.status_code,
            ) from e

        return self.parse_rates(payload)

    def parse_rates(self, payload: Any) -> List[Quote]:
        if not isinstance(payload, dict) or "RateResponse" not in payload:
            raise ProviderError("UPS response has no RateResponse", provider=self.provider_name)

        quotes = []
        fetched_at = utcnow()
        for rs in _as_list(payload["RateResponse"].get("RatedShipment")):
            service = rs.get("Service") or {}
            code = service.get("Code", "")
            # Negotiated rates win over published when the account has them
            charges = (rs.get("NegotiatedRateCharges") or {}).get("TotalCharge") or rs.get("TotalCharges") or {}

            try:
                amount = to_cents(charges.get("MonetaryValue"))
            except ValueError:
                logger.warning(f"[UPS] Unreadable amount for service {code}, skipping")
                continue
            if amount is None:
                continue

            days = _business_days(rs)
            quotes.append(Quote(
                carrier="ups",
                service=UPS_SERVICE_CODES.get(code, service.get("Description") or f"UPS Service {code}"),
                service_code=code,
                amount_cents=amount,
                days_min=days,
                days_max=days,
                source=QuoteSource.LIVE,
                provider=self.provider_name,
                fetched_at=fetched_at,
            ))

        return quotes
