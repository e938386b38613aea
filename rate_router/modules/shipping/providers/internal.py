"""
Internal Flat-Rate Carrier

Prices come from a zone x weight-bracket table; no network call is made.
Delivery estimates come from the postal zone mapper.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from rate_router.modules.shipping.providers import register_provider
from rate_router.modules.shipping.providers.base import (
    BaseRateProvider,
    Quote,
    QuoteSource,
    ShipmentRequest,
    utcnow,
)
from rate_router.modules.shipping.zones import (
    PostalZoneMapper,
    delivery_estimate,
    postal_zone_mapper,
)
from rate_router.utils.money import round_cents

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WeightBracket:
    """Rate for weights in [min_grams, max_grams); None = open-ended."""
    min_grams: int
    max_grams: Optional[int]
    base_cents: int
    per_kg_cents: int = 0

    def contains(self, weight_grams: int) -> bool:
        if weight_grams < self.min_grams:
            return False
        return self.max_grams is None or weight_grams < self.max_grams

    def amount_cents(self, weight_grams: int) -> int:
        if not self.per_kg_cents or weight_grams <= self.min_grams:
            return self.base_cents
        excess_kg = Decimal(weight_grams - self.min_grams) / Decimal(1000)
        return self.base_cents + round_cents(excess_kg * self.per_kg_cents)


def _brackets(up_to_500g: int, up_to_1kg: int, from_1kg: int, per_kg: int) -> Tuple[WeightBracket, ...]:
    return (
        WeightBracket(0, 500, up_to_500g),
        WeightBracket(500, 1000, up_to_1kg),
        WeightBracket(1000, None, from_1kg, per_kg),
    )


ZONE_1_RATES = _brackets(599, 799, 999, 200)
ZONE_3_RATES = _brackets(699, 899, 1199, 250)
ZONE_5_RATES = _brackets(799, 999, 1399, 300)
ZONE_8_RATES = _brackets(899, 1299, 1699, 400)

# Each zone is priced at the next published zone at or above it
FLAT_RATE_TABLE: Dict[int, Tuple[WeightBracket, ...]] = {
    0: ZONE_1_RATES,
    1: ZONE_1_RATES,
    2: ZONE_3_RATES,
    3: ZONE_3_RATES,
    4: ZONE_5_RATES,
    5: ZONE_5_RATES,
    6: ZONE_8_RATES,
    7: ZONE_8_RATES,
    8: ZONE_8_RATES,
}

INTERNAL_SERVICE_NAME = "Flat Rate"
INTERNAL_SERVICE_CODE = "flat_rate"


def flat_rate_cents(zone: int, weight_grams: int) -> Optional[int]:
    """Table price for a zone and weight, or None if the zone is not priced."""
    brackets = FLAT_RATE_TABLE.get(zone)
    if not brackets:
        return None
    for bracket in brackets:
        if bracket.contains(weight_grams):
            return bracket.amount_cents(weight_grams)
    return None


@register_provider("internal")
class InternalFlatRateProvider(BaseRateProvider):
    """Quotes the internal carrier from the flat-rate table."""

    def __init__(self, *args, zone_mapper: Optional[PostalZoneMapper] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._zone_mapper = zone_mapper or postal_zone_mapper

    @property
    def provider_name(self) -> str:
        return "internal"

    @property
    def carriers(self) -> Tuple[str, ...]:
        return (self.get_config_value("INTERNAL_CARRIER_CODE", "internal").lower(),)

    async def get_quotes(self, request: ShipmentRequest) -> List[Quote]:
        zone = request.zone
        if zone is None:
            zone = self._zone_mapper.get_zone(request.destination_postal_code)

        amount = flat_rate_cents(zone, request.weight_grams)
        if amount is None:
            logger.info(f"[INTERNAL] No flat rate for zone {zone}, {request.weight_grams}g")
            return []

        estimate = delivery_estimate(zone)
        return [Quote(
            carrier=self.carriers[0],
            service=INTERNAL_SERVICE_NAME,
            service_code=INTERNAL_SERVICE_CODE,
            amount_cents=amount,
            days_min=estimate.min_days,
            days_max=estimate.max_days,
            source=QuoteSource.LIVE,
            provider=self.provider_name,
            fetched_at=utcnow(),
        )]
