"""
Fallback Rate Table

One published table of estimated rates keyed by (carrier, zone). The
aggregator substitutes these quotes when a live provider fails or leaves a
carrier out, so no competitor lane is ever empty.

Staleness policy: the table carries the date it was published and a
maximum age. A stale table is still used (an estimate beats an empty lane),
but every stale lookup logs a warning so the table gets refreshed.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, Optional, Tuple

from rate_router.modules.shipping.providers.base import (
    Quote,
    QuoteSource,
    ShipmentRequest,
    utcnow,
)
from rate_router.modules.shipping.zones import DEFAULT_ZONE, MAX_ZONE, MIN_ZONE
from rate_router.utils.money import round_cents

logger = logging.getLogger(__name__)

GRAMS_PER_POUND = Decimal("453.59237")

DEFAULT_PUBLISHED_AT = date(2025, 1, 6)
DEFAULT_MAX_AGE_DAYS = 90


@dataclass(frozen=True)
class FallbackRate:
    """Estimated rate for one carrier in one zone."""
    service: str
    service_code: str
    base_cents: int              # first pound
    per_additional_lb_cents: int
    days_min: int
    days_max: int

    def amount_cents(self, weight_grams: int) -> int:
        extra_lbs = max(Decimal("0"), Decimal(weight_grams) / GRAMS_PER_POUND - 1)
        return self.base_cents + round_cents(extra_lbs * self.per_additional_lb_cents)


# Ground service per carrier: (service, service code, surcharge over base, days)
_GROUND_SERVICES: Dict[str, Tuple[str, str, int, int, int]] = {
    "fedex": ("FedEx Ground", "fedex_ground", 350, 1, 3),
    "usps": ("USPS Ground Advantage", "usps_ground_advantage", 125, 3, 5),
    "ups": ("UPS Ground", "ups_ground", 275, 1, 4),
}

BASE_RATE_CENTS = 850
PER_ADDITIONAL_LB_CENTS = 150
PER_ZONE_ABOVE_3_CENTS = 125


def build_default_rates() -> Dict[Tuple[str, int], FallbackRate]:
    """$8.50 base, +$1.50 per pound over one, +$1.25 per zone above 3, plus a carrier surcharge."""
    rates = {}
    for carrier, (service, code, surcharge, days_min, days_max) in _GROUND_SERVICES.items():
        for zone in range(MIN_ZONE, MAX_ZONE + 1):
            zone_surcharge = max(0, zone - 3) * PER_ZONE_ABOVE_3_CENTS
            rates[(carrier, zone)] = FallbackRate(
                service=service,
                service_code=code,
                base_cents=BASE_RATE_CENTS + zone_surcharge + surcharge,
                per_additional_lb_cents=PER_ADDITIONAL_LB_CENTS,
                days_min=days_min,
                days_max=days_max,
            )
    return rates


class FallbackRateTable:
    """(carrier, zone) -> FallbackRate lookup with a staleness check."""

    def __init__(
        self,
        rates: Optional[Dict[Tuple[str, int], FallbackRate]] = None,
        published_at: date = DEFAULT_PUBLISHED_AT,
        max_age_days: int = DEFAULT_MAX_AGE_DAYS,
    ):
        self._rates = build_default_rates() if rates is None else dict(rates)
        self.published_at = published_at
        self.max_age_days = max_age_days

    def age_days(self, today: Optional[date] = None) -> int:
        today = today or datetime.now(timezone.utc).date()
        return (today - self.published_at).days

    def is_stale(self, today: Optional[date] = None) -> bool:
        return self.age_days(today) > self.max_age_days

    def covers(self, carrier: str) -> bool:
        carrier = carrier.lower()
        return any(c == carrier for c, _ in self._rates)

    def lookup(self, carrier: str, zone: Optional[int]) -> Optional[FallbackRate]:
        carrier = carrier.lower()
        zone = DEFAULT_ZONE if zone is None else zone
        rate = self._rates.get((carrier, zone))
        if rate is None and zone != DEFAULT_ZONE:
            rate = self._rates.get((carrier, DEFAULT_ZONE))
        return rate

    def quote(self, carrier: str, request: ShipmentRequest, provider: str) -> Optional[Quote]:
        """Build a fallback Quote, or None if the carrier is not in the table."""
        rate = self.lookup(carrier, request.zone)
        if rate is None:
            return None

        if self.is_stale():
            logger.warning(
                f"[FALLBACK] Rate table published {self.published_at.isoformat()} is "
                f"{self.age_days()} days old (max {self.max_age_days}); "
                f"using stale estimate for {carrier}"
            )

        return Quote(
            carrier=carrier.lower(),
            service=rate.service,
            service_code=rate.service_code,
            amount_cents=rate.amount_cents(request.weight_grams),
            days_min=rate.days_min,
            days_max=rate.days_max,
            source=QuoteSource.FALLBACK,
            provider=provider,
            fetched_at=utcnow(),
        )
