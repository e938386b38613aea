"""
Internal Carrier Eligibility

The internal carrier only takes parcels within the configured weight,
dimension, and zone limits. External carriers are always eligible. Ineligible
internal quotes are removed before the decision engine sees the candidates.
"""
import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from rate_router.core.config import BusinessRulesConfig
from rate_router.modules.shipping.providers.base import Quote, ShipmentRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    reasons: Tuple[str, ...] = ()


class EligibilityValidator:
    """
    Checks a shipment against the internal carrier's limits.

    Dimensions are compared longest-to-longest, so a 12x24x18 box fits a
    24x18x12 limit.
    """

    def __init__(self, rules: BusinessRulesConfig):
        self.rules = rules

    def check(self, request: ShipmentRequest, carrier: str) -> EligibilityResult:
        if carrier.lower() != self.rules.internal_carrier:
            return EligibilityResult(eligible=True)

        bounds = self.rules.eligibility
        reasons: List[str] = []

        if request.weight_grams > bounds.max_weight_grams:
            reasons.append(
                f"Weight {request.weight_grams}g exceeds limit of {bounds.max_weight_grams}g"
            )

        limits = tuple(sorted(bounds.max_dimensions_in, reverse=True))
        for label, size, limit in zip(("Longest", "Middle", "Shortest"), request.dimensions.sorted_desc(), limits):
            if size > limit:
                reasons.append(f"{label} side {size}in exceeds limit of {limit}in")

        if request.zone is not None and request.zone > bounds.max_zone:
            reasons.append(f"Delivery zone {request.zone} not serviced (max {bounds.max_zone})")

        return EligibilityResult(eligible=not reasons, reasons=tuple(reasons))

    def is_eligible(self, request: ShipmentRequest, carrier: str) -> bool:
        return self.check(request, carrier).eligible

    def filter_quotes(
        self,
        request: ShipmentRequest,
        quotes: Sequence[Quote],
    ) -> Tuple[List[Quote], List[str]]:
        """Drop quotes for carriers the shipment is ineligible for; returns (kept, notes)."""
        kept: List[Quote] = []
        notes: List[str] = []
        checked = {}

        for quote in quotes:
            result = checked.get(quote.carrier)
            if result is None:
                result = self.check(request, quote.carrier)
                checked[quote.carrier] = result
                if not result.eligible:
                    notes.extend(f"{quote.carrier}: {reason}" for reason in result.reasons)
                    logger.info(
                        f"[ELIGIBILITY] Order {request.order_id}: {quote.carrier} ineligible - "
                        f"{'; '.join(result.reasons)}"
                    )
            if result.eligible:
                kept.append(quote)

        return kept, notes
