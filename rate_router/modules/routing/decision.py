"""
Routing decision types.
"""
import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from rate_router.modules.shipping.providers.base import Quote


class ReasonCode(str, enum.Enum):
    """Why the winning carrier won."""
    NO_QUOTES = "no_quotes"
    SOLE_CANDIDATE = "sole_candidate"
    CHEAPEST = "cheapest"
    WITHIN_MARGIN_SPEED_ADVANTAGE = "within_margin_speed_advantage"
    COMPETITOR_CHEAPER = "competitor_cheaper"
    INTERNAL_UNAVAILABLE = "internal_unavailable"


@dataclass(frozen=True)
class ComparisonValues:
    """The numbers the engine compared, kept for audit."""
    internal_amount_cents: Optional[int] = None
    competitor_amount_cents: Optional[int] = None
    margin_threshold_cents: Optional[Decimal] = None
    speed_advantage_days: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "internal_amount_cents": self.internal_amount_cents,
            "competitor_amount_cents": self.competitor_amount_cents,
            "margin_threshold_cents": (
                str(self.margin_threshold_cents) if self.margin_threshold_cents is not None else None
            ),
            "speed_advantage_days": self.speed_advantage_days,
        }


@dataclass(frozen=True)
class RoutingDecision:
    """
    The single, immutable routing outcome for one order.

    chosen is None only for NO_QUOTES. savings_cents is the losing best
    alternative minus the winner and is negative when a pricier but faster
    internal quote won inside the margin.
    """
    order_id: str
    decided_at: datetime
    zone: Optional[int]
    reason: ReasonCode
    candidates: Tuple[Quote, ...]
    chosen: Optional[Quote] = None
    savings_cents: int = 0
    comparison: ComparisonValues = ComparisonValues()
    organization_id: Optional[str] = None
    provider_errors: Tuple[Dict[str, Any], ...] = ()
    eligibility_notes: Tuple[str, ...] = ()

    @property
    def chosen_carrier(self) -> Optional[str]:
        return self.chosen.carrier if self.chosen else None

    @property
    def chosen_service(self) -> Optional[str]:
        return self.chosen.service if self.chosen else None

    @property
    def chosen_amount_cents(self) -> Optional[int]:
        return self.chosen.amount_cents if self.chosen else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "organization_id": self.organization_id,
            "decided_at": self.decided_at.isoformat(),
            "zone": self.zone,
            "reason": self.reason.value,
            "chosen_carrier": self.chosen_carrier,
            "chosen_service": self.chosen_service,
            "chosen_amount_cents": self.chosen_amount_cents,
            "savings_cents": self.savings_cents,
            "comparison": self.comparison.to_dict(),
            "candidates": [q.to_dict() for q in self.candidates],
            "provider_errors": list(self.provider_errors),
            "eligibility_notes": list(self.eligibility_notes),
        }

