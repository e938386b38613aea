"""
Decision Engine

decide() is a pure function of (candidate quotes, business rules): no I/O,
no clock unless decided_at is omitted, no environment reads.

Rules, in order:
    1. no candidates                                  -> no_quotes
    2. no competitor quotes                           -> internal, sole_candidate
    3. no internal quote                              -> cheapest competitor, internal_unavailable
    4. internal <= cheapest competitor                -> internal, cheapest
    5. internal <= competitor * (1 + margin/100) and
       internal faster by >= threshold days           -> internal, within_margin_speed_advantage
    6. otherwise                                      -> cheapest competitor, competitor_cheaper

Savings = losing best alternative - winner, in cents, never clamped.

Competitor ties on amount go to the shorter delivery estimate, then to the
earlier quote in candidate order (provider registration order).
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from rate_router.core.config import BusinessRulesConfig
from rate_router.modules.routing.decision import ComparisonValues, ReasonCode, RoutingDecision
from rate_router.modules.shipping.providers.base import Quote, utcnow

logger = logging.getLogger(__name__)

_UNKNOWN_DAYS = float("inf")


def _rank_key(indexed: Tuple[int, Quote]) -> Tuple[int, float, float, int]:
    index, quote = indexed
    days_min = quote.days_min if quote.days_min is not None else _UNKNOWN_DAYS
    days_max = quote.days_max if quote.days_max is not None else days_min
    return (quote.amount_cents, days_min, days_max, index)


def rank_quotes(quotes: Sequence[Quote]) -> List[Quote]:
    """Cheapest first; ties by shorter delivery, then original order."""
    return [q for _, q in sorted(enumerate(quotes), key=_rank_key)]


def margin_threshold(competitor_cents: int, margin_percentage: Decimal) -> Decimal:
    """Highest internal amount (in cents, unrounded) the margin tolerates."""
    return Decimal(competitor_cents) * (Decimal(100) + Decimal(margin_percentage)) / Decimal(100)


def speed_advantage_days(internal: Quote, competitor: Quote) -> Optional[int]:
    """Competitor lower-bound days minus internal lower-bound days; None if either is unknown."""
    if internal.days_min is None or competitor.days_min is None:
        return None
    return competitor.days_min - internal.days_min


def decide(
    quotes: Iterable[Quote],
    rules: BusinessRulesConfig,
    *,
    order_id: str,
    zone: Optional[int] = None,
    organization_id: Optional[str] = None,
    provider_errors: Sequence[Dict[str, Any]] = (),
    eligibility_notes: Sequence[str] = (),
    decided_at: Optional[datetime] = None,
) -> RoutingDecision:
    """
    Pick the winning carrier for one order.

    quotes must already be eligibility-filtered.
    """
    candidates = tuple(quotes)
    common = dict(
        order_id=order_id,
        decided_at=decided_at or utcnow(),
        zone=zone,
        candidates=candidates,
        organization_id=organization_id,
        provider_errors=tuple(provider_errors),
        eligibility_notes=tuple(eligibility_notes),
    )

    if not candidates:
        logger.warning(f"[ENGINE] Order {order_id}: no candidate quotes, recording no_quotes")
        return RoutingDecision(reason=ReasonCode.NO_QUOTES, **common)

    internal_quotes = [q for q in candidates if q.carrier == rules.internal_carrier]
    competitors = rank_quotes([q for q in candidates if q.carrier != rules.internal_carrier])
    internal = rank_quotes(internal_quotes)[0] if internal_quotes else None

    if not competitors:
        return _log(RoutingDecision(
            reason=ReasonCode.SOLE_CANDIDATE,
            chosen=internal,
            savings_cents=0,
            comparison=ComparisonValues(internal_amount_cents=internal.amount_cents),
            **common,
        ))

    cheapest = competitors[0]

    if internal is None:
        runner_up = competitors[1] if len(competitors) > 1 else None
        savings = runner_up.amount_cents - cheapest.amount_cents if runner_up else 0
        return _log(RoutingDecision(
            reason=ReasonCode.INTERNAL_UNAVAILABLE,
            chosen=cheapest,
            savings_cents=savings,
            comparison=ComparisonValues(competitor_amount_cents=cheapest.amount_cents),
            **common,
        ))

    threshold = margin_threshold(cheapest.amount_cents, rules.margin_percentage)
    advantage = speed_advantage_days(internal, cheapest)
    comparison = ComparisonValues(
        internal_amount_cents=internal.amount_cents,
        competitor_amount_cents=cheapest.amount_cents,
        margin_threshold_cents=threshold,
        speed_advantage_days=advantage,
    )
    internal_savings = cheapest.amount_cents - internal.amount_cents

    if internal.amount_cents <= cheapest.amount_cents:
        return _log(RoutingDecision(
            reason=ReasonCode.CHEAPEST,
            chosen=internal,
            savings_cents=internal_savings,
            comparison=comparison,
            **common,
        ))

    within_margin = Decimal(internal.amount_cents) <= threshold
    fast_enough = advantage is not None and advantage >= rules.speed_advantage_threshold_days
    above_floor = rules.min_savings_cents is None or internal_savings >= rules.min_savings_cents

    if within_margin and fast_enough and above_floor:
        return _log(RoutingDecision(
            reason=ReasonCode.WITHIN_MARGIN_SPEED_ADVANTAGE,
            chosen=internal,
            savings_cents=internal_savings,
            comparison=comparison,
            **common,
        ))

    return _log(RoutingDecision(
        reason=ReasonCode.COMPETITOR_CHEAPER,
        chosen=cheapest,
        savings_cents=internal.amount_cents - cheapest.amount_cents,
        comparison=comparison,
        **common,
    ))


def _log(decision: RoutingDecision) -> RoutingDecision:
    logger.info(
        f"[ENGINE] Order {decision.order_id}: {decision.chosen_carrier} "
        f"({decision.chosen_service}) wins - {decision.reason.value}, "
        f"savings {decision.savings_cents}c"
    )
    return decision
