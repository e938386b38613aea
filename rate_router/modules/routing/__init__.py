"""
Routing: eligibility filtering and the carrier decision.
"""
from rate_router.modules.routing.decision import ComparisonValues, ReasonCode, RoutingDecision
from rate_router.modules.routing.eligibility import EligibilityResult, EligibilityValidator
from rate_router.modules.routing.engine import decide, rank_quotes

__all__ = [
    "ComparisonValues",
    "ReasonCode",
    "RoutingDecision",
    "EligibilityResult",
    "EligibilityValidator",
    "decide",
    "rank_quotes",
]
