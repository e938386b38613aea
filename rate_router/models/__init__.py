from rate_router.models.decision import RoutingDecisionRecord
