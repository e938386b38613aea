"""
API dependencies
"""
from fastapi import HTTPException, Request, status

from rate_router.core.config import BusinessRulesConfig
from rate_router.services.orchestrator import OrderRoutingOrchestrator


def get_orchestrator(request: Request) -> OrderRoutingOrchestrator:
    """Pipeline started in the app lifespan."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Routing pipeline is not running",
        )
    return orchestrator


def get_business_rules(request: Request) -> BusinessRulesConfig:
    return get_orchestrator(request).rules
