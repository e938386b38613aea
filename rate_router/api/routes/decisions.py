"""
Decision Routes

Read-only analytics over the decision ledger, plus a dry-run preview that
quotes and decides an order without recording anything.
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rate_router.api.deps import get_business_rules, get_orchestrator
from rate_router.core.config import BusinessRulesConfig
from rate_router.core.database import get_db
from rate_router.core.exceptions import OrderFetchFailure
from rate_router.modules.routing.decision import ReasonCode
from rate_router.schemas.routing import DecisionListResponse, DecisionResponse, DecisionSummary
from rate_router.services.ledger import (
    DEFAULT_QUERY_LIMIT,
    MAX_QUERY_LIMIT,
    DecisionFilter,
    DecisionLedger,
)
from rate_router.services.orchestrator import OrderRoutingOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/decisions", response_model=DecisionListResponse)
async def list_decisions(
    carrier: Optional[str] = Query(None, max_length=50, description="Winning carrier code"),
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    org_id: Optional[str] = Query(None, max_length=64),
    reason: Optional[ReasonCode] = None,
    limit: int = Query(DEFAULT_QUERY_LIMIT, ge=1, le=MAX_QUERY_LIMIT),
    db: AsyncSession = Depends(get_db),
    rules: BusinessRulesConfig = Depends(get_business_rules),
):
    """
    Recorded decisions, newest first. The summary covers every matching
    decision, not just the returned page.

    Orders with no record were abandoned before a decision was made.
    """
    if date_from and date_to and date_from > date_to:
        raise HTTPException(status_code=400, detail="'from' must not be after 'to'")

    filters = DecisionFilter(
        carrier=carrier,
        date_from=date_from,
        date_to=date_to,
        organization_id=org_id,
        reason=reason,
        limit=limit,
    )
    ledger = DecisionLedger(db)
    decisions = await ledger.query(filters)
    summary = await ledger.summary(filters, rules.internal_carrier)

    return DecisionListResponse(
        decisions=[DecisionResponse(**d.to_dict()) for d in decisions],
        summary=DecisionSummary(**summary),
    )


@router.get("/decisions/{order_id}", response_model=DecisionResponse)
async def get_decision(
    order_id: str,
    db: AsyncSession = Depends(get_db),
):
    decision = await DecisionLedger(db).get(order_id)
    if decision is None:
        raise HTTPException(status_code=404, detail=f"No decision recorded for order {order_id}")
    return DecisionResponse(**decision.to_dict())


@router.post("/decisions/preview/{order_id}", response_model=DecisionResponse)
async def preview_decision(
    order_id: str,
    orchestrator: OrderRoutingOrchestrator = Depends(get_orchestrator),
):
    """
    Decide for an order as the pipeline would, without writing to the ledger
    or signalling downstream.
    """
    try:
        decision = await orchestrator.preview(order_id)
    except OrderFetchFailure as e:
        logger.warning(f"Preview for order {order_id} failed: {e.code} - {e.message}")
        if e.details.get("status_code") == 404:
            raise HTTPException(status_code=404, detail=f"Order {order_id} not found")
        if not e.transient:
            raise HTTPException(status_code=422, detail=e.message)
        raise HTTPException(status_code=502, detail="Order platform unavailable")

    return DecisionResponse(**decision.to_dict())
