"""
Routing Schemas

Pydantic models for the webhook and decision API.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

ORDER_NOTIFY = "ORDER_NOTIFY"


# ==================== Webhook Schemas ====================


class OrderWebhookPayload(BaseModel):
    """Order platform webhook body."""
    resource_url: str = Field(..., min_length=1, max_length=2048)
    resource_type: str = Field(..., min_length=1, max_length=50)

    @field_validator("resource_type")
    @classmethod
    def normalize_resource_type(cls, v):
        return v.strip().upper()


class WebhookAck(BaseModel):
    status: str  # accepted | ignored
    resource_type: str
    order_id: Optional[str] = None


# ==================== Decision Schemas ====================


class QuoteResponse(BaseModel):
    carrier: str
    service: str
    service_code: Optional[str] = None
    amount_cents: int
    days_min: Optional[int] = None
    days_max: Optional[int] = None
    source: str
    provider: str
    fetched_at: datetime


class ComparisonResponse(BaseModel):
    internal_amount_cents: Optional[int] = None
    competitor_amount_cents: Optional[int] = None
    margin_threshold_cents: Optional[str] = Field(None, description="Decimal string, unrounded")
    speed_advantage_days: Optional[int] = None


class DecisionResponse(BaseModel):
    """A recorded routing decision."""
    order_id: str
    organization_id: Optional[str] = None
    decided_at: datetime
    zone: Optional[int] = None
    reason: str
    chosen_carrier: Optional[str] = None
    chosen_service: Optional[str] = None
    chosen_amount_cents: Optional[int] = None
    savings_cents: int = Field(..., description="Losing best alternative minus winner; negative allowed")
    comparison: ComparisonResponse
    candidates: List[QuoteResponse] = []
    provider_errors: List[Dict[str, Any]] = []
    eligibility_notes: List[str] = []


class DecisionSummary(BaseModel):
    total_orders: int
    internal_orders: int
    competitor_orders: int
    no_quote_orders: int
    capture_rate: float = Field(..., description="Internal wins / all decisions, 0-1")
    total_saved_cents: int
    average_saved_cents: int
    carrier_counts: Dict[str, int]


class DecisionListResponse(BaseModel):
    decisions: List[DecisionResponse]
    summary: DecisionSummary
