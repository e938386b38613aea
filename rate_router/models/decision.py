"""
Routing Decision Ledger Model

One row per order, written once. order_id is the unique key: a second write
for the same order is rejected by the database and reported as
ALREADY_EXISTS by the ledger, never updated in place.

Amounts are integer cents. candidate_quotes keeps every quote the engine
saw so a decision can be re-derived offline.
"""
from sqlalchemy import (
    Column,
    BigInteger,
    Integer,
    String,
    Numeric,
    DateTime,
    JSON,
    Index,
)
from sqlalchemy.sql import func

from rate_router.core.database import Base


class RoutingDecisionRecord(Base):
    """Append-only audit row for a routing decision."""
    __tablename__ = "routing_decisions"

    id = Column(BigInteger, primary_key=True)

    # Identity
    order_id = Column(String(64), nullable=False, unique=True, index=True)
    organization_id = Column(String(64), nullable=True, index=True)
    decided_at = Column(DateTime(timezone=True), nullable=False, index=True)
    zone = Column(Integer, nullable=True)

    # Outcome
    reason = Column(String(50), nullable=False, index=True)
    chosen_carrier = Column(String(50), nullable=True, index=True)  # NULL for no_quotes
    chosen_service = Column(String(100), nullable=True)
    chosen_amount_cents = Column(Integer, nullable=True)
    savings_cents = Column(Integer, nullable=False, default=0)  # Negative for speed-advantage wins

    # Comparison values
    internal_amount_cents = Column(Integer, nullable=True)
    competitor_amount_cents = Column(Integer, nullable=True)
    margin_threshold_cents = Column(Numeric(14, 4), nullable=True)
    speed_advantage_days = Column(Integer, nullable=True)

    # Audit detail
    candidate_quotes = Column(JSON, nullable=False, default=list)
    provider_errors = Column(JSON, nullable=False, default=list)
    eligibility_notes = Column(JSON, nullable=False, default=list)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_routing_decisions_org_decided", "organization_id", "decided_at"),
    )

    def __repr__(self):
        return f"<RoutingDecisionRecord {self.order_id} -> {self.chosen_carrier} ({self.reason})>"
