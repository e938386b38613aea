"""
Decision Ledger

Append-only store of routing decisions, at most one per order id.

record() is a single INSERT ... ON CONFLICT (order_id) DO NOTHING RETURNING id.
When two deliveries of the same order race, the database keeps the first row
and the loser gets no id back, which is reported as ALREADY_EXISTS. Any other
constraint failure propagates. There is no application-level lock and no
update or delete path.

Orders that were abandoned before a decision show up here only by their
absence.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from rate_router.core.exceptions import LedgerWriteConflict
from rate_router.models.decision import RoutingDecisionRecord
from rate_router.modules.routing.decision import ComparisonValues, ReasonCode, RoutingDecision
from rate_router.modules.shipping.providers.base import Quote

logger = logging.getLogger(__name__)

DEFAULT_QUERY_LIMIT = 100
MAX_QUERY_LIMIT = 1000


class LedgerWriteResult(str, enum.Enum):
    RECORDED = "recorded"
    ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True)
class DecisionFilter:
    """Read filter; every field is optional and they combine with AND."""
    carrier: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    organization_id: Optional[str] = None
    reason: Optional[ReasonCode] = None
    limit: int = DEFAULT_QUERY_LIMIT


def decision_values(decision: RoutingDecision) -> Dict[str, Any]:
    """Column values for one routing_decisions row."""
    comparison = decision.comparison
    return dict(
        order_id=decision.order_id,
        organization_id=decision.organization_id,
        decided_at=decision.decided_at,
        zone=decision.zone,
        reason=decision.reason.value,
        chosen_carrier=decision.chosen_carrier,
        chosen_service=decision.chosen_service,
        chosen_amount_cents=decision.chosen_amount_cents,
        savings_cents=decision.savings_cents,
        internal_amount_cents=comparison.internal_amount_cents,
        competitor_amount_cents=comparison.competitor_amount_cents,
        margin_threshold_cents=comparison.margin_threshold_cents,
        speed_advantage_days=comparison.speed_advantage_days,
        candidate_quotes=[q.to_dict() for q in decision.candidates],
        provider_errors=list(decision.provider_errors),
        eligibility_notes=list(decision.eligibility_notes),
    )


def record_to_decision(record: RoutingDecisionRecord) -> RoutingDecision:
    candidates = tuple(Quote.from_dict(q) for q in (record.candidate_quotes or []))

    chosen = None
    if record.chosen_carrier:
        chosen = next(
            (
                q for q in candidates
                if q.carrier == record.chosen_carrier
                and q.service == record.chosen_service
                and q.amount_cents == record.chosen_amount_cents
            ),
            None,
        )

    threshold = record.margin_threshold_cents
    return RoutingDecision(
        order_id=record.order_id,
        organization_id=record.organization_id,
        decided_at=record.decided_at,
        zone=record.zone,
        reason=ReasonCode(record.reason),
        candidates=candidates,
        chosen=chosen,
        savings_cents=record.savings_cents or 0,
        comparison=ComparisonValues(
            internal_amount_cents=record.internal_amount_cents,
            competitor_amount_cents=record.competitor_amount_cents,
            margin_threshold_cents=Decimal(threshold) if threshold is not None else None,
            speed_advantage_days=record.speed_advantage_days,
        ),
        provider_errors=tuple(record.provider_errors or ()),
        eligibility_notes=tuple(record.eligibility_notes or ()),
    )


def filter_conditions(filters: DecisionFilter) -> List[Any]:
    """WHERE clauses for a filter; combine with and_()."""
    conditions = []
    if filters.carrier:
        conditions.append(RoutingDecisionRecord.chosen_carrier == filters.carrier.lower())
    if filters.date_from:
        conditions.append(RoutingDecisionRecord.decided_at >= filters.date_from)
    if filters.date_to:
        conditions.append(RoutingDecisionRecord.decided_at <= filters.date_to)
    if filters.organization_id:
        conditions.append(RoutingDecisionRecord.organization_id == filters.organization_id)
    if filters.reason:
        conditions.append(RoutingDecisionRecord.reason == ReasonCode(filters.reason).value)
    return conditions


class DecisionLedger:
    """
    Ledger over one database session.

    Usage:
        async with get_db_session() as db:
            result = await DecisionLedger(db).record(decision)
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(self, decision: RoutingDecision) -> LedgerWriteResult:
        """
        Insert the decision unless one already exists for its order.

        Returns:
            RECORDED on insert, ALREADY_EXISTS if the order already has a decision

        Raises:
            sqlalchemy.exc.IntegrityError: on any constraint failure other than
                the order_id conflict
        """
        stmt = (
            insert(RoutingDecisionRecord)
            .values(**decision_values(decision))
            .on_conflict_do_nothing(index_elements=["order_id"])
            .returning(RoutingDecisionRecord.id)
        )
        result = await self.db.execute(stmt)

        if result.scalar_one_or_none() is None:
            conflict = LedgerWriteConflict(
                f"Decision for order {decision.order_id} already recorded",
                order_id=decision.order_id,
            )
            logger.info(f"[LEDGER] {conflict.code}: {conflict.message}")
            return LedgerWriteResult.ALREADY_EXISTS

        logger.info(
            f"[LEDGER] Recorded order {decision.order_id}: "
            f"{decision.chosen_carrier or 'none'} ({decision.reason.value})"
        )
        return LedgerWriteResult.RECORDED

    async def exists(self, order_id: str) -> bool:
        result = await self.db.execute(
            select(RoutingDecisionRecord.id)
            .where(RoutingDecisionRecord.order_id == order_id)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def get(self, order_id: str) -> Optional[RoutingDecision]:
        result = await self.db.execute(
            select(RoutingDecisionRecord).where(RoutingDecisionRecord.order_id == order_id)
        )
        record = result.scalar_one_or_none()
        return record_to_decision(record) if record else None

    async def query(self, filters: Optional[DecisionFilter] = None) -> List[RoutingDecision]:
        """
        Decisions matching the filter, newest first.

        date_from and date_to are both inclusive.
        """
        filters = filters or DecisionFilter()
        conditions = filter_conditions(filters)

        query = select(RoutingDecisionRecord)
        if conditions:
            query = query.where(and_(*conditions))

        limit = max(1, min(filters.limit, MAX_QUERY_LIMIT))
        result = await self.db.execute(
            query.order_by(RoutingDecisionRecord.decided_at.desc()).limit(limit)
        )
        return [record_to_decision(r) for r in result.scalars().all()]

    async def summary(
        self,
        filters: Optional[DecisionFilter] = None,
        internal_carrier: str = "internal",
    ) -> Dict[str, Any]:
        """
        Analytics over every decision matching the filter.

        One grouped aggregate per carrier; filters.limit does not apply.
        """
        filters = filters or DecisionFilter()
        conditions = filter_conditions(filters)

        query = select(
            RoutingDecisionRecord.chosen_carrier,
            func.count(RoutingDecisionRecord.id),
            func.coalesce(func.sum(RoutingDecisionRecord.savings_cents), 0),
        )
        if conditions:
            query = query.where(and_(*conditions))

        result = await self.db.execute(query.group_by(RoutingDecisionRecord.chosen_carrier))
        return build_summary(result.all(), internal_carrier)


def build_summary(
    carrier_totals: Iterable[Tuple[Optional[str], int, int]],
    internal_carrier: str = "internal",
) -> Dict[str, Any]:
    """
    Operator analytics from (chosen_carrier, decisions, summed savings) rows.

    capture_rate is internal wins over all decisions (no_quotes included).
    total_saved_cents sums savings on internal wins, so speed-advantage wins
    pull it down.
    """
    total = 0
    carrier_counts: Dict[str, int] = {}
    internal_wins = 0
    no_quotes = 0
    total_saved = 0

    for carrier, count, saved in carrier_totals:
        count = int(count)
        total += count
        if carrier is None:
            no_quotes += count
            continue
        carrier_counts[carrier] = carrier_counts.get(carrier, 0) + count
        if carrier == internal_carrier:
            internal_wins += count
            total_saved += int(saved or 0)

    return {
        "total_orders": total,
        "internal_orders": internal_wins,
        "competitor_orders": total - internal_wins - no_quotes,
        "no_quote_orders": no_quotes,
        "capture_rate": round(internal_wins / total, 4) if total else 0.0,
        "total_saved_cents": total_saved,
        "average_saved_cents": round(total_saved / internal_wins) if internal_wins else 0,
        "carrier_counts": carrier_counts,
    }
