"""
Order Routing Orchestrator

Drives one order through the pipeline, one asyncio task per order:

    received -> deduped -> order_fetched -> quoted -> decided
             -> ledger_written -> signal_sent

Terminal side states: duplicate (a decision already exists) and abandoned
(the order could not be fetched).

The webhook handler only calls accept_resource(); everything after acknowledgement
runs here. Each order keeps a PipelineRecord, so a redelivery for an order
that stopped after `decided` writes the stored decision instead of quoting
again, and one that stopped after `ledger_written` only re-sends the signal.

The ledger's unique insert is the only cross-task coordination. A cancelled
pipeline stops at its current await; nothing is written before the complete
decision exists.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from rate_router.core.config import BusinessRulesConfig, Settings, settings as app_settings
from rate_router.core.database import get_db_session
from rate_router.core.exceptions import NoQuotesAvailable, OrderFetchFailure
from rate_router.core.http_client import calculate_backoff
from rate_router.modules.routing.decision import RoutingDecision
from rate_router.modules.routing.eligibility import EligibilityValidator
from rate_router.modules.routing.engine import decide
from rate_router.modules.shipping.aggregator import RateAggregator
from rate_router.modules.shipping.providers import RateProviderFactory
from rate_router.modules.shipping.providers.base import utcnow
from rate_router.modules.shipping.providers.fallback import FallbackRateTable
from rate_router.modules.shipping.zones import PostalZoneMapper, postal_zone_mapper
from rate_router.services.ledger import DecisionLedger, LedgerWriteResult
from rate_router.services.order_client import (
    OrderPlatformClient,
    extract_order_id,
    order_to_shipment_request,
)
from rate_router.services.shipment_signal import ShipmentSignal

logger = logging.getLogger(__name__)

MAX_TRACKED_ORDERS = 10000


class PipelineState(str, enum.Enum):
    RECEIVED = "received"
    DEDUPED = "deduped"
    ORDER_FETCHED = "order_fetched"
    QUOTED = "quoted"
    DECIDED = "decided"
    LEDGER_WRITTEN = "ledger_written"
    SIGNAL_SENT = "signal_sent"
    DUPLICATE = "duplicate"
    ABANDONED = "abandoned"


@dataclass
class PipelineRecord:
    """Progress of one order through the pipeline."""
    order_id: str
    state: PipelineState = PipelineState.RECEIVED
    decision: Optional[RoutingDecision] = None
    fetch_attempts: int = 0
    error: Optional[str] = None
    updated_at: datetime = field(default_factory=utcnow)

    def advance(self, state: PipelineState) -> None:
        logger.debug(f"[PIPELINE] Order {self.order_id}: {self.state.value} -> {state.value}")
        self.state = state
        self.updated_at = utcnow()


class OrderRoutingOrchestrator:
    """
    Usage:
        orchestrator = OrderRoutingOrchestrator.from_settings(settings)
        orchestrator.submit("123456")
        ...
        await orchestrator.shutdown()
    """

    def __init__(
        self,
        aggregator: RateAggregator,
        rules: BusinessRulesConfig,
        order_client: OrderPlatformClient,
        signal: ShipmentSignal,
        settings: Optional[Settings] = None,
        zone_mapper: Optional[PostalZoneMapper] = None,
        validator: Optional[EligibilityValidator] = None,
        session_factory: Callable[[], Any] = get_db_session,
        ledger_factory: Callable[[Any], DecisionLedger] = DecisionLedger,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.aggregator = aggregator
        self.rules = rules
        self.order_client = order_client
        self.signal = signal
        self.settings = settings or app_settings
        self.zone_mapper = zone_mapper or postal_zone_mapper
        self.validator = validator or EligibilityValidator(rules)
        self._session_factory = session_factory
        self._ledger_factory = ledger_factory
        self._sleep = sleep

        self.records: Dict[str, PipelineRecord] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._batch_tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "OrderRoutingOrchestrator":
        settings = settings or app_settings
        fallback_table = FallbackRateTable(max_age_days=settings.FALLBACK_TABLE_MAX_AGE_DAYS)
        providers = RateProviderFactory.get_enabled_providers(settings, fallback_table)
        logger.info(f"[PIPELINE] Rate providers: {', '.join(p.provider_name for p in providers) or 'none'}")
        return cls(
            aggregator=RateAggregator(providers, timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS),
            rules=BusinessRulesConfig.from_settings(settings),
            order_client=OrderPlatformClient(settings),
            signal=ShipmentSignal(settings),
            settings=settings,
        )

    # =========================================================================
    # Submission
    # =========================================================================

    def is_in_flight(self, order_id: str) -> bool:
        task = self._tasks.get(order_id)
        return task is not None and not task.done()

    def submit(self, order_id: str) -> Optional[asyncio.Task]:
        """
        Start the pipeline for an order in the background.

        Returns None if the order already has a pipeline running.
        """
        order_id = str(order_id)
        if self.is_in_flight(order_id):
            logger.info(f"[PIPELINE] Order {order_id} already in flight, ignoring redelivery")
            return None

        task = asyncio.create_task(self.process(order_id), name=f"route-order-{order_id}")
        self._tasks[order_id] = task
        task.add_done_callback(lambda t, oid=order_id: self._task_done(oid, t))
        return task

    def accept_resource(self, resource_url: str) -> Optional[str]:
        """
        Submit the order(s) behind a webhook resource URL without waiting.

        Single-order URLs are submitted directly and their order id returned.
        Batch URLs are listed in a background task and None is returned.
        """
        order_id = extract_order_id(resource_url)
        if order_id:
            self.submit(order_id)
            return order_id

        task = asyncio.create_task(self._submit_batch(resource_url))
        self._batch_tasks.add(task)
        task.add_done_callback(self._batch_tasks.discard)
        return None

    async def _submit_batch(self, resource_url: str) -> List[str]:
        try:
            order_ids = await self.order_client.list_order_ids(resource_url)
        except OrderFetchFailure as e:
            logger.error(f"[PIPELINE] Could not list batch {resource_url}: {e.code} - {e.message}")
            return []

        logger.info(f"[PIPELINE] Batch {resource_url}: {len(order_ids)} order(s)")
        for order_id in order_ids:
            self.submit(order_id)
        return order_ids

    def _task_done(self, order_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(order_id) is task:
            del self._tasks[order_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[PIPELINE] Order {order_id} task crashed: {task.exception()!r}")

    def _track(self, record: PipelineRecord) -> None:
        self.records.pop(record.order_id, None)
        self.records[record.order_id] = record
        while len(self.records) > MAX_TRACKED_ORDERS:
            oldest = next(iter(self.records))
            if self.is_in_flight(oldest):
                break
            del self.records[oldest]

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def process(self, order_id: str) -> PipelineRecord:
        """Run (or resume) the pipeline for one order. Never raises except on cancellation."""
        prior = self.records.get(order_id)
        record = PipelineRecord(order_id=order_id)

        if prior and prior.decision is not None and prior.state in (
            PipelineState.DECIDED,
            PipelineState.LEDGER_WRITTEN,
        ):
            record.decision = prior.decision
            record.state = prior.state
            logger.info(f"[PIPELINE] Order {order_id}: resuming from {prior.state.value}")
        self._track(record)

        try:
            if record.decision is None:
                if await self._already_decided(order_id):
                    record.advance(PipelineState.DUPLICATE)
                    logger.info(f"[PIPELINE] Order {order_id}: decision already recorded, skipping")
                    return record
                record.advance(PipelineState.DEDUPED)
                record.decision = await self._decide(record)

            if record.state == PipelineState.DECIDED:
                result = await self._write(record.decision)
                if result == LedgerWriteResult.ALREADY_EXISTS:
                    record.advance(PipelineState.DUPLICATE)
                    return record
                record.advance(PipelineState.LEDGER_WRITTEN)

            if await self.signal.send(record.decision):
                record.advance(PipelineState.SIGNAL_SENT)

        except OrderFetchFailure as e:
            record.error = e.message
            record.advance(PipelineState.ABANDONED)
            logger.error(
                f"[PIPELINE] Order {order_id} abandoned after {record.fetch_attempts} fetch attempt(s): "
                f"{e.code} - {e.message}"
            )
        except asyncio.CancelledError:
            logger.warning(f"[PIPELINE] Order {order_id} cancelled in state {record.state.value}")
            raise
        except Exception as e:
            record.error = f"{type(e).__name__}: {e}"
            logger.error(
                f"[PIPELINE] Order {order_id} failed in state {record.state.value}: {record.error}",
                exc_info=True,
            )

        return record

    async def _already_decided(self, order_id: str) -> bool:
        async with self._session_factory() as db:
            return await self._ledger_factory(db).exists(order_id)

    async def _write(self, decision: RoutingDecision) -> LedgerWriteResult:
        async with self._session_factory() as db:
            return await self._ledger_factory(db).record(decision)

    async def _fetch_order(self, record: PipelineRecord) -> Dict[str, Any]:
        """
        Fetch with exponential backoff and jitter.

        Raises:
            OrderFetchFailure: on a permanent failure, or once attempts run out
        """
        max_attempts = max(1, self.settings.ORDER_FETCH_MAX_ATTEMPTS)
        for attempt in range(max_attempts):
            record.fetch_attempts = attempt + 1
            try:
                return await self.order_client.get_order(record.order_id)
            except OrderFetchFailure as e:
                if not e.transient or attempt + 1 >= max_attempts:
                    raise
                delay = calculate_backoff(
                    attempt,
                    self.settings.ORDER_FETCH_BASE_DELAY_SECONDS,
                    self.settings.ORDER_FETCH_MAX_DELAY_SECONDS,
                )
                logger.warning(
                    f"[PIPELINE] Order {record.order_id} fetch attempt {attempt + 1}/{max_attempts} "
                    f"failed ({e.message}), retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

    async def _decide(self, record: PipelineRecord) -> RoutingDecision:
        order = await self._fetch_order(record)
        request = order_to_shipment_request(order, self.settings.ORIGIN_POSTAL_CODE)
        record.advance(PipelineState.ORDER_FETCHED)

        zone = self.zone_mapper.get_zone(request.destination_postal_code)
        request = request.with_zone(zone)

        try:
            result = await self.aggregator.quote(request)
            quotes, errors = result.quotes, result.errors
        except NoQuotesAvailable as e:
            quotes, errors = [], e.errors
        record.advance(PipelineState.QUOTED)

        eligible, notes = self.validator.filter_quotes(request, quotes)
        decision = decide(
            eligible,
            self.rules,
            order_id=record.order_id,
            zone=zone,
            organization_id=request.organization_id,
            provider_errors=[e.to_dict() for e in errors],
            eligibility_notes=notes,
        )
        record.advance(PipelineState.DECIDED)
        return decision

    async def preview(self, order_id: str) -> RoutingDecision:
        """
        Fetch, quote and decide for one order without recording or signalling.

        The pipeline records are left untouched, so a later webhook for the
        same order runs in full.

        Raises:
            OrderFetchFailure: if the order cannot be fetched or normalized
        """
        record = PipelineRecord(order_id=str(order_id))
        decision = await self._decide(record)
        logger.info(
            f"[PIPELINE] Preview for order {record.order_id}: "
            f"{decision.chosen_carrier or 'none'} ({decision.reason.value})"
        )
        return decision

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def shutdown(self) -> None:
        """Cancel in-flight pipelines and close outbound clients."""
        tasks = [t for t in list(self._tasks.values()) + list(self._batch_tasks) if not t.done()]
        if tasks:
            logger.info(f"[PIPELINE] Cancelling {len(tasks)} in-flight order(s)")
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        await self.aggregator.close()
        await self.order_client.close()
        await self.signal.close()
