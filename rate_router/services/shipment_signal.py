"""
Shipment Signal

Tells the downstream label service which carrier won. Fire-and-forget:
failures are logged and never affect the recorded decision.
"""
import logging
from typing import Optional

import httpx

from rate_router.core.config import Settings, settings as app_settings
from rate_router.core.http_client import CircuitOpenError, ResilientHTTPClient, get_signal_client
from rate_router.modules.routing.decision import RoutingDecision

logger = logging.getLogger(__name__)


class ShipmentSignal:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[ResilientHTTPClient] = None,
    ):
        self._settings = settings or app_settings
        self._http_client = http_client

    @property
    def enabled(self) -> bool:
        return bool(self._settings.SHIPMENT_SIGNAL_URL)

    def _get_http_client(self) -> ResilientHTTPClient:
        if self._http_client is None:
            self._http_client = get_signal_client(self._settings.SHIPMENT_SIGNAL_TIMEOUT_SECONDS)
        return self._http_client

    async def send(self, decision: RoutingDecision) -> bool:
        """Returns True if the downstream accepted the signal."""
        if not self.enabled:
            logger.debug(f"[SIGNAL] Disabled, skipping order {decision.order_id}")
            return False
        if decision.chosen is None:
            logger.info(f"[SIGNAL] Order {decision.order_id} has no carrier, nothing to send")
            return False

        payload = {
            "orderId": decision.order_id,
            "chosenCarrier": decision.chosen_carrier,
            "service": decision.chosen_service,
        }
        try:
            await self._get_http_client().post(self._settings.SHIPMENT_SIGNAL_URL, json=payload)
        except httpx.HTTPStatusError as e:
            logger.error(
                f"[SIGNAL] Order {decision.order_id} rejected downstream: "
                f"{e.response.status_code} - {e.response.text[:200]}"
            )
            return False
        except (httpx.HTTPError, CircuitOpenError) as e:
            logger.error(f"[SIGNAL] Order {decision.order_id} not delivered: {type(e).__name__}: {e}")
            return False

        logger.info(f"[SIGNAL] Order {decision.order_id} -> {decision.chosen_carrier} sent")
        return True

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.close()
