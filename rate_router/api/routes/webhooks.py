"""
Webhook Routes

Order platform notifications. The handler acknowledges with 202 as soon as
the order is handed to the pipeline; routing happens in the background.
"""
import hashlib
import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from rate_router.api.deps import get_orchestrator
from rate_router.core.config import settings
from rate_router.schemas.routing import ORDER_NOTIFY, OrderWebhookPayload, WebhookAck
from rate_router.services.orchestrator import OrderRoutingOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "X-Webhook-Signature"


def verify_webhook_signature(request: Request, body: bytes) -> bool:
    """
    Verify the HMAC-SHA256 signature of the raw body.

    Accepts a bare hex digest or one prefixed with "sha256=".
    """
    if not settings.WEBHOOK_SECRET:
        logger.warning("WEBHOOK_SECRET not set, skipping verification")
        return True  # Allow in dev mode

    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        logger.warning(f"Missing {SIGNATURE_HEADER} header")
        return False

    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]

    expected = hmac.new(
        settings.WEBHOOK_SECRET.encode(),
        body,
        hashlib.sha256,
    ).hexdigest()

    return hmac.compare_digest(signature.lower(), expected)


@router.post(
    "/webhooks/orders",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=WebhookAck,
)
async def handle_order_webhook(
    request: Request,
    orchestrator: OrderRoutingOrchestrator = Depends(get_orchestrator),
):
    """
    Handle an order platform webhook.

    ORDER_NOTIFY events start the routing pipeline; other resource types are
    acknowledged and ignored. Redeliveries are safe: the ledger keeps one
    decision per order.
    """
    body = await request.body()

    if not verify_webhook_signature(request, body):
        logger.warning("Invalid order webhook signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = OrderWebhookPayload.model_validate_json(body)
    except ValidationError as e:
        logger.error(f"Rejected order webhook payload: {e.error_count()} error(s)")
        raise HTTPException(status_code=400, detail="Malformed webhook payload")

    if payload.resource_type != ORDER_NOTIFY:
        logger.info(f"Ignoring webhook resource_type={payload.resource_type}")
        return WebhookAck(status="ignored", resource_type=payload.resource_type)

    order_id = orchestrator.accept_resource(payload.resource_url)
    logger.info(
        f"Order webhook accepted: {payload.resource_type} "
        f"{'order ' + order_id if order_id else 'batch ' + payload.resource_url}"
    )

    return WebhookAck(status="accepted", resource_type=payload.resource_type, order_id=order_id)
