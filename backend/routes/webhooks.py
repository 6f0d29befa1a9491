# backend/routes/webhooks.py
import logging
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError
from sqlalchemy.orm import Session

from database import get_db
from schemas.webhook import WebhookEvent
from services.marketplace import MarketplaceSync, get_marketplace_sync
from services.notification import NotificationSink, get_notification_sink
from services.payment.base import PaymentGateway
from services.payment.factory import get_payment_gateway
from services.reconciler import EVENT_REFUNDED, EVENT_SUCCEEDED, Outcome, PaymentEvent, PaymentReconciler
from utils.audit import write_log, client_ip

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])
logger = logging.getLogger(__name__)


def _to_payment_event(event: WebhookEvent) -> PaymentEvent:
    obj = event.data.object
    intent_id = obj.id
    if event.type == EVENT_REFUNDED and obj.payment_intent:
        intent_id = obj.payment_intent
    reason = obj.last_payment_error.message if obj.last_payment_error else None
    return PaymentEvent(type=event.type, intent_id=intent_id, event_id=event.id, reason=reason)


@router.post("/payment")
async def payment_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationSink = Depends(get_notification_sink),
    marketplace: MarketplaceSync = Depends(get_marketplace_sync),
    payment_signature: Optional[str] = Header(None, alias="Payment-Signature"),
):
    # Always 200: a non-2xx answer only makes the provider redeliver
    body = await request.body()
    logger.info("Payment webhook received (%s bytes, gateway %s)", len(body), gateway.name)

    if gateway.signs_webhooks and not gateway.verify_webhook(body, payment_signature):
        logger.warning("Webhook signature verification failed, payload kept for manual follow-up: %s",
                       body[:1000].decode("utf-8", errors="replace"))
        return {"status": "ignored"}

    try:
        event = WebhookEvent.model_validate_json(body)
    except ValidationError as e:
        logger.warning("Malformed webhook payload, needs manual follow-up: %s", e)
        return {"status": "ignored"}

    payment_event = _to_payment_event(event)
    reconciler = PaymentReconciler(db, gateway, notifier)
    try:
        result = await run_in_threadpool(reconciler.apply_event, payment_event)
    except Exception:
        await run_in_threadpool(db.rollback)
        logger.exception("Webhook %s (%s) for intent %s failed after parsing, flagged for operator follow-up",
                         event.id, event.type, payment_event.intent_id)
        return {"status": "error"}

    if result.outcome == Outcome.APPLIED:
        order_number = result.order.order_number
        await run_in_threadpool(
            write_log,
            db,
            actor="webhook",
            action=event.type,
            resource="orders",
            ip=client_ip(request),
            meta={"order_number": order_number, "event_id": event.id,
                  "payment_status": result.order.payment_status.value},
        )
        if payment_event.type == EVENT_SUCCEEDED:
            # Slow downstream work runs after the response has been sent
            background_tasks.add_task(marketplace.order_paid, order_number)

    return {"status": result.outcome.value}
