# backend/routes/checkout.py
import asyncio
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from config import settings
from database import get_db
from routes.cart import resolve_session_token
from schemas.checkout import CheckoutPayload, CheckoutResponse, PaymentConfirmResponse
from services import cart as cart_store
from services import discount as discount_engine
from services.errors import EmptyCart, ShopError
from services.notification import NotificationSink, get_notification_sink
from services.order import OrderOrchestrator
from services.payment.base import PaymentGateway
from services.payment.factory import get_payment_gateway
from utils.audit import write_log, client_ip, session_actor

router = APIRouter(prefix="/shop", tags=["Checkout"])
logger = logging.getLogger(__name__)


@router.post("/checkout", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def checkout(
    payload: CheckoutPayload,
    request: Request,
    x_session_token: Optional[str] = Header(None, alias="X-Session-Token"),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationSink = Depends(get_notification_sink),
):
    token = payload.session_token or resolve_session_token(request, x_session_token)
    actor = session_actor(token)

    try:
        cart = await run_in_threadpool(cart_store.get_cart, db, token)
        if cart is None:
            raise EmptyCart("Cart is empty")
        discount = None
        if payload.discount_code:
            discount = await run_in_threadpool(discount_engine.validate_code, db, payload.discount_code)

        orchestrator = OrderOrchestrator(db, gateway, notifier)
        order, intent = await orchestrator.create_order(cart, payload, discount)
    except ShopError as e:
        await run_in_threadpool(
            write_log,
            db,
            actor=actor,
            action="CHECKOUT",
            resource="orders",
            status="FAILED",
            ip=client_ip(request),
            meta={"error": e.__class__.__name__, "detail": e.message},
        )
        raise

    response = CheckoutResponse(
        order_id=order.id,
        order_number=order.order_number,
        payment_intent_id=intent.id,
        client_secret=intent.client_secret,
        subtotal=float(order.subtotal),
        tax=float(order.tax),
        discount=float(order.discount),
        total=float(order.total),
        currency=order.currency,
    )

    # The order is committed; an empty cart is the only leftover of the session
    await run_in_threadpool(cart_store.clear_cart, db, token)

    await run_in_threadpool(
        write_log,
        db,
        actor=actor,
        action="CHECKOUT",
        resource="orders",
        ip=client_ip(request),
        meta={"order_id": response.order_id, "order_number": response.order_number, "total": response.total},
    )
    return response


@router.post("/payments/{intent_id}/confirm", response_model=PaymentConfirmResponse)
async def confirm_payment(
    intent_id: str,
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    # Order state only moves on the provider's webhook, not here
    try:
        await asyncio.wait_for(gateway.confirm_payment(intent_id), timeout=settings.PAYMENT_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("Confirmation of intent %s timed out", intent_id)
        return PaymentConfirmResponse(payment_intent_id=intent_id, status="processing")
    return PaymentConfirmResponse(payment_intent_id=intent_id, status="confirmed")
