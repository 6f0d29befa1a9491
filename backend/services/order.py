# backend/services/order.py
"""
Order orchestration: cart -> reserved stock -> payment intent -> pending order.

``OrderOrchestrator.create_order`` runs as one database transaction. Stock is
reserved with conditional updates on the same session, so any failure (a
line out of stock, the gateway refusing the amount, a timeout, the caller
going away) rolls back every reservation of the attempt together with the
order rows. A gateway intent that outlives a failed checkout is cancelled.
"""
import asyncio
import logging
import secrets
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session, selectinload

from config import settings
from models.cart import Cart
from models.discount import DiscountCode
from models.notification import NotificationType
from models.order import Order, OrderItem, PaymentStatus, FulfillmentStatus
from services import discount as discount_engine
from services import inventory
from services.cart import line_unit_price
from services.errors import (
    EmptyCart, OrderNotFound, PaymentFailed, PaymentValidationFailed, ProductNotFound,
)
from services.notification import NotificationSink, OrderEvent
from services.payment.base import PaymentGateway, PaymentIntent, PaymentItem
from services.tax import default_tax_policy
from utils.money import to_money, utcnow

logger = logging.getLogger(__name__)


def generate_order_number() -> str:
    # Sortable by creation time; the random tail keeps same-second checkouts apart
    return f"ORD-{utcnow():%Y%m%d%H%M%S}-{secrets.token_hex(3).upper()}"


def _address(value) -> Optional[dict]:
    if value is None:
        return None
    return value.model_dump() if hasattr(value, "model_dump") else dict(value)


class OrderOrchestrator:
    def __init__(self, db: Session, gateway: PaymentGateway, notifier: NotificationSink,
                 tax_policy=None, timeout: Optional[float] = None, currency: Optional[str] = None):
        self.db = db
        self.gateway = gateway
        self.notifier = notifier
        self.tax_policy = tax_policy or default_tax_policy
        self.timeout = timeout if timeout is not None else settings.PAYMENT_TIMEOUT_SECONDS
        self.currency = currency or settings.CURRENCY

    async def create_order(self, cart: Cart, checkout, discount_code: Optional[DiscountCode] = None
                           ) -> Tuple[Order, PaymentIntent]:
        if cart is None or not cart.items:
            raise EmptyCart("Cart is empty")

        db = self.db
        order_number = generate_order_number()

        # Steps 1-3: snapshot prices, reserve stock, stage the pending order.
        # Session work runs in the threadpool; a reservation waiting on another
        # checkout's row lock must not stall the event loop.
        try:
            order = await run_in_threadpool(self._stage_order, cart, checkout, discount_code, order_number)
        except Exception:
            await run_in_threadpool(db.rollback)
            raise

        # Step 4: payment intent, bounded by the gateway timeout
        try:
            intent = await self._request_intent(order)
        except asyncio.CancelledError:
            db.rollback()
            logger.warning("Checkout %s cancelled by caller, reservations rolled back", order_number)
            raise
        except asyncio.TimeoutError as e:
            await run_in_threadpool(self._abort, order, f"Payment gateway timed out after {self.timeout}s")
            raise PaymentFailed("Payment gateway did not answer in time") from e
        except (PaymentValidationFailed, PaymentFailed) as e:
            await run_in_threadpool(self._abort, order, e.message)
            raise
        except Exception as e:
            await run_in_threadpool(self._abort, order, str(e))
            raise PaymentFailed(f"Payment creation failed: {e}") from e

        # Step 5: link the intent and commit; a live intent must not survive a failed commit
        try:
            await run_in_threadpool(self._commit, order, intent)
        except Exception:
            await run_in_threadpool(db.rollback)
            logger.exception("Commit failed for order %s, cancelling intent %s", order_number, intent.id)
            await self._cancel_intent(intent.id)
            raise

        # Step 6: side effects that must not undo the order
        await run_in_threadpool(self._after_commit, order, discount_code)
        logger.info("Order %s created, total %s %s, intent %s",
                    order.order_number, order.total, order.currency, intent.id)
        return order, intent

    def _commit(self, order: Order, intent: PaymentIntent) -> None:
        order.payment_intent_id = intent.id
        self.db.commit()
        self.db.refresh(order)

    def _after_commit(self, order: Order, discount_code: Optional[DiscountCode]) -> None:
        if discount_code is not None and order.discount > 0:
            discount_engine.increment_usage(self.db, discount_code.id)
            self.db.refresh(order)
        self.notifier.publish(OrderEvent(
            type=NotificationType.ORDER_CREATED, order_number=order.order_number,
            total=order.total, currency=order.currency, customer_email=order.customer_email,
        ))

    def _stage_order(self, cart: Cart, checkout, discount_code, order_number: str) -> Order:
        db = self.db
        subtotal = Decimal("0.00")
        items = []
        reservations = []

        for line in cart.items:
            product = line.product
            if product is None:
                raise ProductNotFound(f"Product {line.product_id} no longer exists")

            sku, variant_name = product.sku, None
            if line.variant_id is not None:
                variant = line.variant
                if variant is None:
                    raise ProductNotFound(f"Variant {line.variant_id} no longer exists")
                sku, variant_name = variant.sku, variant.name
                reservations.append(inventory.reserve(
                    db, variant.id, line.quantity, reason=f"checkout {order_number}",
                ))

            unit_price = line_unit_price(line)
            total_price = to_money(unit_price * line.quantity)
            subtotal += total_price
            items.append(OrderItem(
                product_id=product.id,
                variant_id=line.variant_id,
                product_name=product.title,
                variant_name=variant_name,
                sku=sku,
                quantity=line.quantity,
                unit_price=unit_price,
                total_price=total_price,
            ))

        subtotal = to_money(subtotal)
        tax = to_money(self.tax_policy.compute(subtotal, items))
        discount = discount_engine.compute_discount(discount_code, subtotal, tax)
        total = subtotal + tax - discount

        billing = checkout.billing_address if getattr(checkout, "billing_address", None) else checkout.shipping_address
        order = Order(
            order_number=order_number,
            user_id=cart.user_id,
            customer_email=checkout.email,
            customer_name=checkout.name,
            subtotal=subtotal,
            tax=tax,
            discount=discount,
            total=total,
            currency=self.currency,
            discount_code=discount_code.code if discount_code is not None and discount > 0 else None,
            payment_status=PaymentStatus.PENDING,
            payment_method=getattr(checkout, "payment_method", None),
            fulfillment_status=FulfillmentStatus.UNFULFILLED,
            shipping_address=_address(checkout.shipping_address),
            billing_address=_address(billing),
            notes=getattr(checkout, "notes", None),
            items=items,
        )
        db.add(order)
        db.flush()
        for movement in reservations:
            movement.order_id = order.id
        return order

    async def _request_intent(self, order: Order) -> PaymentIntent:
        line_items = [
            PaymentItem(name=item.product_name, amount=item.unit_price, quantity=item.quantity)
            for item in order.items
        ]
        call = asyncio.ensure_future(self.gateway.create_payment_intent(
            amount=order.total,
            currency=order.currency,
            customer_ref=order.customer_email,
            line_items=line_items,
            metadata={"order_id": str(order.id), "order_number": order.order_number},
            description=f"Order {order.order_number}",
        ))
        try:
            # shield: on timeout/cancel the gateway call keeps running so its result can be undone
            return await asyncio.wait_for(asyncio.shield(call), timeout=self.timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            call.add_done_callback(self._cancel_late_intent)
            raise

    def _cancel_late_intent(self, call: asyncio.Future) -> None:
        if call.cancelled() or call.exception() is not None:
            return
        intent = call.result()
        logger.warning("Intent %s arrived after its checkout was abandoned, cancelling", intent.id)
        asyncio.ensure_future(self._cancel_intent(intent.id))

    async def _cancel_intent(self, intent_id: str) -> None:
        try:
            await asyncio.wait_for(self.gateway.cancel_payment(intent_id), timeout=self.timeout)
        except Exception:
            logger.exception("Could not cancel payment intent %s, manual cleanup required", intent_id)

    def _abort(self, order: Order, reason: str) -> None:
        order_number, total, currency, email = order.order_number, order.total, order.currency, order.customer_email
        self.db.rollback()
        logger.warning("Checkout %s aborted: %s", order_number, reason)
        self.notifier.publish(OrderEvent(
            type=NotificationType.PAYMENT_FAILED, order_number=order_number,
            total=total, currency=currency, customer_email=email, reason=reason,
        ))


def _orders(db: Session):
    return db.query(Order).options(selectinload(Order.items)).filter(Order.deleted_at.is_(None))


def get_order(db: Session, order_id: int) -> Order:
    order = _orders(db).filter(Order.id == order_id).first()
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


def find_by_intent(db: Session, intent_id: str) -> Optional[Order]:
    if not intent_id:
        return None
    return _orders(db).filter(Order.payment_intent_id == intent_id).first()


def list_orders(db: Session, payment_status: Optional[PaymentStatus] = None,
                fulfillment_status: Optional[FulfillmentStatus] = None,
                customer_email: Optional[str] = None,
                start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
                page: int = 1, page_size: int = 20):
    q = db.query(Order).filter(Order.deleted_at.is_(None))
    if payment_status is not None:
        q = q.filter(Order.payment_status == payment_status)
    if fulfillment_status is not None:
        q = q.filter(Order.fulfillment_status == fulfillment_status)
    if customer_email:
        q = q.filter(Order.customer_email == customer_email)
    if start_date is not None:
        q = q.filter(Order.created_at >= start_date)
    if end_date is not None:
        q = q.filter(Order.created_at <= end_date)

    total = q.count()
    rows = (
        q.options(selectinload(Order.items))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return rows, total


def update_fulfillment_status(db: Session, order_id: int, status: FulfillmentStatus) -> Order:
    order = get_order(db, order_id)
    order.fulfillment_status = status
    db.commit()
    db.refresh(order)
    return order


def soft_delete_order(db: Session, order_id: int) -> Order:
    order = get_order(db, order_id)
    order.deleted_at = utcnow()
    db.commit()
    return order
