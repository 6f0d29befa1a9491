# backend/services/reconciler.py
"""
Payment state machine driven by provider webhooks and admin refunds.

    pending -> paid | failed        paid -> refunded

Transitions are conditional UPDATEs on (order id, expected status), so a
redelivered or concurrent event finds nothing to update and becomes a no-op.
Provider event ids are recorded in the same transaction as the transition
they caused.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from models.notification import NotificationType
from models.order import Order, PaymentStatus
from models.webhook import ProcessedWebhookEvent
from services import inventory
from services.errors import InvalidOrderState, PaymentFailed, PaymentValidationFailed, RefundFailed
from services.notification import NotificationSink, OrderEvent
from services.order import find_by_intent, get_order
from services.payment.base import PaymentGateway, RefundResult
from utils.money import to_money, utcnow

logger = logging.getLogger(__name__)

EVENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_FAILED = "payment_intent.payment_failed"
EVENT_REFUNDED = "charge.refunded"


class Outcome(str, enum.Enum):
    APPLIED = "applied"
    NO_OP = "no_op"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"


@dataclass
class ReconcileResult:
    outcome: Outcome
    order: Optional[Order] = None


@dataclass
class PaymentEvent:
    type: str
    intent_id: str
    event_id: Optional[str] = None
    reason: Optional[str] = None


class PaymentReconciler:
    def __init__(self, db: Session, gateway: PaymentGateway, notifier: NotificationSink,
                 timeout: Optional[float] = None):
        self.db = db
        self.gateway = gateway
        self.notifier = notifier
        self.timeout = timeout if timeout is not None else settings.PAYMENT_TIMEOUT_SECONDS

    def apply_event(self, event: PaymentEvent) -> ReconcileResult:
        if event.type == EVENT_SUCCEEDED:
            return self.handle_payment_success(event.intent_id, event_id=event.event_id)
        if event.type == EVENT_FAILED:
            return self.handle_payment_failed(event.intent_id, event.reason or "Payment failed", event_id=event.event_id)
        if event.type == EVENT_REFUNDED:
            return self.handle_refund_event(event.intent_id, event_id=event.event_id)
        logger.info("Webhook event type %s not handled, acknowledged", event.type)
        return ReconcileResult(Outcome.IGNORED)

    def handle_payment_success(self, intent_id: str, event_id: Optional[str] = None) -> ReconcileResult:
        if not self._claim_event(event_id, EVENT_SUCCEEDED, intent_id):
            return ReconcileResult(Outcome.DUPLICATE)

        order = find_by_intent(self.db, intent_id)
        if order is None:
            return self._unknown_intent(intent_id)

        if not self._transition(order, PaymentStatus.PENDING, PaymentStatus.PAID):
            self.db.commit()
            self.db.refresh(order)
            if order.payment_status.is_terminal:
                # Money captured for an order we already gave up on
                logger.error("Payment succeeded for order %s in state %s, flagged for operator follow-up",
                             order.order_number, order.payment_status.value)
            else:
                logger.info("Order %s already %s, success event ignored", order.order_number, order.payment_status.value)
            return ReconcileResult(Outcome.NO_OP, order)

        self.db.commit()
        self.db.refresh(order)
        logger.info("Order %s paid (intent %s)", order.order_number, intent_id)
        self.notifier.publish(OrderEvent(
            type=NotificationType.ORDER_PAID, order_number=order.order_number,
            total=order.total, currency=order.currency, customer_email=order.customer_email,
        ))
        return ReconcileResult(Outcome.APPLIED, order)

    def handle_payment_failed(self, intent_id: str, reason: str, event_id: Optional[str] = None) -> ReconcileResult:
        if not self._claim_event(event_id, EVENT_FAILED, intent_id):
            return ReconcileResult(Outcome.DUPLICATE)

        order = find_by_intent(self.db, intent_id)
        if order is None:
            return self._unknown_intent(intent_id)

        if not self._transition(order, PaymentStatus.PENDING, PaymentStatus.FAILED):
            self.db.commit()
            self.db.refresh(order)
            logger.info("Order %s already %s, failure event ignored", order.order_number, order.payment_status.value)
            return ReconcileResult(Outcome.NO_OP, order)

        self._release_stock(order, reason=f"payment failed {order.order_number}")
        self.db.commit()
        self.db.refresh(order)
        logger.info("Order %s payment failed: %s", order.order_number, reason)
        self.notifier.publish(OrderEvent(
            type=NotificationType.PAYMENT_FAILED, order_number=order.order_number,
            total=order.total, currency=order.currency, customer_email=order.customer_email, reason=reason,
        ))
        return ReconcileResult(Outcome.APPLIED, order)

    def handle_refund_event(self, intent_id: str, event_id: Optional[str] = None) -> ReconcileResult:
        # Refund issued on the provider side (dashboard, dispute) rather than through refund_order
        if not self._claim_event(event_id, EVENT_REFUNDED, intent_id):
            return ReconcileResult(Outcome.DUPLICATE)

        order = find_by_intent(self.db, intent_id)
        if order is None:
            return self._unknown_intent(intent_id)

        if not self._apply_refund(order):
            self.db.commit()
            self.db.refresh(order)
            return ReconcileResult(Outcome.NO_OP, order)
        return ReconcileResult(Outcome.APPLIED, order)

    async def refund_order(self, order_id: int, amount=None):
        """Refund a paid order through the gateway, then restock. Returns (order, refund).

        The order is claimed with a conditional UPDATE before the gateway is
        called, so of two concurrent refunds only one reaches the provider; the
        other gets ``InvalidOrderState``.
        """
        order, amount = await run_in_threadpool(self._claim_refund, order_id, amount)

        try:
            refund: RefundResult = await asyncio.wait_for(
                self.gateway.refund(order.payment_intent_id, amount), timeout=self.timeout,
            )
        except RefundFailed as e:
            logger.warning("Refund for order %s rejected: %s", order.order_number, e.message)
            await run_in_threadpool(self._release_refund_claim, order)
            raise
        except asyncio.TimeoutError as e:
            logger.warning("Refund for order %s timed out", order.order_number)
            await run_in_threadpool(self._release_refund_claim, order)
            raise RefundFailed("Payment gateway did not answer in time") from e
        except PaymentFailed as e:
            logger.warning("Refund for order %s failed: %s", order.order_number, e.message)
            await run_in_threadpool(self._release_refund_claim, order)
            raise RefundFailed(e.message) from e
        except asyncio.CancelledError:
            # Outcome at the provider is unknown; the claim stays until its lease runs out
            logger.warning("Refund for order %s cancelled while waiting on the gateway", order.order_number)
            raise

        await run_in_threadpool(self._finish_refund, order, refund)
        return order, refund

    def _claim_refund(self, order_id: int, amount):
        order = get_order(self.db, order_id)
        if order.payment_status != PaymentStatus.PAID:
            raise InvalidOrderState(f"Cannot refund order in state {order.payment_status.value}")
        if amount is not None:
            amount = to_money(amount)
            if amount <= 0 or amount > to_money(order.total):
                raise PaymentValidationFailed("Refund amount must be positive and not exceed the order total")

        stale = utcnow() - timedelta(seconds=settings.REFUND_LEASE_SECONDS)
        result = self.db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.payment_status == PaymentStatus.PAID,
                or_(Order.refund_requested_at.is_(None), Order.refund_requested_at < stale),
            )
            .values(refund_requested_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise InvalidOrderState("A refund for this order is already in progress")
        self.db.commit()
        self.db.refresh(order)
        return order, amount

    def _release_refund_claim(self, order: Order) -> None:
        self.db.execute(
            update(Order)
            .where(Order.id == order.id)
            .values(refund_requested_at=None)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(order)

    def _finish_refund(self, order: Order, refund: RefundResult) -> None:
        if not self._apply_refund(order, refunded_amount=refund.amount):
            # A refund webhook got here first
            self.db.commit()
            self.db.refresh(order)

    def _apply_refund(self, order: Order, refunded_amount=None) -> bool:
        if not self._transition(order, PaymentStatus.PAID, PaymentStatus.REFUNDED, refund_requested_at=None):
            logger.info("Order %s is %s, refund transition skipped", order.order_number, order.payment_status.value)
            return False
        self._release_stock(order, reason=f"refund {order.order_number}")
        self.db.commit()
        self.db.refresh(order)
        logger.info("Order %s refunded", order.order_number)
        self.notifier.publish(OrderEvent(
            type=NotificationType.ORDER_REFUNDED, order_number=order.order_number,
            total=to_money(refunded_amount) if refunded_amount else order.total,
            currency=order.currency, customer_email=order.customer_email,
        ))
        return True

    def _transition(self, order: Order, expected: PaymentStatus, target: PaymentStatus, **values) -> bool:
        result = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.payment_status == expected)
            .values(payment_status=target, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _release_stock(self, order: Order, reason: str) -> None:
        for item in order.items:
            if item.variant_id is not None:
                inventory.release(self.db, item.variant_id, item.quantity, order_id=order.id, reason=reason)

    def _claim_event(self, event_id: Optional[str], event_type: str, intent_id: str) -> bool:
        if not event_id:
            return True
        # First write of the transaction, so a rollback here discards nothing else
        self.db.add(ProcessedWebhookEvent(event_id=event_id, event_type=event_type, payment_intent_id=intent_id))
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.info("Webhook event %s already processed, ignoring redelivery", event_id)
            return False
        return True

    def _unknown_intent(self, intent_id: str) -> ReconcileResult:
        # Do not remember the event: the order may simply not be committed yet
        self.db.rollback()
        logger.warning("No order for payment intent %s, event acknowledged without changes", intent_id)
        return ReconcileResult(Outcome.NOT_FOUND)
