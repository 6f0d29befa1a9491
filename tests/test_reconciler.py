from datetime import timedelta
from decimal import Decimal

import pytest

from config import settings
from models.order import Order, PaymentStatus
from models.webhook import ProcessedWebhookEvent
from services import cart as cart_store
from services import inventory
from services.errors import InvalidOrderState, PaymentValidationFailed, RefundFailed
from services.order import OrderOrchestrator
from services.payment.marketplace import MarketplacePaymentGateway
from services.reconciler import (
    EVENT_FAILED, EVENT_REFUNDED, EVENT_SUCCEEDED, Outcome, PaymentEvent, PaymentReconciler,
)
from utils.money import utcnow


async def _place_order(db, catalog, gateway, sink, checkout_details, quantity=3):
    cart = cart_store.add_item(db, "t", catalog.tee, catalog.tee_s, quantity)
    order, intent = await OrderOrchestrator(db, gateway, sink).create_order(cart, checkout_details)
    return order.id, intent.id


@pytest.mark.asyncio
async def test_payment_success_marks_order_paid_once(db, catalog, gateway, sink, checkout_details):
    order_id, intent_id = await _place_order(db, catalog, gateway, sink, checkout_details)
    reconciler = PaymentReconciler(db, gateway, sink)

    first = reconciler.handle_payment_success(intent_id)
    second = reconciler.handle_payment_success(intent_id)

    assert first.outcome == Outcome.APPLIED
    assert second.outcome == Outcome.NO_OP
    assert db.get(Order, order_id).payment_status == PaymentStatus.PAID
    assert sink.types().count("order_paid") == 1
    assert inventory.current_stock(db, catalog.tee_s) == 2


@pytest.mark.asyncio
async def test_redelivered_event_id_is_a_duplicate(db, catalog, gateway, sink, checkout_details):
    _, intent_id = await _place_order(db, catalog, gateway, sink, checkout_details)
    reconciler = PaymentReconciler(db, gateway, sink)
    event = PaymentEvent(type=EVENT_SUCCEEDED, intent_id=intent_id, event_id="evt_1")

    assert reconciler.apply_event(event).outcome == Outcome.APPLIED
    assert reconciler.apply_event(event).outcome == Outcome.DUPLICATE
    assert db.query(ProcessedWebhookEvent).count() == 1


@pytest.mark.asyncio
async def test_payment_failed_restores_stock(db, catalog, gateway, sink, checkout_details):
    order_id, intent_id = await _place_order(db, catalog, gateway, sink, checkout_details)
    assert inventory.current_stock(db, catalog.tee_s) == 2
    reconciler = PaymentReconciler(db, gateway, sink)

    result = reconciler.handle_payment_failed(intent_id, "Your card was declined")
    again = reconciler.handle_payment_failed(intent_id, "Your card was declined")

    assert result.outcome == Outcome.APPLIED
    assert again.outcome == Outcome.NO_OP
    assert db.get(Order, order_id).payment_status == PaymentStatus.FAILED
    assert inventory.current_stock(db, catalog.tee_s) == 5
    assert sink.events[-1].reason == "Your card was declined"


@pytest.mark.asyncio
async def test_success_after_failure_does_not_resurrect_order(db, catalog, gateway, sink, checkout_details):
    order_id, intent_id = await _place_order(db, catalog, gateway, sink, checkout_details)
    reconciler = PaymentReconciler(db, gateway, sink)

    reconciler.handle_payment_failed(intent_id, "expired")
    result = reconciler.handle_payment_success(intent_id)

    assert result.outcome == Outcome.NO_OP
    assert db.get(Order, order_id).payment_status == PaymentStatus.FAILED
    assert inventory.current_stock(db, catalog.tee_s) == 5


@pytest.mark.asyncio
async def test_failure_after_success_is_ignored(db, catalog, gateway, sink, checkout_details):
    order_id, intent_id = await _place_order(db, catalog, gateway, sink, checkout_details)
    reconciler = PaymentReconciler(db, gateway, sink)

    reconciler.handle_payment_success(intent_id)
    result = reconciler.handle_payment_failed(intent_id, "late failure")

    assert result.outcome == Outcome.NO_OP
    assert db.get(Order, order_id).payment_status == PaymentStatus.PAID
    assert inventory.current_stock(db, catalog.tee_s) == 2


def test_unknown_intent_is_acknowledged_and_not_remembered(db, gateway, sink):
    reconciler = PaymentReconciler(db, gateway, sink)
    event = PaymentEvent(type=EVENT_SUCCEEDED, intent_id="pi_foreign", event_id="evt_9")

    assert reconciler.apply_event(event).outcome == Outcome.NOT_FOUND
    assert db.query(ProcessedWebhookEvent).count() == 0
    assert sink.events == []


def test_unhandled_event_type_is_ignored(db, gateway, sink):
    reconciler = PaymentReconciler(db, gateway, sink)
    result = reconciler.apply_event(PaymentEvent(type="customer.created", intent_id="cus_1"))
    assert result.outcome == Outcome.IGNORED


@pytest.mark.asyncio
async def test_refund_paid_order_restores_stock(db, catalog, gateway, sink, checkout_details):
    order_id, intent_id = await _place_order(db, catalog, gateway, sink, checkout_details)
    reconciler = PaymentReconciler(db, gateway, sink)
    reconciler.handle_payment_success(intent_id)

    order, refund = await reconciler.refund_order(order_id)

    assert order.payment_status == PaymentStatus.REFUNDED
    assert refund.amount == Decimal("60.00")
    assert inventory.current_stock(db, catalog.tee_s) == 5
    assert sink.types()[-1] == "order_refunded"


@pytest.mark.asyncio
async def test_partial_refund_amount_is_validated(db, catalog, gateway, sink, checkout_details):
    order_id, intent_id = await _place_order(db, catalog, gateway, sink, checkout_details)
    reconciler = PaymentReconciler(db, gateway, sink)
    reconciler.handle_payment_success(intent_id)

    with pytest.raises(PaymentValidationFailed):
        await reconciler.refund_order(order_id, Decimal("60.01"))
    with pytest.raises(PaymentValidationFailed):
        await reconciler.refund_order(order_id, Decimal("0"))

    order, refund = await reconciler.refund_order(order_id, Decimal("15.00"))
    assert refund.amount == Decimal("15.00")
    assert order.payment_status == PaymentStatus.REFUNDED


@pytest.mark.asyncio
async def test_refund_requires_paid_order(db, catalog, gateway, sink, checkout_details):
    order_id, _ = await _place_order(db, catalog, gateway, sink, checkout_details)
    with pytest.raises(InvalidOrderState):
        await PaymentReconciler(db, gateway, sink).refund_order(order_id)


@pytest.mark.asyncio
async def test_gateway_refund_failure_leaves_order_paid(db, catalog, gateway, sink, checkout_details):
    order_id, intent_id = await _place_order(db, catalog, gateway, sink, checkout_details)
    reconciler = PaymentReconciler(db, gateway, sink)
    reconciler.handle_payment_success(intent_id)
    gateway.set_should_fail(True, "insufficient balance")

    with pytest.raises(RefundFailed):
        await reconciler.refund_order(order_id)

    assert db.get(Order, order_id).payment_status == PaymentStatus.PAID
    assert inventory.current_stock(db, catalog.tee_s) == 2


@pytest.mark.asyncio
async def test_marketplace_refund_needs_manual_action(db, catalog, sink, checkout_details):
    gateway = MarketplacePaymentGateway(shop_url="https://market.test/shop/1")
    order_id, intent_id = await _place_order(db, catalog, gateway, sink, checkout_details)
    reconciler = PaymentReconciler(db, gateway, sink)
    reconciler.handle_payment_success(intent_id)

    with pytest.raises(RefundFailed) as exc:
        await reconciler.refund_order(order_id)

    assert exc.value.manual_action_required
    assert db.get(Order, order_id).payment_status == PaymentStatus.PAID
    assert inventory.current_stock(db, catalog.tee_s) == 2


@pytest.mark.asyncio
async def test_refund_event_from_provider(db, catalog, gateway, sink, checkout_details):
    order_id, intent_id = await _place_order(db, catalog, gateway, sink, checkout_details)
    reconciler = PaymentReconciler(db, gateway, sink)
    reconciler.apply_event(PaymentEvent(type=EVENT_SUCCEEDED, intent_id=intent_id, event_id="evt_a"))

    first = reconciler.apply_event(PaymentEvent(type=EVENT_REFUNDED, intent_id=intent_id, event_id="evt_b"))
    second = reconciler.apply_event(PaymentEvent(type=EVENT_REFUNDED, intent_id=intent_id, event_id="evt_c"))

    assert first.outcome == Outcome.APPLIED
    assert second.outcome == Outcome.NO_OP
    assert db.get(Order, order_id).payment_status == PaymentStatus.REFUNDED
    assert inventory.current_stock(db, catalog.tee_s) == 5


@pytest.mark.asyncio
async def test_failed_event_carries_reason(db, catalog, gateway, sink, checkout_details):
    _, intent_id = await _place_order(db, catalog, gateway, sink, checkout_details)
    reconciler = PaymentReconciler(db, gateway, sink)

    result = reconciler.apply_event(PaymentEvent(type=EVENT_FAILED, intent_id=intent_id, reason="insufficient funds"))

    assert result.order.payment_status == PaymentStatus.FAILED
    assert sink.events[-1].reason == "insufficient funds"


@pytest.mark.asyncio
async def test_refund_in_flight_blocks_a_second_refund(db, catalog, gateway, sink, checkout_details):
    order_id, intent_id = await _place_order(db, catalog, gateway, sink, checkout_details)
    reconciler = PaymentReconciler(db, gateway, sink)
    reconciler.handle_payment_success(intent_id)
    db.get(Order, order_id).refund_requested_at = utcnow()
    db.commit()

    with pytest.raises(InvalidOrderState):
        await reconciler.refund_order(order_id)
    assert gateway.refunds == []

    # a claim left behind by a crashed worker expires
    db.get(Order, order_id).refund_requested_at = utcnow() - timedelta(seconds=settings.REFUND_LEASE_SECONDS + 1)
    db.commit()
    order, _ = await reconciler.refund_order(order_id)

    assert order.payment_status == PaymentStatus.REFUNDED
    assert order.refund_requested_at is None
    assert len(gateway.refunds) == 1


@pytest.mark.asyncio
async def test_failed_refund_releases_its_claim(db, catalog, gateway, sink, checkout_details):
    order_id, intent_id = await _place_order(db, catalog, gateway, sink, checkout_details)
    reconciler = PaymentReconciler(db, gateway, sink)
    reconciler.handle_payment_success(intent_id)
    gateway.set_should_fail(True, "processor down")

    with pytest.raises(RefundFailed):
        await reconciler.refund_order(order_id)
    gateway.set_should_fail(False)
    assert db.get(Order, order_id).refund_requested_at is None

    order, refund = await reconciler.refund_order(order_id)
    assert order.payment_status == PaymentStatus.REFUNDED
    assert refund.amount == Decimal("60.00")
