import json
import time
from decimal import Decimal
from urllib.parse import parse_qs

import httpx
import pytest

from services.errors import PaymentFailed, PaymentIntentNotFound, PaymentValidationFailed, RefundFailed
from services.payment.base import PaymentGateway, PaymentItem, validate_amount
from services.payment.card import CardPaymentGateway, sign_webhook_payload
from services.payment.factory import build_payment_gateway
from services.payment.marketplace import MarketplacePaymentGateway
from services.payment.mock import MockPaymentGateway

ITEMS = [PaymentItem(name="Logo Tee", amount=Decimal("20.00"), quantity=1)]


def _card(handler, secret="whsec_test"):
    return CardPaymentGateway(
        api_url="https://card.test",
        api_key="sk_test",
        webhook_secret=secret,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.parametrize("gateway", [
    MockPaymentGateway(),
    CardPaymentGateway(api_url="https://card.test", api_key="k", webhook_secret="s"),
    MarketplacePaymentGateway(shop_url="https://market.test/shop/1"),
])
def test_every_gateway_satisfies_the_protocol(gateway):
    assert isinstance(gateway, PaymentGateway)


def test_validate_amount_rules():
    gateway = MockPaymentGateway(min_amount_cents=50)
    assert validate_amount(gateway, Decimal("0.50")) == 50
    with pytest.raises(PaymentValidationFailed):
        validate_amount(gateway, Decimal("0.49"))
    with pytest.raises(PaymentValidationFailed):
        validate_amount(gateway, Decimal("0"))
    with pytest.raises(PaymentValidationFailed):
        validate_amount(gateway, Decimal("-1"))

    assert validate_amount(MockPaymentGateway(supports_zero=True), Decimal("0")) == 0


def test_factory_picks_gateway_by_name():
    assert build_payment_gateway("mock").name == "mock"
    assert build_payment_gateway("card").name == "card"
    assert build_payment_gateway("marketplace").name == "marketplace"
    with pytest.raises(ValueError):
        build_payment_gateway("cash")


@pytest.mark.asyncio
async def test_mock_gateway_lifecycle():
    gateway = MockPaymentGateway()
    intent = await gateway.create_payment_intent(Decimal("12.00"), "EUR", "a@b.c", ITEMS, {"order_number": "X"})

    assert intent.id.startswith("mock_pi_")
    assert (await gateway.get_payment_intent(intent.id)).amount == Decimal("12.00")

    await gateway.confirm_payment(intent.id)
    refund = await gateway.refund(intent.id, Decimal("5.00"))
    assert refund.amount == Decimal("5.00")

    await gateway.cancel_payment(intent.id)
    assert gateway.cancelled == [intent.id]
    with pytest.raises(PaymentIntentNotFound):
        await gateway.get_payment_intent(intent.id)


@pytest.mark.asyncio
async def test_mock_gateway_failure_switch():
    gateway = MockPaymentGateway()
    gateway.set_should_fail(True, "card declined")
    with pytest.raises(PaymentFailed):
        await gateway.create_payment_intent(Decimal("12.00"), "EUR", "a@b.c", ITEMS, {})
    with pytest.raises(RefundFailed):
        await gateway.refund("mock_pi_x")


@pytest.mark.asyncio
async def test_card_create_intent_sends_minor_units_and_idempotency_key():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["idempotency"] = request.headers.get("Idempotency-Key")
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, json={
            "id": "pi_123", "amount": 1999, "currency": "eur",
            "client_secret": "pi_123_secret", "status": "requires_payment_method",
        })

    gateway = _card(handler)
    intent = await gateway.create_payment_intent(
        Decimal("19.99"), "EUR", "a@b.c", ITEMS, {"order_number": "ORD-1"}, description="Order ORD-1",
    )

    assert seen["path"] == "/v1/payment_intents"
    assert seen["auth"] == "Bearer sk_test"
    assert seen["idempotency"] == "order-ORD-1"
    assert seen["form"]["amount"] == ["1999"]
    assert seen["form"]["metadata[order_number]"] == ["ORD-1"]
    assert intent.id == "pi_123"
    assert intent.amount == Decimal("19.99")
    assert intent.currency == "EUR"
    assert intent.client_secret == "pi_123_secret"


@pytest.mark.asyncio
async def test_card_below_minimum_never_calls_the_processor():
    def handler(request):
        raise AssertionError("processor must not be called")

    with pytest.raises(PaymentValidationFailed):
        await _card(handler).create_payment_intent(Decimal("0.30"), "EUR", "a@b.c", ITEMS, {})


@pytest.mark.asyncio
async def test_card_errors_are_mapped():
    def handler(request: httpx.Request):
        if request.url.path.endswith("/missing"):
            return httpx.Response(404, json={"error": {"message": "No such payment_intent"}})
        if request.url.path == "/v1/refunds":
            return httpx.Response(400, json={"error": {"message": "Charge already refunded"}})
        return httpx.Response(402, json={"error": {"message": "Your card was declined"}})

    gateway = _card(handler)
    with pytest.raises(PaymentIntentNotFound):
        await gateway.get_payment_intent("missing")
    with pytest.raises(PaymentFailed, match="declined"):
        await gateway.create_payment_intent(Decimal("10.00"), "EUR", "a@b.c", ITEMS, {})
    with pytest.raises(RefundFailed, match="already refunded"):
        await gateway.refund("pi_1")


@pytest.mark.asyncio
async def test_card_network_error_is_payment_failed():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(PaymentFailed):
        await _card(handler).cancel_payment("pi_1")


@pytest.mark.asyncio
async def test_card_partial_refund():
    def handler(request: httpx.Request):
        form = parse_qs(request.content.decode())
        return httpx.Response(200, json={
            "id": "re_1", "amount": int(form["amount"][0]), "currency": "eur", "status": "succeeded",
        })

    refund = await _card(handler).refund("pi_1", Decimal("7.50"))
    assert refund.refund_id == "re_1"
    assert refund.amount == Decimal("7.50")


def test_card_webhook_signature():
    gateway = _card(lambda r: httpx.Response(200))
    body = json.dumps({"id": "evt_1"}).encode()

    assert gateway.verify_webhook(body, sign_webhook_payload("whsec_test", body))
    assert not gateway.verify_webhook(body, sign_webhook_payload("other", body))
    assert not gateway.verify_webhook(body + b" ", sign_webhook_payload("whsec_test", body))
    assert not gateway.verify_webhook(body, None)
    assert not gateway.verify_webhook(body, "garbage")

    stale = sign_webhook_payload("whsec_test", body, timestamp=int(time.time()) - 3600)
    assert not gateway.verify_webhook(body, stale)


@pytest.mark.asyncio
async def test_marketplace_redirect_and_manual_refund():
    gateway = MarketplacePaymentGateway(shop_url="https://market.test/shop/1", callback_url="https://shop.test/done")
    intent = await gateway.create_payment_intent(Decimal("0.20"), "EUR", "a@b.c", ITEMS, {})

    assert intent.id.startswith("mkt_")
    assert intent.client_secret.startswith("https://market.test/shop/1?ref=mkt_")
    assert "return_url=" in intent.client_secret

    with pytest.raises(PaymentValidationFailed):
        await gateway.create_payment_intent(Decimal("0.19"), "EUR", "a@b.c", ITEMS, {})
    with pytest.raises(RefundFailed) as exc:
        await gateway.refund(intent.id)
    assert exc.value.manual_action_required


@pytest.mark.asyncio
async def test_card_refund_sends_a_stable_idempotency_key():
    keys = []

    def handler(request: httpx.Request):
        keys.append(request.headers.get("Idempotency-Key"))
        return httpx.Response(200, json={"id": "re_1", "amount": 750, "currency": "eur", "status": "succeeded"})

    gateway = _card(handler)
    await gateway.refund("pi_1", Decimal("7.50"))
    await gateway.refund("pi_1", Decimal("7.50"))
    await gateway.refund("pi_1")

    assert keys == ["refund-pi_1-750", "refund-pi_1-750", "refund-pi_1-full"]


@pytest.mark.asyncio
async def test_mock_gateway_records_refunds():
    gateway = MockPaymentGateway()
    intent = await gateway.create_payment_intent(Decimal("20.00"), "EUR", "a@b.c", ITEMS, {})

    await gateway.refund(intent.id, Decimal("5.00"))

    assert [r.amount for r in gateway.refunds] == [Decimal("5.00")]
    gateway.reset()
    assert gateway.refunds == []
