from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import get_db, init_db
from main import app
from models.discount import DiscountCode, DiscountType
from models.product import Product, ProductStatus, ProductVariant
from schemas.checkout import Address, CheckoutPayload
from services.marketplace import get_marketplace_sync
from services.notification import get_notification_sink
from services.payment.factory import get_payment_gateway
from services.payment.mock import MockPaymentGateway
from utils.tokenJWT import create_access_token


class RecordingMarketplace:
    """Marketplace collaborator that remembers which orders it was told about."""

    def __init__(self):
        self.paid_orders = []
        self.inventory_syncs = 0

    def order_paid(self, order_number):
        self.paid_orders.append(order_number)

    def sync_inventory(self):
        self.inventory_syncs += 1


class RecordingSink:
    """Notification sink that keeps events in memory."""

    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)

    def types(self):
        return [e.type.value for e in self.events]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


def _seed_catalog(db):
    tee = Product(title="Logo Tee", sku="TEE", base_price=Decimal("20.00"), status=ProductStatus.PUBLISHED)
    poster = Product(title="Gallery Poster", sku="POSTER", base_price=Decimal("50.00"), status=ProductStatus.PUBLISHED)
    sticker = Product(title="Sticker", sku="STICKER", base_price=Decimal("2.50"), status=ProductStatus.PUBLISHED)
    db.add_all([tee, poster, sticker])
    db.flush()

    tee_s = ProductVariant(product_id=tee.id, sku="TEE-S", name="S", price_adjustment=Decimal("0"), stock=5)
    tee_xl = ProductVariant(product_id=tee.id, sku="TEE-XL", name="XL", price_adjustment=Decimal("5.00"), stock=5)
    poster_a2 = ProductVariant(product_id=poster.id, sku="POSTER-A2", name="A2", price_adjustment=Decimal("0"), stock=2)
    db.add_all([tee_s, tee_xl, poster_a2])
    db.commit()

    return SimpleNamespace(
        tee=tee.id, poster=poster.id, sticker=sticker.id,
        tee_s=tee_s.id, tee_xl=tee_xl.id, poster_a2=poster_a2.id,
    )


@pytest.fixture
def catalog(db):
    return _seed_catalog(db)


# File database shared by several connections, for tests where sessions race
@pytest.fixture
def file_engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'shop.db'}",
        connect_args={"check_same_thread": False, "timeout": 15},
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_session_factory(file_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=file_engine)


@pytest.fixture
def file_catalog(file_session_factory):
    session = file_session_factory()
    try:
        yield _seed_catalog(session)
    finally:
        session.close()


@pytest.fixture
def ten_percent(db):
    code = DiscountCode(
        code="TEN", type=DiscountType.PERCENTAGE, value=Decimal("10"),
        min_purchase=Decimal("50.00"), active=True,
    )
    db.add(code)
    db.commit()
    return code


@pytest.fixture
def gateway():
    return MockPaymentGateway()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def marketplace():
    return RecordingMarketplace()


@pytest.fixture
def checkout_details():
    return CheckoutPayload(
        email="buyer@example.com",
        name="Ada Buyer",
        shipping_address=Address(line1="1 Main St", city="Berlin", postal_code="10115", country="DE"),
    )


@pytest.fixture
def client(session_factory, gateway, sink, marketplace):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_notification_sink] = lambda: sink
    app.dependency_overrides[get_marketplace_sync] = lambda: marketplace
    # No context manager: the lifespan (scheduler, file database) stays off
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    token = create_access_token({"sub": "admin@example.com", "role": "admin"})
    return {"Authorization": f"Bearer {token}"}
