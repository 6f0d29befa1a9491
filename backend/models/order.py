# backend/models/order.py
import enum

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum, JSON, Text, func
from sqlalchemy.orm import relationship
from database import Base


# Payment axis of an order. pending -> paid | failed, paid -> refunded.
class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentStatus.FAILED, PaymentStatus.REFUNDED)


# Fulfillment axis, independent from payment
class FulfillmentStatus(str, enum.Enum):
    UNFULFILLED = "unfulfilled"
    PARTIALLY_FULFILLED = "partially_fulfilled"
    FULFILLED = "fulfilled"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, nullable=False, index=True)
    user_id = Column(Integer, nullable=True)

    customer_email = Column(String(255), nullable=False)
    customer_name = Column(String(255), nullable=False)

    # Pricing snapshot, computed once at checkout
    subtotal = Column(Numeric(10, 2), nullable=False, default=0)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    discount = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="EUR")
    discount_code = Column(String(50), nullable=True)

    # Payment integration details
    payment_status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING, index=True)
    payment_intent_id = Column(String(255), nullable=True, index=True)
    payment_method = Column(String(50), nullable=True)
    # Set while an admin refund is in flight at the gateway
    refund_requested_at = Column(DateTime(timezone=True), nullable=True)

    fulfillment_status = Column(
        Enum(FulfillmentStatus), nullable=False, default=FulfillmentStatus.UNFULFILLED, index=True
    )

    # Addresses as submitted at checkout
    shipping_address = Column(JSON, nullable=True)
    billing_address = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    # Orders are never removed, only hidden
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )


# Immutable snapshot of one purchased line, detached from later catalog edits
class OrderItem(Base):
    __tablename__ = "order_items"
    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=True)
    product_name = Column(String(500), nullable=False)
    variant_name = Column(String(255), nullable=True)
    sku = Column(String(100), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)

    order = relationship("Order", back_populates="items")
