from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from models.order import PaymentStatus, FulfillmentStatus


# Output schema for an individual order line item
class OrderItemOut(BaseModel):
    product_id: Optional[int] = None
    variant_id: Optional[int] = None
    product_name: str
    variant_name: Optional[str] = None
    sku: Optional[str] = None
    quantity: int
    unit_price: float
    total_price: float

    class Config:
        from_attributes = True

# Output schema representing the full order details
class OrderResponse(BaseModel):
    id: int
    order_number: str
    customer_email: str
    customer_name: str
    subtotal: float
    tax: float
    discount: float
    total: float
    currency: str
    discount_code: Optional[str] = None
    payment_status: PaymentStatus
    payment_intent_id: Optional[str] = None
    payment_method: Optional[str] = None
    fulfillment_status: FulfillmentStatus
    shipping_address: Optional[dict] = None
    billing_address: Optional[dict] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[OrderItemOut]

    class Config:
        from_attributes = True

# Schema for paginated order lists
class OrdersPage(BaseModel):
    items: List[OrderResponse]
    total: int
    page: int
    page_size: int

# Schema for updating the fulfillment status
class FulfillmentPatch(BaseModel):
    fulfillment_status: FulfillmentStatus

# Refund request; no amount means a full refund
class RefundPayload(BaseModel):
    amount: Optional[float] = Field(default=None, gt=0)

class RefundResponse(BaseModel):
    order: OrderResponse
    refund_id: str
    amount: float
    currency: str
    status: str
