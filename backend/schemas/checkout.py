from pydantic import BaseModel, EmailStr, Field
from typing import Optional

# Postal address as entered at checkout
class Address(BaseModel):
    line1: str
    line2: Optional[str] = None
    city: str
    postal_code: str
    country: str = Field(min_length=2, max_length=2)
    state: Optional[str] = None
    phone: Optional[str] = None

# Input schema for placing an order from the current cart
class CheckoutPayload(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1, max_length=255)
    shipping_address: Address
    billing_address: Optional[Address] = None # Defaults to the shipping address
    payment_method: str = "card"
    discount_code: Optional[str] = None
    # Explicit token wins over the cart cookie
    session_token: Optional[str] = None
    notes: Optional[str] = None

# Result of a successful checkout
class CheckoutResponse(BaseModel):
    order_id: int
    order_number: str
    payment_intent_id: str
    # Client secret or redirect URL, depending on the gateway
    client_secret: Optional[str] = None
    subtotal: float
    tax: float
    discount: float
    total: float
    currency: str

# Response for the server-side payment confirmation
class PaymentConfirmResponse(BaseModel):
    payment_intent_id: str
    status: str
