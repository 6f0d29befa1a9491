from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

# Request schema for adding an item to the cart
class CartAddItem(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    # Sign checked by the cart store so every path reports InvalidQuantity
    quantity: int = 1

# Request schema for updating cart item quantity (0 removes the line)
class CartUpdateItem(BaseModel):
    quantity: int

# Response schema for a single cart line item
class CartItemOut(BaseModel):
    id: int
    product_id: int
    variant_id: Optional[int] = None
    name: str
    variant_name: Optional[str] = None
    sku: Optional[str] = None
    quantity: int
    unit_price: float
    line_total: float

# Response schema for the entire cart summary
class CartOut(BaseModel):
    session_token: str
    items: List[CartItemOut]
    subtotal: float
    tax: float
    discount: float
    total: float
    expires_at: Optional[datetime] = None

# Request schema for the discount preview
class DiscountApply(BaseModel):
    code: str = Field(min_length=1, max_length=50)

# Discount preview, nothing is stored
class DiscountPreviewOut(BaseModel):
    discount_code: str
    discount_type: str
    discount_value: float
    discount_amount: float
    subtotal: float
    tax: float
    total_before: float
    total_after: float
