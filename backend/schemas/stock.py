# backend/schemas/stock.py
from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import List, Optional

from models.stock import StockMovementType

# Manual stock correction (delivery, loss, recount), signed
class StockAdjustPayload(BaseModel):
    variant_id: int
    delta: int
    reason: Optional[str] = None

# Schema for returning stock movement details
class StockMovementResponse(BaseModel):
    id: int
    variant_id: int
    variant_sku: Optional[str] = None
    qty: int
    type: StockMovementType
    order_id: Optional[int] = None
    reason: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

# Paginated response for stock movement history
class StockMovementPage(BaseModel):
    items: List[StockMovementResponse]
    total: int
    page: int
    page_size: int

# Result of an adjustment: the ledger row and the stock after it
class StockAdjustResponse(BaseModel):
    movement: StockMovementResponse
    stock: int
