from pydantic import BaseModel, ConfigDict, field_validator
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from models.discount import DiscountType


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Discount windows are stored as naive UTC
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value

# Request schema for a new discount code; business rules are checked by the service
class DiscountCreate(BaseModel):
    code: str
    type: DiscountType
    value: Decimal
    min_purchase: Optional[Decimal] = None
    max_uses: Optional[int] = None
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    active: bool = True

    @field_validator("starts_at", "expires_at")
    @classmethod
    def window_in_utc(cls, value):
        return _naive_utc(value)

# Partial update; unset fields are left alone
class DiscountUpdate(BaseModel):
    code: Optional[str] = None
    type: Optional[DiscountType] = None
    value: Optional[Decimal] = None
    min_purchase: Optional[Decimal] = None
    max_uses: Optional[int] = None
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    active: Optional[bool] = None

    @field_validator("starts_at", "expires_at")
    @classmethod
    def window_in_utc(cls, value):
        return _naive_utc(value)

class DiscountOut(BaseModel):
    id: int
    code: str
    type: DiscountType
    value: float
    min_purchase: Optional[float] = None
    max_uses: Optional[int] = None
    used_count: int
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    active: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class DiscountDetail(BaseModel):
    discount: DiscountOut
    is_valid: bool

class DiscountsPage(BaseModel):
    items: List[DiscountOut]
    total: int
    page: int
    per_page: int

class DiscountDeleteResult(BaseModel):
    message: str
    deleted: bool
    discount: Optional[DiscountOut] = None

# Usage figures; remaining_uses is -1 for codes without a cap
class DiscountStats(BaseModel):
    discount: DiscountOut
    is_valid: bool
    used_count: int
    remaining_uses: int
    days_until_expiry: Optional[int] = None
