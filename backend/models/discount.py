# backend/models/discount.py
import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, Enum, func
from database import Base
from utils.money import utcnow


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


# Promotional code redeemable at checkout
class DiscountCode(Base):
    __tablename__ = "discount_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    type = Column(Enum(DiscountType), nullable=False)
    # Percent (0-100) for PERCENTAGE, currency amount for FIXED_AMOUNT
    value = Column(Numeric(10, 2), nullable=False)
    min_purchase = Column(Numeric(10, 2), nullable=True)
    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)
    starts_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """Active, inside its validity window and below the usage cap."""
        now = now or utcnow()
        if not self.active:
            return False
        if self.starts_at is not None and now < self.starts_at:
            return False
        if self.expires_at is not None and now > self.expires_at:
            return False
        if self.max_uses is not None and (self.used_count or 0) >= self.max_uses:
            return False
        return True
