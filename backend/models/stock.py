# backend/models/stock.py
import enum

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Enum, func
from sqlalchemy.orm import relationship
from database import Base


class StockMovementType(str, enum.Enum):
    RESERVE = "RESERVE"
    RELEASE = "RELEASE"
    ADJUSTMENT = "ADJUSTMENT"


# One row per ledger operation; replaying them reproduces the current stock
class StockMovement(Base):
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, index=True)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=False, index=True)

    # Signed quantity: negative for reservations, positive for releases
    qty = Column(Integer, nullable=False)

    type = Column(Enum(StockMovementType), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    reason = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    variant = relationship("ProductVariant")
