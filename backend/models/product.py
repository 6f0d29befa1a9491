# backend/models/product.py
import enum
from decimal import Decimal

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, CheckConstraint, Enum
from sqlalchemy.orm import relationship
from database import Base


class ProductStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


# Model Product
# Catalog entry as seen by the shop. Prices live here, stock lives on the
# variants: a product without variants is treated as untracked stock.
class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(500), nullable=False, index=True)
    sku = Column(String(100), unique=True, nullable=True, index=True)

    base_price = Column(Numeric(10, 2), CheckConstraint("base_price >= 0"), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="EUR")
    status = Column(Enum(ProductStatus), nullable=False, default=ProductStatus.DRAFT)

    variants = relationship("ProductVariant", back_populates="product", order_by="ProductVariant.id")


# Model ProductVariant
# Size / colour / print edition of a product. Owns the stock count that the
# inventory ledger reserves and releases.
class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    sku = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)

    price_adjustment = Column(Numeric(10, 2), nullable=False, default=0)

    # Stock count, never negative. Only the inventory ledger writes it.
    stock = Column(Integer, CheckConstraint("stock >= 0"), nullable=False, default=0)

    product = relationship("Product", back_populates="variants")

    def unit_price(self, base_price) -> Decimal:
        return Decimal(base_price or 0) + Decimal(self.price_adjustment or 0)
