# backend/models/cart.py
from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, UniqueConstraint, CheckConstraint, Index, func
from sqlalchemy.orm import relationship
from database import Base

# Represents an anonymous or logged-in shopping cart, keyed by session token
class Cart(Base):
    __tablename__ = "carts" # Table name

    id = Column(Integer, primary_key=True, index=True) # Primary key
    session_token = Column(String(255), unique=True, nullable=False, index=True) # Opaque browser session id
    user_id = Column(Integer, nullable=True, index=True) # Owning user, if logged in
    expires_at = Column(DateTime, nullable=True, index=True) # Expiry sweep deletes the cart after this
    created_at = Column(DateTime, server_default=func.now()) # Creation timestamp
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # One-to-many relationship with cart items
    items = relationship(
        "CartItem", back_populates="cart", cascade="all, delete-orphan", order_by="CartItem.id"
    )


# Represents a single line (product + optional variant + quantity) within a cart
class CartItem(Base):
    __tablename__ = "cart_items" # Table name

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), index=True, nullable=False) # Parent cart
    product_id = Column(Integer, ForeignKey("products.id"), index=True, nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), index=True, nullable=True)
    quantity = Column(Integer, CheckConstraint("quantity >= 1"), nullable=False, default=1)
    created_at = Column(DateTime, server_default=func.now())

    cart = relationship("Cart", back_populates="items") # Relationship back to Cart
    product = relationship("Product")
    variant = relationship("ProductVariant")

    __table_args__ = (
        # One line per (cart, product, variant); repeated adds bump the quantity
        UniqueConstraint("cart_id", "product_id", "variant_id", name="uq_cartitem_cart_product_variant"),
        # NULL variants are distinct in a plain unique constraint, so cover them separately
        Index(
            "uq_cartitem_cart_product_novariant",
            "cart_id",
            "product_id",
            unique=True,
            sqlite_where=variant_id.is_(None),
            postgresql_where=variant_id.is_(None),
        ),
    )
