# backend/services/inventory.py
"""
Inventory ledger.

All stock changes go through conditional UPDATE statements executed on the
caller's session. Nothing here commits: a checkout reserves every line of an
order inside its own transaction and a single rollback undoes all of them.
"""
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from models.product import ProductVariant
from models.stock import StockMovement, StockMovementType
from services.errors import InvalidQuantity, OutOfStock, ProductNotFound

logger = logging.getLogger(__name__)


def _variant_exists(db: Session, variant_id: int) -> bool:
    return db.query(ProductVariant.id).filter(ProductVariant.id == variant_id).first() is not None


def reserve(db: Session, variant_id: int, quantity: int, order_id=None, reason=None) -> StockMovement:
    """Decrement stock by ``quantity`` only if enough is left."""
    if quantity <= 0:
        raise InvalidQuantity("Reserved quantity must be positive")

    result = db.execute(
        update(ProductVariant)
        .where(ProductVariant.id == variant_id, ProductVariant.stock >= quantity)
        .values(stock=ProductVariant.stock - quantity)
    )
    if result.rowcount != 1:
        if not _variant_exists(db, variant_id):
            raise ProductNotFound(f"Variant {variant_id} not found")
        raise OutOfStock(f"Insufficient stock for variant {variant_id}", variant_id=variant_id)

    movement = StockMovement(
        variant_id=variant_id, qty=-quantity, type=StockMovementType.RESERVE,
        order_id=order_id, reason=reason,
    )
    db.add(movement)
    return movement


def release(db: Session, variant_id: int, quantity: int, order_id=None, reason=None) -> StockMovement:
    """Give ``quantity`` back to the variant. Used as a compensation."""
    if quantity <= 0:
        raise InvalidQuantity("Released quantity must be positive")

    result = db.execute(
        update(ProductVariant)
        .where(ProductVariant.id == variant_id)
        .values(stock=ProductVariant.stock + quantity)
    )
    if result.rowcount != 1:
        raise ProductNotFound(f"Variant {variant_id} not found")

    movement = StockMovement(
        variant_id=variant_id, qty=quantity, type=StockMovementType.RELEASE,
        order_id=order_id, reason=reason,
    )
    db.add(movement)
    return movement


def adjust(db: Session, variant_id: int, delta: int, reason=None) -> StockMovement:
    # Manual correction (delivery, loss, recount). Stock may not go below zero.
    if delta == 0:
        raise InvalidQuantity("Adjustment cannot be zero")

    result = db.execute(
        update(ProductVariant)
        .where(ProductVariant.id == variant_id, ProductVariant.stock + delta >= 0)
        .values(stock=ProductVariant.stock + delta)
    )
    if result.rowcount != 1:
        if not _variant_exists(db, variant_id):
            raise ProductNotFound(f"Variant {variant_id} not found")
        raise InvalidQuantity("Stock cannot go negative")

    movement = StockMovement(
        variant_id=variant_id, qty=delta, type=StockMovementType.ADJUSTMENT, reason=reason,
    )
    db.add(movement)
    return movement


def current_stock(db: Session, variant_id: int) -> int:
    stock = db.query(ProductVariant.stock).filter(ProductVariant.id == variant_id).scalar()
    if stock is None:
        raise ProductNotFound(f"Variant {variant_id} not found")
    return stock
