# backend/services/cart.py
"""
Cart store keyed by session token.

Line merges are single UPDATE statements (quantity = quantity + n) so two
concurrent adds for the same product never lose one another, whichever
process they run in.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import update, delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from config import settings
from models.cart import Cart, CartItem
from models.product import Product, ProductVariant
from services.errors import InvalidQuantity, ItemNotFound, OutOfStock, ProductNotFound
from services.tax import default_tax_policy
from utils.money import to_money, utcnow

logger = logging.getLogger(__name__)


@dataclass
class CartTotals:
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal


def generate_session_token() -> str:
    return str(uuid.uuid4())


def _cart_query(db: Session):
    return db.query(Cart).options(
        selectinload(Cart.items).selectinload(CartItem.product),
        selectinload(Cart.items).selectinload(CartItem.variant),
    )


def get_cart(db: Session, session_token: str) -> Optional[Cart]:
    """Existing cart for the token, items loaded; None if there is none."""
    return _cart_query(db).filter(Cart.session_token == session_token).first()


def get_or_create_cart(db: Session, session_token: str, user_id: Optional[int] = None) -> Cart:
    cart = get_cart(db, session_token)
    if cart is not None:
        if cart.expires_at is not None and cart.expires_at < utcnow():
            # Stale cart the sweep has not reached yet: start over with the same token
            db.execute(delete(CartItem).where(CartItem.cart_id == cart.id))
            cart.expires_at = utcnow() + timedelta(days=settings.CART_TTL_DAYS)
            db.commit()
            cart = get_cart(db, session_token)
        return cart

    cart = Cart(
        session_token=session_token,
        user_id=user_id,
        expires_at=utcnow() + timedelta(days=settings.CART_TTL_DAYS),
    )
    db.add(cart)
    try:
        db.commit()
    except IntegrityError:
        # Another request created the same token first
        db.rollback()
    return get_cart(db, session_token)


def _same_line(cart_id: int, product_id: int, variant_id: Optional[int]):
    clauses = [CartItem.cart_id == cart_id, CartItem.product_id == product_id]
    if variant_id is None:
        clauses.append(CartItem.variant_id.is_(None))
    else:
        clauses.append(CartItem.variant_id == variant_id)
    return clauses


def _merge_line(db: Session, cart_id: int, product_id: int, variant_id: Optional[int], quantity: int) -> None:
    bump = (
        update(CartItem)
        .where(*_same_line(cart_id, product_id, variant_id))
        .values(quantity=CartItem.quantity + quantity)
        .execution_options(synchronize_session=False)
    )
    if db.execute(bump).rowcount:
        return
    try:
        with db.begin_nested():
            db.add(CartItem(cart_id=cart_id, product_id=product_id, variant_id=variant_id, quantity=quantity))
    except IntegrityError:
        # Lost the insert race to a concurrent add: the row exists now
        db.execute(bump)


def _load_catalog_entry(db: Session, product_id: int, variant_id: Optional[int]):
    product = db.get(Product, product_id)
    if product is None:
        raise ProductNotFound(f"Product {product_id} not found")
    variant = None
    if variant_id is not None:
        variant = db.get(ProductVariant, variant_id)
        if variant is None or variant.product_id != product.id:
            raise ProductNotFound(f"Variant {variant_id} not found")
    return product, variant


def add_item(db: Session, session_token: str, product_id: int, variant_id: Optional[int], quantity: int) -> Cart:
    if quantity is None or quantity <= 0:
        raise InvalidQuantity("Quantity must be positive")

    product, variant = _load_catalog_entry(db, product_id, variant_id)

    # Advisory check only; the real reservation happens at checkout
    if variant is not None and variant.stock < quantity:
        raise OutOfStock(f"Only {variant.stock} left of {variant.name}", variant_id=variant.id)

    cart = get_or_create_cart(db, session_token)
    _merge_line(db, cart.id, product.id, variant_id, quantity)
    db.commit()
    db.expire_all()
    return get_cart(db, session_token)


def update_item_quantity(db: Session, session_token: str, item_id: int, quantity: int) -> Cart:
    if quantity is None or quantity < 0:
        raise InvalidQuantity("Quantity cannot be negative")

    cart = get_or_create_cart(db, session_token)
    item = db.query(CartItem).filter(CartItem.id == item_id, CartItem.cart_id == cart.id).first()
    if item is None:
        raise ItemNotFound(f"Cart item {item_id} not found")

    if quantity == 0:
        db.delete(item)
    else:
        if item.variant is not None and item.variant.stock < quantity:
            raise OutOfStock(f"Only {item.variant.stock} left of {item.variant.name}", variant_id=item.variant_id)
        item.quantity = quantity
    db.commit()
    db.expire_all()
    return get_cart(db, session_token)


def remove_item(db: Session, session_token: str, item_id: int) -> Cart:
    cart = get_or_create_cart(db, session_token)
    result = db.execute(
        delete(CartItem)
        .where(CartItem.id == item_id, CartItem.cart_id == cart.id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        raise ItemNotFound(f"Cart item {item_id} not found")
    db.commit()
    db.expire_all()
    return get_cart(db, session_token)


def clear_cart(db: Session, session_token: str) -> None:
    cart_id = db.execute(select(Cart.id).where(Cart.session_token == session_token)).scalar()
    if cart_id is None:
        return
    db.execute(delete(CartItem).where(CartItem.cart_id == cart_id).execution_options(synchronize_session=False))
    db.commit()
    db.expire_all()


def line_unit_price(item: CartItem) -> Decimal:
    # Live price: base price plus the variant's adjustment
    if item.product is None:
        return Decimal("0.00")
    if item.variant is not None:
        return to_money(item.variant.unit_price(item.product.base_price))
    return to_money(item.product.base_price)


def calculate_total(cart: Cart, tax_policy=None) -> CartTotals:
    """Pure pricing of the loaded lines. Discounts only apply at checkout."""
    tax_policy = tax_policy or default_tax_policy
    subtotal = Decimal("0.00")
    for item in cart.items:
        subtotal += line_unit_price(item) * item.quantity
    subtotal = to_money(subtotal)
    tax = to_money(tax_policy.compute(subtotal, cart.items))
    discount = Decimal("0.00")
    return CartTotals(subtotal=subtotal, tax=tax, discount=discount, total=subtotal + tax - discount)


def merge_guest_cart(db: Session, guest_token: str, user_id: int, user_token: str) -> Cart:
    """Move a guest cart's lines into the user's cart after login."""
    guest = get_cart(db, guest_token)
    user_cart = get_or_create_cart(db, user_token, user_id=user_id)
    if user_cart.user_id is None:
        user_cart.user_id = user_id
    if guest is None or guest.id == user_cart.id:
        db.commit()
        return get_cart(db, user_token)

    guest_id = guest.id
    for item in guest.items:
        _merge_line(db, user_cart.id, item.product_id, item.variant_id, item.quantity)
    db.delete(guest)
    db.commit()
    db.expire_all()
    logger.info("Merged guest cart %s into cart of user %s", guest_id, user_id)
    return get_cart(db, user_token)


def cleanup_expired_carts(db: Session, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    expired = select(Cart.id).where(Cart.expires_at.is_not(None), Cart.expires_at < now)
    db.execute(delete(CartItem).where(CartItem.cart_id.in_(expired)).execution_options(synchronize_session=False))
    removed = db.execute(
        delete(Cart).where(Cart.expires_at.is_not(None), Cart.expires_at < now).execution_options(synchronize_session=False)
    ).rowcount
    db.commit()
    return removed


def sweep_expired_carts(session_factory) -> int:
    # Scheduler entry point: owns its session
    db = session_factory()
    try:
        removed = cleanup_expired_carts(db)
        if removed:
            logger.info("Cart sweep removed %s expired carts", removed)
        return removed
    finally:
        db.close()
