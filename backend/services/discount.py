# backend/services/discount.py
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models.discount import DiscountCode, DiscountType
from services.errors import DiscountNotFound, DuplicateDiscountCode, InvalidDiscount
from utils.money import to_money, utcnow

logger = logging.getLogger(__name__)


def find_code(db: Session, code: str) -> Optional[DiscountCode]:
    return db.query(DiscountCode).filter(DiscountCode.code == code.strip()).first()


def validate_code(db: Session, code: str) -> DiscountCode:
    """Look up a code the buyer typed and reject it if it cannot be used now."""
    discount = find_code(db, code)
    if discount is None:
        raise InvalidDiscount("Discount code not found")
    if not discount.is_valid():
        raise InvalidDiscount("Discount code is expired, inactive or fully used")
    return discount


def compute_discount(discount: Optional[DiscountCode], subtotal, tax=Decimal("0.00")) -> Decimal:
    """Discount amount for ``subtotal``; never more than subtotal + tax."""
    if discount is None or not discount.is_valid():
        return Decimal("0.00")

    subtotal = to_money(subtotal)
    if discount.min_purchase is not None and subtotal < to_money(discount.min_purchase):
        return Decimal("0.00")

    if discount.type == DiscountType.PERCENTAGE:
        amount = subtotal * Decimal(discount.value) / 100
    else:
        amount = Decimal(discount.value)

    ceiling = subtotal + to_money(tax)
    return to_money(max(Decimal("0.00"), min(amount, ceiling)))


def preview(discount: DiscountCode, subtotal, tax, total) -> dict:
    amount = compute_discount(discount, subtotal, tax)
    if amount == 0:
        raise InvalidDiscount("Discount code cannot be applied to this cart")
    return {
        "discount_code": discount.code,
        "discount_type": discount.type.value,
        "discount_value": float(discount.value),
        "discount_amount": float(amount),
        "subtotal": float(subtotal),
        "tax": float(tax),
        "total_before": float(total),
        "total_after": float(to_money(total) - amount),
    }


def increment_usage(db: Session, discount_id: int) -> bool:
    # Runs after the order is committed; a failure here must not undo the order
    try:
        result = db.execute(
            update(DiscountCode)
            .where(
                DiscountCode.id == discount_id,
                DiscountCode.max_uses.is_(None) | (DiscountCode.used_count < DiscountCode.max_uses),
            )
            .values(used_count=DiscountCode.used_count + 1)
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to increment usage for discount code %s", discount_id)
        return False
    if result.rowcount != 1:
        # Several checkouts validated the code before the cap was reached
        logger.warning("Discount code %s already at its usage cap, usage not counted", discount_id)
        return False
    return True


# Admin management of codes

_EDITABLE = ("code", "type", "value", "min_purchase", "max_uses", "starts_at", "expires_at", "active")
_REQUIRED = ("code", "type", "value", "active")


def list_codes(db: Session, active: Optional[bool] = None, valid_only: bool = False,
               discount_type: Optional[DiscountType] = None, page: int = 1, per_page: int = 20):
    q = db.query(DiscountCode)
    if active is not None:
        q = q.filter(DiscountCode.active.is_(active))
    if discount_type is not None:
        q = q.filter(DiscountCode.type == discount_type)
    if valid_only:
        now = utcnow()
        q = q.filter(
            DiscountCode.active.is_(True),
            or_(DiscountCode.starts_at.is_(None), DiscountCode.starts_at <= now),
            or_(DiscountCode.expires_at.is_(None), DiscountCode.expires_at >= now),
            or_(DiscountCode.max_uses.is_(None), DiscountCode.used_count < DiscountCode.max_uses),
        )

    total = q.count()
    rows = (
        q.order_by(DiscountCode.created_at.desc(), DiscountCode.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return rows, total


def get_code(db: Session, discount_id: int) -> DiscountCode:
    discount = db.get(DiscountCode, discount_id)
    if discount is None:
        raise DiscountNotFound(f"Discount {discount_id} not found")
    return discount


def _check_rules(discount: DiscountCode) -> None:
    if not discount.code:
        raise InvalidDiscount("Code is required")
    if to_money(discount.value) <= 0:
        raise InvalidDiscount("Value must be greater than 0")
    if discount.type == DiscountType.PERCENTAGE and to_money(discount.value) > 100:
        raise InvalidDiscount("Percentage value cannot exceed 100")
    if discount.min_purchase is not None and to_money(discount.min_purchase) < 0:
        raise InvalidDiscount("Minimum purchase cannot be negative")
    if discount.max_uses is not None and discount.max_uses <= 0:
        raise InvalidDiscount("Max uses must be greater than 0")
    if discount.starts_at is not None and discount.expires_at is not None \
            and discount.starts_at >= discount.expires_at:
        raise InvalidDiscount("Start date must be before expiration date")


def _check_unique(db: Session, code: str, exclude_id: Optional[int] = None) -> None:
    q = db.query(DiscountCode.id).filter(DiscountCode.code == code)
    if exclude_id is not None:
        q = q.filter(DiscountCode.id != exclude_id)
    if q.first() is not None:
        raise DuplicateDiscountCode("Discount code already exists")


def create_code(db: Session, **fields) -> DiscountCode:
    fields["code"] = (fields.get("code") or "").strip()
    discount = DiscountCode(used_count=0, **{k: v for k, v in fields.items() if k in _EDITABLE})
    if discount.active is None:
        discount.active = True
    _check_rules(discount)
    _check_unique(db, discount.code)

    db.add(discount)
    try:
        db.commit()
    except IntegrityError as e:
        # Lost a race against a concurrent create of the same code
        db.rollback()
        raise DuplicateDiscountCode("Discount code already exists") from e
    db.refresh(discount)
    logger.info("Discount code %s created (%s %s)", discount.code, discount.type.value, discount.value)
    return discount


def update_code(db: Session, discount_id: int, **changes) -> DiscountCode:
    """Apply a partial update; only the keys present in ``changes`` are touched."""
    discount = get_code(db, discount_id)
    if "code" in changes and changes["code"] is not None:
        changes["code"] = changes["code"].strip()
        if changes["code"] != discount.code:
            _check_unique(db, changes["code"], exclude_id=discount.id)
    for key, value in changes.items():
        if key not in _EDITABLE or (value is None and key in _REQUIRED):
            continue
        setattr(discount, key, value)

    try:
        _check_rules(discount)
        db.commit()
    except InvalidDiscount:
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        raise DuplicateDiscountCode("Discount code already exists") from e
    db.refresh(discount)
    return discount


def delete_code(db: Session, discount_id: int) -> bool:
    """Delete a code, or deactivate it if orders already used it. True if deleted."""
    discount = get_code(db, discount_id)
    if (discount.used_count or 0) > 0:
        discount.active = False
        db.commit()
        logger.info("Discount code %s has been used, deactivated instead of deleted", discount.code)
        return False
    code = discount.code
    db.delete(discount)
    db.commit()
    logger.info("Discount code %s deleted", code)
    return True


def code_stats(db: Session, discount_id: int) -> dict:
    discount = get_code(db, discount_id)
    remaining = -1
    if discount.max_uses is not None:
        remaining = max(0, discount.max_uses - (discount.used_count or 0))
    days_until_expiry = None
    if discount.expires_at is not None:
        days_until_expiry = (discount.expires_at - utcnow()).days
    return {
        "discount": discount,
        "is_valid": discount.is_valid(),
        "used_count": discount.used_count or 0,
        "remaining_uses": remaining,
        "days_until_expiry": days_until_expiry,
    }
