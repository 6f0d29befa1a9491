# backend/routes/cart.py
from typing import Optional
from fastapi import APIRouter, Depends, Header, Request, Response, status
from sqlalchemy.orm import Session

from config import settings
from database import get_db
from models.cart import Cart
from schemas.cart import CartAddItem, CartUpdateItem, CartOut, CartItemOut, DiscountApply, DiscountPreviewOut
from services import cart as cart_store
from services import discount as discount_engine
from utils.audit import write_log, client_ip, session_actor

router = APIRouter(prefix="/shop/cart", tags=["Cart"])


def resolve_session_token(request: Request, x_session_token: Optional[str]) -> str:
    # Explicit header first, then the cookie, otherwise a fresh anonymous session
    token = x_session_token or request.cookies.get(settings.CART_COOKIE_NAME)
    return token or cart_store.generate_session_token()


def session_token(
    request: Request,
    response: Response,
    x_session_token: Optional[str] = Header(None, alias="X-Session-Token"),
) -> str:
    token = resolve_session_token(request, x_session_token)
    response.set_cookie(
        settings.CART_COOKIE_NAME,
        token,
        max_age=settings.CART_TTL_DAYS * 24 * 3600,
        httponly=True,
        samesite="lax",
    )
    return token


def _cart_to_out(cart: Cart) -> CartOut:
    items_out = []
    for it in cart.items:
        unit_price = cart_store.line_unit_price(it)
        items_out.append(CartItemOut(
            id=it.id,
            product_id=it.product_id,
            variant_id=it.variant_id,
            name=it.product.title if it.product else "",
            variant_name=it.variant.name if it.variant else None,
            sku=it.variant.sku if it.variant else (it.product.sku if it.product else None),
            quantity=it.quantity,
            unit_price=float(unit_price),
            line_total=float(unit_price * it.quantity),
        ))

    totals = cart_store.calculate_total(cart)
    return CartOut(
        session_token=cart.session_token,
        items=items_out,
        subtotal=float(totals.subtotal),
        tax=float(totals.tax),
        discount=float(totals.discount),
        total=float(totals.total),
        expires_at=cart.expires_at,
    )


@router.get("", response_model=CartOut)
def get_cart(token: str = Depends(session_token), db: Session = Depends(get_db)):
    return _cart_to_out(cart_store.get_or_create_cart(db, token))


@router.post("/items", response_model=CartOut, status_code=status.HTTP_200_OK)
def add_to_cart(
    payload: CartAddItem,
    request: Request,
    token: str = Depends(session_token),
    db: Session = Depends(get_db),
):
    cart = cart_store.add_item(db, token, payload.product_id, payload.variant_id, payload.quantity)
    out = _cart_to_out(cart)
    write_log(
        db,
        actor=session_actor(token),
        action="CART_ADD",
        resource="cart",
        ip=client_ip(request),
        meta={"product_id": payload.product_id, "variant_id": payload.variant_id, "quantity": payload.quantity},
    )
    return out


@router.patch("/items/{item_id}", response_model=CartOut)
def update_cart_item(
    item_id: int,
    payload: CartUpdateItem,
    request: Request,
    token: str = Depends(session_token),
    db: Session = Depends(get_db),
):
    cart = cart_store.update_item_quantity(db, token, item_id, payload.quantity)
    out = _cart_to_out(cart)
    write_log(
        db,
        actor=session_actor(token),
        action="CART_UPDATE",
        resource="cart",
        ip=client_ip(request),
        meta={"item_id": item_id, "quantity": payload.quantity, "total": out.total},
    )
    return out


@router.delete("/items/{item_id}", response_model=CartOut)
def delete_cart_item(
    item_id: int,
    request: Request,
    token: str = Depends(session_token),
    db: Session = Depends(get_db),
):
    cart = cart_store.remove_item(db, token, item_id)
    out = _cart_to_out(cart)
    write_log(
        db,
        actor=session_actor(token),
        action="CART_DELETE",
        resource="cart",
        ip=client_ip(request),
        meta={"item_id": item_id, "cart_items": len(out.items)},
    )
    return out


@router.delete("", response_model=CartOut)
def clear_cart(token: str = Depends(session_token), db: Session = Depends(get_db)):
    cart_store.clear_cart(db, token)
    return _cart_to_out(cart_store.get_or_create_cart(db, token))


@router.post("/discount", response_model=DiscountPreviewOut)
def preview_discount(
    payload: DiscountApply,
    token: str = Depends(session_token),
    db: Session = Depends(get_db),
):
    # Preview only: the code is applied for real at checkout
    discount = discount_engine.validate_code(db, payload.code)
    totals = cart_store.calculate_total(cart_store.get_or_create_cart(db, token))
    return discount_engine.preview(discount, totals.subtotal, totals.tax, totals.total)
