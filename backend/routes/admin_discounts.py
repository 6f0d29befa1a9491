# backend/routes/admin_discounts.py
from typing import Optional
from fastapi import APIRouter, Depends, Request, Query, status
from sqlalchemy.orm import Session

from database import get_db
from models.discount import DiscountType
from schemas.discount import (
    DiscountCreate, DiscountDeleteResult, DiscountDetail, DiscountOut, DiscountsPage, DiscountStats, DiscountUpdate,
)
from services import discount as discount_service
from utils.audit import write_log, client_ip
from utils.tokenJWT import require_admin

router = APIRouter(prefix="/admin/discounts", tags=["Admin Discounts"])


@router.get("", response_model=DiscountsPage)
def list_discounts(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    active: Optional[bool] = Query(None),
    valid: bool = Query(False),
    discount_type: Optional[DiscountType] = Query(None, alias="type"),
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    rows, total = discount_service.list_codes(
        db, active=active, valid_only=valid, discount_type=discount_type, page=page, per_page=per_page,
    )
    return {"items": rows, "total": total, "page": page, "per_page": per_page}


@router.get("/{discount_id}", response_model=DiscountDetail)
def get_discount(discount_id: int, db: Session = Depends(get_db), admin: dict = Depends(require_admin)):
    discount = discount_service.get_code(db, discount_id)
    return {"discount": discount, "is_valid": discount.is_valid()}


@router.post("", response_model=DiscountDetail, status_code=status.HTTP_201_CREATED)
def create_discount(
    payload: DiscountCreate,
    request: Request,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    discount = discount_service.create_code(db, **payload.model_dump())
    response = {"discount": DiscountOut.model_validate(discount), "is_valid": discount.is_valid()}
    write_log(
        db,
        actor=admin.get("sub"),
        action="DISCOUNT_CREATE",
        resource="discounts",
        ip=client_ip(request),
        meta={"discount_id": discount.id, "code": discount.code},
    )
    return response


@router.patch("/{discount_id}", response_model=DiscountDetail)
def update_discount(
    discount_id: int,
    payload: DiscountUpdate,
    request: Request,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    changes = payload.model_dump(exclude_unset=True)
    discount = discount_service.update_code(db, discount_id, **changes)
    response = {"discount": DiscountOut.model_validate(discount), "is_valid": discount.is_valid()}
    write_log(
        db,
        actor=admin.get("sub"),
        action="DISCOUNT_UPDATE",
        resource="discounts",
        ip=client_ip(request),
        meta={"discount_id": discount_id, "fields": sorted(changes)},
    )
    return response


# Used codes are deactivated rather than deleted so past orders keep their reference
@router.delete("/{discount_id}", response_model=DiscountDeleteResult)
def delete_discount(
    discount_id: int,
    request: Request,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    deleted = discount_service.delete_code(db, discount_id)
    if deleted:
        result = DiscountDeleteResult(message="Discount deleted successfully", deleted=True)
    else:
        result = DiscountDeleteResult(
            message="Discount has been used and was deactivated instead of deleted",
            deleted=False,
            discount=DiscountOut.model_validate(discount_service.get_code(db, discount_id)),
        )
    write_log(
        db,
        actor=admin.get("sub"),
        action="DISCOUNT_DELETE" if deleted else "DISCOUNT_DEACTIVATE",
        resource="discounts",
        ip=client_ip(request),
        meta={"discount_id": discount_id},
    )
    return result


@router.get("/{discount_id}/stats", response_model=DiscountStats)
def discount_stats(discount_id: int, db: Session = Depends(get_db), admin: dict = Depends(require_admin)):
    return discount_service.code_stats(db, discount_id)
