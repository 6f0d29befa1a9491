# backend/routes/stock.py
from typing import Optional
from fastapi import APIRouter, Depends, Request, Query, status
from sqlalchemy.orm import Session, joinedload

from database import get_db
from models.stock import StockMovement, StockMovementType
from schemas.stock import StockAdjustPayload, StockAdjustResponse, StockMovementPage, StockMovementResponse
from services import inventory
from utils.audit import write_log, client_ip
from utils.tokenJWT import require_admin

router = APIRouter(prefix="/admin/stock", tags=["Stock"])


def _movement_to_out(movement: StockMovement) -> StockMovementResponse:
    return StockMovementResponse(
        id=movement.id,
        variant_id=movement.variant_id,
        variant_sku=movement.variant.sku if movement.variant else None,
        qty=movement.qty,
        type=movement.type,
        order_id=movement.order_id,
        reason=movement.reason,
        created_at=movement.created_at,
    )


# Manual correction of one variant's stock through the ledger
@router.post("/adjust", response_model=StockAdjustResponse, status_code=status.HTTP_201_CREATED)
def adjust_stock(
    payload: StockAdjustPayload,
    request: Request,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    try:
        movement = inventory.adjust(db, payload.variant_id, payload.delta, reason=payload.reason)
        db.commit()
    except Exception:
        db.rollback()
        raise

    write_log(
        db,
        actor=admin.get("sub"),
        action="STOCK_ADJUSTMENT",
        resource="stock",
        ip=client_ip(request),
        meta={"variant_id": payload.variant_id, "delta": payload.delta, "reason": payload.reason},
    )
    return StockAdjustResponse(movement=_movement_to_out(movement), stock=movement.variant.stock)


# Ledger history, newest first
@router.get("/movements", response_model=StockMovementPage)
def list_movements(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    variant_id: Optional[int] = Query(None),
    order_id: Optional[int] = Query(None),
    movement_type: Optional[StockMovementType] = Query(None, alias="type"),
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    q = db.query(StockMovement).options(joinedload(StockMovement.variant))
    if variant_id is not None:
        q = q.filter(StockMovement.variant_id == variant_id)
    if order_id is not None:
        q = q.filter(StockMovement.order_id == order_id)
    if movement_type is not None:
        q = q.filter(StockMovement.type == movement_type)

    total = q.count()
    rows = q.order_by(StockMovement.id.desc()).offset((page - 1) * page_size).limit(page_size).all()
    return {"items": [_movement_to_out(m) for m in rows], "total": total, "page": page, "page_size": page_size}
