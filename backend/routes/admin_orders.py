# backend/routes/admin_orders.py
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Request, Query, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from database import get_db
from models.order import FulfillmentStatus, PaymentStatus
from schemas.order import OrderResponse, OrdersPage, FulfillmentPatch, RefundPayload, RefundResponse
from services import order as order_service
from services.notification import NotificationSink, get_notification_sink
from services.payment.base import PaymentGateway
from services.payment.factory import get_payment_gateway
from services.reconciler import PaymentReconciler
from utils.audit import write_log, client_ip
from utils.tokenJWT import require_admin

router = APIRouter(prefix="/admin/orders", tags=["Admin Orders"])


@router.get("", response_model=OrdersPage)
def list_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    payment_status: Optional[PaymentStatus] = Query(None),
    fulfillment_status: Optional[FulfillmentStatus] = Query(None),
    customer_email: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    rows, total = order_service.list_orders(
        db,
        payment_status=payment_status,
        fulfillment_status=fulfillment_status,
        customer_email=customer_email,
        start_date=start_date,
        end_date=end_date,
        page=page,
        page_size=page_size,
    )
    return {"items": rows, "total": total, "page": page, "page_size": page_size}


@router.get("/{order_id}", response_model=OrderResponse)
def get_order_detail(order_id: int, db: Session = Depends(get_db), admin: dict = Depends(require_admin)):
    return order_service.get_order(db, order_id)


@router.patch("/{order_id}/fulfillment", response_model=OrderResponse)
def update_fulfillment(
    order_id: int,
    payload: FulfillmentPatch,
    request: Request,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    order_service.update_fulfillment_status(db, order_id, payload.fulfillment_status)
    write_log(
        db,
        actor=admin.get("sub"),
        action="ORDER_FULFILLMENT",
        resource="orders",
        ip=client_ip(request),
        meta={"order_id": order_id, "fulfillment_status": payload.fulfillment_status.value},
    )
    return order_service.get_order(db, order_id)


@router.post("/{order_id}/refund", response_model=RefundResponse)
async def refund_order(
    order_id: int,
    request: Request,
    payload: Optional[RefundPayload] = None,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationSink = Depends(get_notification_sink),
    admin: dict = Depends(require_admin),
):
    amount = payload.amount if payload is not None else None
    reconciler = PaymentReconciler(db, gateway, notifier)
    _, refund = await reconciler.refund_order(order_id, amount)

    await run_in_threadpool(
        write_log,
        db,
        actor=admin.get("sub"),
        action="ORDER_REFUND",
        resource="orders",
        ip=client_ip(request),
        meta={"order_id": order_id, "refund_id": refund.refund_id, "amount": float(refund.amount)},
    )
    order = await run_in_threadpool(order_service.get_order, db, order_id)
    return RefundResponse(
        order=OrderResponse.model_validate(order),
        refund_id=refund.refund_id,
        amount=float(refund.amount),
        currency=refund.currency,
        status=refund.status,
    )


@router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_order(
    order_id: int,
    request: Request,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    order_service.soft_delete_order(db, order_id)
    write_log(
        db,
        actor=admin.get("sub"),
        action="ORDER_DELETE",
        resource="orders",
        ip=client_ip(request),
        meta={"order_id": order_id},
    )
