# backend/routes/admin_notifications.py
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from database import get_db
from models.notification import NotificationSeverity, NotificationType
from schemas.notification import NotificationOut, NotificationsPage
from services import notification as notification_service
from utils.tokenJWT import require_admin

router = APIRouter(prefix="/admin/notifications", tags=["Admin Notifications"])


@router.get("", response_model=NotificationsPage)
def list_notifications(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    notification_type: Optional[NotificationType] = Query(None, alias="type"),
    severity: Optional[NotificationSeverity] = Query(None),
    unread: bool = Query(False),
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    rows, total, unread_count = notification_service.list_notifications(
        db, notification_type=notification_type, severity=severity, unread_only=unread,
        page=page, per_page=per_page,
    )
    return {"items": rows, "total": total, "unread_count": unread_count, "page": page, "per_page": per_page}


@router.post("/read-all", status_code=status.HTTP_204_NO_CONTENT)
def mark_all_read(db: Session = Depends(get_db), admin: dict = Depends(require_admin)):
    notification_service.mark_all_read(db)


@router.get("/{notification_id}", response_model=NotificationOut)
def get_notification(notification_id: int, db: Session = Depends(get_db), admin: dict = Depends(require_admin)):
    return notification_service.get_notification(db, notification_id)


@router.patch("/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
def mark_read(notification_id: int, db: Session = Depends(get_db), admin: dict = Depends(require_admin)):
    notification_service.mark_read(db, notification_id)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_notification(notification_id: int, db: Session = Depends(get_db), admin: dict = Depends(require_admin)):
    notification_service.delete_notification(db, notification_id)
