from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import List, Optional

from models.notification import NotificationSeverity, NotificationType

# Schema for returning one admin notification
class NotificationOut(BaseModel):
    id: int
    type: NotificationType
    severity: NotificationSeverity
    title: str
    message: Optional[str] = None
    payload: Optional[dict] = None
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

# Paginated inbox with the overall unread counter
class NotificationsPage(BaseModel):
    items: List[NotificationOut]
    total: int
    unread_count: int
    page: int
    per_page: int
