# backend/models/webhook.py
from sqlalchemy import Column, Integer, String, DateTime, func
from database import Base


# Provider event ids already applied; a second delivery of the same id is a no-op
class ProcessedWebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    payment_intent_id = Column(String(255), nullable=True, index=True)
    received_at = Column(DateTime(timezone=True), server_default=func.now())
