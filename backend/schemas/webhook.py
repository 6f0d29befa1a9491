# backend/schemas/webhook.py
from pydantic import BaseModel
from typing import Optional

# Provider webhook envelope: {"id", "type", "data": {"object": {...}}}

class PaymentError(BaseModel):
    message: Optional[str] = None

class WebhookObject(BaseModel):
    id: str
    status: Optional[str] = None
    last_payment_error: Optional[PaymentError] = None
    # charge.refunded carries the intent on the charge object
    payment_intent: Optional[str] = None

class WebhookData(BaseModel):
    object: WebhookObject

class WebhookEvent(BaseModel):
    id: Optional[str] = None
    type: str
    data: WebhookData
