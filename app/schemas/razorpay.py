from typing import Any, Dict, Optional
from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator


class VerifyPaymentRequest(BaseModel):
    """Fields Razorpay Checkout hands back to the client after a payment."""
    razorpay_payment_id: str
    razorpay_signature: str
    razorpay_subscription_id: Optional[str] = None  # subscription payments
    razorpay_order_id: Optional[str] = None  # one-off order payments


class VerifyPaymentResponse(BaseModel):
    verified: bool
    message: str


class SubscriptionEntity(BaseModel):
    """Subset of Razorpay's subscription entity the reconciler reads."""
    model_config = ConfigDict(extra="ignore")

    id: str
    plan_id: Optional[str] = None
    customer_id: Optional[str] = None
    status: Optional[str] = None
    current_end: Optional[int] = None  # unix seconds
    notes: Optional[Dict[str, Any]] = None

    @field_validator("notes", mode="before")
    @classmethod
    def empty_notes_as_none(cls, value):
        # Razorpay serialises empty notes as []
        if isinstance(value, list) and not value:
            return None
        return value


class EntityWrapper(BaseModel):
    model_config = ConfigDict(extra="ignore")

    entity: SubscriptionEntity


class WebhookPayloadBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    subscription: Optional[EntityWrapper] = None


class WebhookPayload(BaseModel):
    """Envelope: {"event": "...", "payload": {"subscription": {"entity": {...}}}}"""
    model_config = ConfigDict(extra="ignore")

    event: str
    payload: WebhookPayloadBody = WebhookPayloadBody()


class SubscriptionStatusResponse(BaseModel):
    is_subscribed: bool
    status: Optional[str] = None
    current_period_end: Optional[datetime] = None


class CreateSubscriptionResponse(BaseModel):
    subscription_id: str
    key_id: str
