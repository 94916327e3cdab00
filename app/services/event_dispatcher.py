"""
Classify Razorpay webhook events into reconciliation transitions.

The provider's event names are an open set. Known names map to a closed
TransitionKind; everything else is UNHANDLED and acknowledged with 200 so
the provider does not keep retrying it.
"""
import json
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import ValidationError

from app.core.errors import ValidationFailure
from app.schemas.razorpay import SubscriptionEntity, WebhookPayload


class TransitionKind(str, Enum):
    CREATE_OR_ACTIVATE = "create-or-activate"
    UPSERT_CHARGE = "upsert-charge"
    TERMINAL_UPDATE = "terminal-update"
    UNHANDLED = "unhandled"


EVENT_TRANSITIONS = {
    "subscription.activated": TransitionKind.CREATE_OR_ACTIVATE,
    "subscription.charged": TransitionKind.UPSERT_CHARGE,
    "subscription.halted": TransitionKind.TERMINAL_UPDATE,
    "subscription.cancelled": TransitionKind.TERMINAL_UPDATE,
    "subscription.completed": TransitionKind.TERMINAL_UPDATE,
    "subscription.expired": TransitionKind.TERMINAL_UPDATE,
}


def classify(event_type: Optional[str]) -> TransitionKind:
    return EVENT_TRANSITIONS.get(event_type or "", TransitionKind.UNHANDLED)


@dataclass(frozen=True)
class WebhookEvent:
    event_type: str
    kind: TransitionKind
    subscription: Optional[SubscriptionEntity]

    @property
    def user_id(self) -> Optional[str]:
        """Owner recorded by Razorpay in the subscription notes at creation time."""
        if self.subscription is None or not self.subscription.notes:
            return None
        user_id = self.subscription.notes.get("userId")
        return user_id if isinstance(user_id, str) and user_id else None

    @property
    def terminal_status(self) -> str:
        """Status to store for a terminal event; falls back to the event suffix."""
        if self.subscription is not None and self.subscription.status:
            return self.subscription.status
        return self.event_type.rsplit(".", 1)[-1]


def parse_event(raw_body: bytes) -> WebhookEvent:
    """
    Parse an already signature-verified webhook body.

    The event name is classified before anything else is validated, so an
    unhandled event is acknowledged whatever its entity looks like. Raises
    ValidationFailure for invalid JSON, an envelope without a string event
    name, or a known subscription event whose entity is missing or malformed.
    """
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationFailure("Invalid payload") from e

    event_type = data.get("event") if isinstance(data, dict) else None
    if not isinstance(event_type, str):
        raise ValidationFailure("Invalid payload: missing event name")

    kind = classify(event_type)
    if kind is TransitionKind.UNHANDLED:
        return WebhookEvent(event_type=event_type, kind=kind, subscription=None)

    try:
        envelope = WebhookPayload.model_validate(data)
    except ValidationError as e:
        raise ValidationFailure(f"Invalid payload: {e.error_count()} field error(s)") from e

    if envelope.payload.subscription is None:
        raise ValidationFailure(f"Missing subscription data for {event_type} event")
    return WebhookEvent(event_type=event_type, kind=kind, subscription=envelope.payload.subscription.entity)
