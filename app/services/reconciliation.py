"""
Subscription reconciliation across the two Razorpay channels.

  verify-payment (client, after checkout)  -> soft_touch()
  webhook (provider, at-least-once)        -> apply_webhook()

State machine per razorpay_subscription_id:

  (none)          -> created    soft_touch: preliminary record owned by the caller,
                                with a short provisional period end
  (none|created)  -> active     subscription.activated / subscription.charged (upsert)
  active          -> halted | cancelled | completed | expired
                                plain update; unknown subscription is an error

The webhook is authoritative for ownership and status. The verify-payment
call is only a convenience signal for faster UI feedback: it never
overwrites an existing record.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.core import config
from app.core.clock import Clock
from app.core.errors import ConflictAnomaly, ValidationFailure
from app.models.subscription import RazorpaySubscription
from app.services.event_dispatcher import TransitionKind, WebhookEvent
from app.services.subscription_store import SubscriptionExists, SubscriptionStore

logger = logging.getLogger(__name__)


def period_end_from_unix(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)


class ReconciliationEngine:
    def __init__(self, store: SubscriptionStore, clock: Clock, preliminary_period: Optional[timedelta] = None):
        self.store = store
        self.clock = clock
        if preliminary_period is None:
            preliminary_period = timedelta(hours=config.PRELIMINARY_PERIOD_HOURS)
        self.preliminary_period = preliminary_period

    # -- verification channel -------------------------------------------------

    def soft_touch(self, user_id: str, subscription_id: str) -> Optional[RazorpaySubscription]:
        """
        Record that `user_id` just paid for `subscription_id`.

        Creates a preliminary record if none exists. An existing record is left
        untouched; an owner mismatch is logged, not raised.
        """
        existing = self.store.find_by_external_id(subscription_id)
        if existing is None:
            try:
                record = self.store.create(
                    subscription_id,
                    user_id=user_id,
                    status="created",
                    current_period_end=self.clock.now() + self.preliminary_period,
                )
                logger.info(
                    "[Razorpay verify] Created preliminary subscription record for %s for user %s",
                    subscription_id, user_id,
                )
                return record
            except SubscriptionExists:
                # The webhook won the race; fall through to the ownership check
                existing = self.store.find_by_external_id(subscription_id)
                if existing is None:
                    return None

        if existing.user_id == user_id:
            logger.info(
                "[Razorpay verify] Subscription %s found for user %s. Webhook will handle final activation.",
                subscription_id, user_id,
            )
        else:
            logger.warning(
                "[Razorpay verify] User mismatch: subscription %s belongs to user %s, not %s",
                subscription_id, existing.user_id, user_id,
            )
        return existing

    # -- webhook channel ------------------------------------------------------

    def apply_webhook(self, event: WebhookEvent) -> Optional[RazorpaySubscription]:
        if event.kind is TransitionKind.CREATE_OR_ACTIVATE:
            return self._activate(event)
        if event.kind is TransitionKind.UPSERT_CHARGE:
            return self._charge(event)
        if event.kind is TransitionKind.TERMINAL_UPDATE:
            return self._terminate(event)
        logger.info("[Razorpay webhook] Unhandled Razorpay event type: %s", event.event_type)
        return None

    def _period_fields(self, event: WebhookEvent) -> dict:
        entity = event.subscription
        if event.user_id is None:
            raise ValidationFailure(
                f"User ID not found or invalid in subscription notes for {event.event_type}"
            )
        if entity.current_end is None:
            raise ValidationFailure(f"Missing current_end for {event.event_type}")
        return {
            "status": entity.status or "active",
            "current_period_end": period_end_from_unix(entity.current_end),
        }

    def _create_defaults(self, event: WebhookEvent) -> dict:
        entity = event.subscription
        return {
            "user_id": event.user_id,
            "razorpay_plan_id": entity.plan_id,
            "razorpay_customer_id": entity.customer_id,
        }

    def _activate(self, event: WebhookEvent) -> RazorpaySubscription:
        entity = event.subscription
        patch = self._period_fields(event)
        # Activation carries the provider's record of who subscribed: it owns user_id
        patch["user_id"] = event.user_id
        logger.info(
            "[Razorpay webhook] Processing subscription activation for user %s and subscription %s",
            event.user_id, entity.id,
        )
        record = self.store.upsert(
            entity.id,
            patch,
            self._create_defaults(event),
            fill_if_null=("razorpay_plan_id", "razorpay_customer_id"),
        )
        logger.info("[Razorpay webhook] Subscription %s status is now %s", entity.id, record.status)
        return record

    def _charge(self, event: WebhookEvent) -> RazorpaySubscription:
        # May be the first event we ever see for this subscription, hence upsert
        entity = event.subscription
        record = self.store.upsert(
            entity.id,
            self._period_fields(event),
            self._create_defaults(event),
            fill_if_null=("user_id", "razorpay_plan_id", "razorpay_customer_id"),
        )
        logger.info(
            "[Razorpay webhook] Subscription %s charged successfully (upserted), period end %s",
            entity.id, record.current_period_end,
        )
        return record

    def _terminate(self, event: WebhookEvent) -> RazorpaySubscription:
        entity = event.subscription
        status = event.terminal_status
        record = self.store.update(entity.id, {"status": status})
        if record is None:
            logger.error(
                "[Razorpay webhook] %s for unknown subscription %s", event.event_type, entity.id
            )
            raise ConflictAnomaly(f"Cannot apply {event.event_type}: subscription {entity.id} does not exist")
        logger.info("[Razorpay webhook] Subscription %s status updated to %s", entity.id, status)
        return record
