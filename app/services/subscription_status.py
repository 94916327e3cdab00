from sqlalchemy.orm import Session

from app.core.clock import Clock
from app.services.subscription_store import SubscriptionStore


class SubscriptionStatusOracle:
    """
    A user is subscribed while any of their records has a period end in the
    future. Cancelled subscriptions keep access until the paid period ends,
    and a preliminary record grants its short provisional window.
    """

    def __init__(self, store: SubscriptionStore, clock: Clock):
        self.store = store
        self.clock = clock

    @classmethod
    def for_session(cls, db: Session, clock: Clock) -> "SubscriptionStatusOracle":
        return cls(SubscriptionStore(db, clock), clock)

    def current_record(self, user_id: str):
        records = self.store.find_for_user(user_id)
        return records[0] if records else None

    def is_subscribed(self, user_id: str) -> bool:
        record = self.current_record(user_id)
        return record is not None and record.current_period_end > self.clock.now()
