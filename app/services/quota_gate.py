"""
Daily free-tier gate for the metered chat feature.

admit() only reads; record_completion() increments once the metered work has
actually produced a result, so a request that fails downstream costs nothing.

Known race: admit-then-increment is not atomic across the completion call.
Concurrent requests from one user can all observe count < limit and proceed,
over-admitting by up to (concurrency - 1). The increment itself is atomic,
so no completion is ever lost from the count.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from app.core import config
from app.core.clock import Clock
from app.core.errors import StoreFailure
from app.models.chatbot_interaction import ChatbotInteraction
from app.services.usage_store import UsageCounterStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Admission:
    allowed: bool
    current_count: int
    # False for subscribers: their completions are never counted
    metered: bool = True


class QuotaGate:
    def __init__(self, store: UsageCounterStore, clock: Clock, daily_limit: Optional[int] = None):
        self.store = store
        self.clock = clock
        self.daily_limit = config.FREE_CREDITS_PER_DAY if daily_limit is None else daily_limit

    def admit(self, user_id: str, is_subscribed: bool) -> Admission:
        if is_subscribed:
            return Admission(allowed=True, current_count=0, metered=False)
        counter = self.store.find_or_create(user_id, self.clock.today())
        allowed = counter.count < self.daily_limit
        if not allowed:
            logger.info(
                "[Quota] User %s reached the daily limit (%s/%s)", user_id, counter.count, self.daily_limit
            )
        return Admission(allowed=allowed, current_count=counter.count)

    def record_completion(self, user_id: str) -> Optional[ChatbotInteraction]:
        """
        Count one completed metered operation. Best effort: a store failure is
        logged and swallowed because the result has already been delivered.
        """
        today = self.clock.today()
        try:
            counter = self.store.increment(user_id, today)
        except StoreFailure:
            logger.exception("[Quota] Failed to update chat count for user %s", user_id)
            return None
        logger.info("[Quota] Incremented chat count for user %s on %s to %s", user_id, today, counter.count)
        return counter
