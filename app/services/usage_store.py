"""
Daily interaction counters for the free tier, keyed by (user_id, day).
"""
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import StoreFailure
from app.models.chatbot_interaction import ChatbotInteraction
from app.services.subscription_store import dialect_insert

logger = logging.getLogger(__name__)


class UsageCounterStore:
    def __init__(self, db: Session):
        self.db = db
        self.table = ChatbotInteraction.__table__

    def _fetch(self, user_id: str, day: str) -> ChatbotInteraction:
        stmt = (
            select(ChatbotInteraction)
            .where(ChatbotInteraction.user_id == user_id, ChatbotInteraction.day == day)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalars().one()

    def find_or_create(self, user_id: str, day: str) -> ChatbotInteraction:
        """Today's counter for the user, created at 0 on the first request of the day."""
        insert = dialect_insert(self.db)
        stmt = (
            insert(self.table)
            .values(user_id=user_id, day=day, count=0)
            .on_conflict_do_nothing(index_elements=[self.table.c.day, self.table.c.user_id])
        )
        try:
            self.db.execute(stmt)
            self.db.commit()
            return self._fetch(user_id, day)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("[Quota] Failed to load usage counter for user %s on %s", user_id, day)
            raise StoreFailure(f"usage lookup for {user_id} failed") from e

    def increment(self, user_id: str, day: str) -> ChatbotInteraction:
        """Atomically add one to the counter, creating it at 1 if it does not exist yet."""
        insert = dialect_insert(self.db)
        stmt = insert(self.table).values(user_id=user_id, day=day, count=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=[self.table.c.day, self.table.c.user_id],
            set_={"count": self.table.c["count"] + 1},
        )
        try:
            self.db.execute(stmt)
            self.db.commit()
            return self._fetch(user_id, day)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreFailure(f"usage increment for {user_id} failed") from e
