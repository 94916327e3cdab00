"""
Per-user, per-day counter of metered chat completions for free-tier users.
Rows are created lazily on the first request of the day and never reset;
a new day simply gets a new row.
"""
from sqlalchemy import Column, Integer, String, UniqueConstraint
from app.db.base import Base


class ChatbotInteraction(Base):
    __tablename__ = "chatbot_interactions"
    __table_args__ = (
        UniqueConstraint("day", "user_id", name="uq_chatbot_interactions_day_user"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    day = Column(String, nullable=False)  # ISO date, e.g. "2026-10-18"
    user_id = Column(String, nullable=False, index=True)
    count = Column(Integer, default=0, nullable=False)

    def __repr__(self):
        return f"<ChatbotInteraction(user_id={self.user_id}, day={self.day}, count={self.count})>"
