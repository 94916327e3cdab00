import uuid
from datetime import datetime

from sqlalchemy import Column, String, DateTime
from app.db.base import Base


def generate_id() -> str:
    return str(uuid.uuid4())


class RazorpaySubscription(Base):
    __tablename__ = "razorpay_subscriptions"

    id = Column(String, primary_key=True, default=generate_id)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    # Nullable: a webhook may land before we know which user it belongs to
    user_id = Column(String, nullable=True, index=True)
    # Reconciliation key shared by the verify-payment call and the webhook
    razorpay_subscription_id = Column(String, unique=True, nullable=False)
    razorpay_plan_id = Column(String, nullable=True)
    razorpay_customer_id = Column(String, nullable=True)
    status = Column(String, nullable=False, default="created")
    current_period_end = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return (
            f"<RazorpaySubscription(id={self.id}, sub={self.razorpay_subscription_id}, "
            f"user={self.user_id}, status={self.status}, period_end={self.current_period_end})>"
        )
