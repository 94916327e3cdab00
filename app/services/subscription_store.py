"""
Durable subscription records keyed by the Razorpay subscription id.

Every write is a single statement guarded by the unique constraint on
razorpay_subscription_id, so two workers racing on the same subscription
(a webhook retry and a fresh delivery, or the verify-payment call and a
webhook) converge on one row instead of duplicating it.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.clock import Clock
from app.core.errors import StoreFailure
from app.models.subscription import RazorpaySubscription, generate_id

logger = logging.getLogger(__name__)


class SubscriptionExists(Exception):
    """create() lost a race: a record with this subscription id already exists."""

    def __init__(self, external_id: str):
        super().__init__(f"Subscription {external_id} already exists")
        self.external_id = external_id


def dialect_insert(db: Session):
    """Dialect-specific INSERT supporting ON CONFLICT (PostgreSQL, SQLite)."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise StoreFailure(f"Atomic upsert is not supported on {dialect}")
    return insert


class SubscriptionStore:
    def __init__(self, db: Session, clock: Clock):
        self.db = db
        self.clock = clock
        self.table = RazorpaySubscription.__table__

    @contextmanager
    def _guard(self, action: str):
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("[Subscriptions] %s failed", action)
            raise StoreFailure(f"{action} failed") from e

    def find_by_external_id(self, external_id: str) -> Optional[RazorpaySubscription]:
        with self._guard(f"lookup of {external_id}"):
            stmt = (
                select(RazorpaySubscription)
                .where(RazorpaySubscription.razorpay_subscription_id == external_id)
                .execution_options(populate_existing=True)
            )
            return self.db.execute(stmt).scalars().first()

    def find_for_user(self, user_id: str) -> List[RazorpaySubscription]:
        """All records owned by `user_id`, latest period end first."""
        with self._guard(f"lookup for user {user_id}"):
            stmt = (
                select(RazorpaySubscription)
                .where(RazorpaySubscription.user_id == user_id)
                .order_by(RazorpaySubscription.current_period_end.desc())
                .execution_options(populate_existing=True)
            )
            return list(self.db.execute(stmt).scalars())

    def create(
        self,
        external_id: str,
        *,
        current_period_end: datetime,
        status: str = "created",
        user_id: Optional[str] = None,
        plan_id: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> RazorpaySubscription:
        """Insert a new record; raises SubscriptionExists if the id is taken."""
        now = self.clock.now()
        insert = dialect_insert(self.db)
        stmt = (
            insert(self.table)
            .values(
                id=generate_id(),
                created_at=now,
                updated_at=now,
                user_id=user_id,
                razorpay_subscription_id=external_id,
                razorpay_plan_id=plan_id,
                razorpay_customer_id=customer_id,
                status=status,
                current_period_end=current_period_end,
            )
            .on_conflict_do_nothing(index_elements=[self.table.c.razorpay_subscription_id])
        )
        with self._guard(f"create of {external_id}"):
            inserted = self.db.execute(stmt).rowcount
            self.db.commit()
        if not inserted:
            raise SubscriptionExists(external_id)
        return self.find_by_external_id(external_id)

    def update(self, external_id: str, patch: dict) -> Optional[RazorpaySubscription]:
        """Plain update; returns None when no record has this id (nothing is created)."""
        values = dict(patch)
        values["updated_at"] = self.clock.now()
        stmt = (
            update(self.table)
            .where(self.table.c.razorpay_subscription_id == external_id)
            .values(**values)
        )
        with self._guard(f"update of {external_id}"):
            matched = self.db.execute(stmt).rowcount
            self.db.commit()
        if not matched:
            return None
        return self.find_by_external_id(external_id)

    def upsert(
        self,
        external_id: str,
        patch: dict,
        create_defaults: dict,
        fill_if_null: Iterable[str] = (),
    ) -> RazorpaySubscription:
        """
        Atomic create-if-absent-else-update.

        `patch` is written on both paths, `create_defaults` only on insert, except
        for keys in `fill_if_null`, which also fill a NULL column on an existing row.
        current_period_end never moves backwards: on conflict the later of the
        stored and incoming values is kept, so out-of-order deliveries cannot
        shorten an entitlement.
        """
        now = self.clock.now()
        insert = dialect_insert(self.db)
        values = {
            "id": generate_id(),
            "created_at": now,
            "updated_at": now,
            "razorpay_subscription_id": external_id,
            **create_defaults,
            **patch,
        }
        stmt = insert(self.table).values(**values)
        excluded = stmt.excluded
        columns = self.table.c

        set_ = {"updated_at": excluded.updated_at}
        for key in patch:
            if key == "current_period_end":
                set_[key] = case(
                    (excluded.current_period_end > columns.current_period_end, excluded.current_period_end),
                    else_=columns.current_period_end,
                )
            else:
                set_[key] = excluded[key]
        for key in fill_if_null:
            if key not in patch:
                set_[key] = func.coalesce(columns[key], excluded[key])

        stmt = stmt.on_conflict_do_update(
            index_elements=[columns.razorpay_subscription_id],
            set_=set_,
        )
        with self._guard(f"upsert of {external_id}"):
            self.db.execute(stmt)
            self.db.commit()
        return self.find_by_external_id(external_id)
