"""
PostgreSQL-backed stores using async SQLAlchemy.

CONCURRENCY STRATEGY: Conditional UPDATE (compare-and-set in one statement)
===========================================================================

Problem:
  Two users try to book the last seat simultaneously.
  Both read available_seats=1, both decrement to 0, both succeed.
  Result: Oversell.

Solution:
  Every ledger write is a single statement whose WHERE clause carries the precondition:

    UPDATE events SET available_seats = available_seats - :n
    WHERE id = :event_id AND available_seats >= :n

  rowcount == 0 means the precondition failed at the moment of the write; the caller
  gets False and decides what to do. Points and promotion uses follow the same shape.

  Status transitions use the same idea against the status column
  (WHERE id = :id AND status IN (...) ... RETURNING), so two callers racing to
  expire/reject/cancel the same transaction cannot both win, and seats/points are
  released exactly once.

  The CHECK constraints on events/users and the partial unique index on
  transactions are the final safety net.
"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ticketing.core.errors import DuplicateRegistration
from ticketing.core.logging import get_logger
from ticketing.core.time_utils import ensure_aware
from ticketing.db.session import dispose_engine
from ticketing.domain import (
    EventInfo,
    EventStatus,
    NewTransaction,
    PromotionInfo,
    TransactionRecord,
    TransactionStatus,
    UserInfo,
)
from ticketing.models import Event, Promotion, Transaction, User
from ticketing.stores.interfaces import (
    EventStore,
    PromotionStore,
    Storage,
    TransactionStore,
    UnitOfWork,
    UserStore,
)

logger = get_logger(__name__)

ACTIVE_UNIQUE_INDEX = "uq_transactions_active_user_event"

# Bulk UPDATEs below never need to refresh objects already in the session
NO_SYNC = {"synchronize_session": False}


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_aware(value) if value is not None else None


def _event_info(row: Event) -> EventInfo:
    return EventInfo(
        id=row.id,
        organizer_id=row.organizer_id,
        title=row.title,
        total_seats=row.total_seats,
        available_seats=row.available_seats,
        price=row.price,
        start_date=ensure_aware(row.start_date),
        end_date=ensure_aware(row.end_date),
        status=EventStatus(row.status),
    )


def _promotion_info(row: Promotion) -> PromotionInfo:
    return PromotionInfo(
        id=row.id,
        code=row.code,
        discount_percent=row.discount_percent,
        valid_until=ensure_aware(row.valid_until),
        is_active=row.is_active,
        max_uses=row.max_uses,
        current_uses=row.current_uses,
        min_purchase=row.min_purchase,
        event_id=row.event_id,
    )


def _transaction_record(values) -> TransactionRecord:
    """Build a record from an ORM row or a RETURNING mapping."""
    get = values.get if hasattr(values, "get") else lambda key: getattr(values, key)
    return TransactionRecord(
        id=get("id"),
        user_id=get("user_id"),
        event_id=get("event_id"),
        quantity=get("quantity"),
        total_amount=get("total_amount"),
        points_used=get("points_used"),
        discount_amount=get("discount_amount"),
        final_amount=get("final_amount"),
        status=TransactionStatus(get("status")),
        payment_deadline=_aware(get("payment_deadline")),
        created_at=ensure_aware(get("created_at")),
        updated_at=ensure_aware(get("updated_at")),
        promotion_id=get("promotion_id"),
        payment_method=get("payment_method"),
        payment_proof=get("payment_proof"),
        confirmation_deadline=_aware(get("confirmation_deadline")),
        notes=get("notes"),
    )


class SqlEventStore(EventStore):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, event_id: int) -> Optional[EventInfo]:
        result = await self.session.execute(
            select(Event).where(Event.id == event_id).execution_options(populate_existing=True)
        )
        event = result.scalar_one_or_none()
        return _event_info(event) if event else None

    async def conditional_decrement_seats(self, event_id: int, n: int) -> bool:
        result = await self.session.execute(
            update(Event)
            .where(Event.id == event_id, Event.available_seats >= n)
            .values(available_seats=Event.available_seats - n)
            .execution_options(**NO_SYNC)
        )
        return result.rowcount == 1

    async def increment_seats(self, event_id: int, n: int) -> None:
        await self.session.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(available_seats=Event.available_seats + n)
            .execution_options(**NO_SYNC)
        )

    async def update_status(self, event_id: int, status: str) -> None:
        await self.session.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(status=EventStatus(status).value)
            .execution_options(**NO_SYNC)
        )

    async def sync_statuses(self, now: datetime) -> tuple[int, int]:
        activated = await self.session.execute(
            update(Event)
            .where(
                Event.status == EventStatus.UPCOMING.value,
                Event.start_date <= now,
                Event.end_date >= now,
            )
            .values(status=EventStatus.ACTIVE.value)
            .execution_options(**NO_SYNC)
        )
        ended = await self.session.execute(
            update(Event)
            .where(
                Event.status.in_([EventStatus.UPCOMING.value, EventStatus.ACTIVE.value]),
                Event.end_date < now,
            )
            .values(status=EventStatus.ENDED.value)
            .execution_options(**NO_SYNC)
        )
        return activated.rowcount, ended.rowcount


class SqlUserStore(UserStore):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: int) -> Optional[UserInfo]:
        result = await self.session.execute(
            select(User.id, User.points).where(User.id == user_id)
        )
        row = result.one_or_none()
        return UserInfo(id=row.id, points=row.points) if row else None

    async def conditional_decrement_points(self, user_id: int, n: int) -> bool:
        result = await self.session.execute(
            update(User)
            .where(User.id == user_id, User.points >= n)
            .values(points=User.points - n)
            .execution_options(**NO_SYNC)
        )
        return result.rowcount == 1

    async def increment_points(self, user_id: int, n: int) -> None:
        await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(points=User.points + n)
            .execution_options(**NO_SYNC)
        )


class SqlPromotionStore(PromotionStore):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, promotion_id: int) -> Optional[PromotionInfo]:
        result = await self.session.execute(select(Promotion).where(Promotion.id == promotion_id))
        promotion = result.scalar_one_or_none()
        return _promotion_info(promotion) if promotion else None

    async def get_by_code(self, code: str) -> Optional[PromotionInfo]:
        result = await self.session.execute(select(Promotion).where(Promotion.code == code))
        promotion = result.scalar_one_or_none()
        return _promotion_info(promotion) if promotion else None

    async def conditional_increment_uses(self, promotion_id: int) -> bool:
        result = await self.session.execute(
            update(Promotion)
            .where(
                Promotion.id == promotion_id,
                Promotion.is_active.is_(True),
                or_(Promotion.max_uses.is_(None), Promotion.current_uses < Promotion.max_uses),
            )
            .values(current_uses=Promotion.current_uses + 1)
            .execution_options(**NO_SYNC)
        )
        return result.rowcount == 1

    async def decrement_uses(self, promotion_id: int) -> None:
        await self.session.execute(
            update(Promotion)
            .where(Promotion.id == promotion_id, Promotion.current_uses > 0)
            .values(current_uses=Promotion.current_uses - 1)
            .execution_options(**NO_SYNC)
        )

    async def deactivate(self, promotion_id: int) -> None:
        await self.session.execute(
            update(Promotion)
            .where(Promotion.id == promotion_id)
            .values(is_active=False)
            .execution_options(**NO_SYNC)
        )

    async def deactivate_expired(self, now: datetime) -> int:
        result = await self.session.execute(
            update(Promotion)
            .where(Promotion.is_active.is_(True), Promotion.valid_until < now)
            .values(is_active=False)
            .execution_options(**NO_SYNC)
        )
        return result.rowcount


class SqlTransactionStore(TransactionStore):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, transaction_id: int) -> Optional[TransactionRecord]:
        result = await self.session.execute(
            select(Transaction)
            .where(Transaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _transaction_record(row) if row else None

    async def find_active(self, user_id: int, event_id: int) -> Optional[TransactionRecord]:
        result = await self.session.execute(
            select(Transaction)
            .where(
                Transaction.user_id == user_id,
                Transaction.event_id == event_id,
                Transaction.status.in_(
                    [
                        TransactionStatus.WAITING_PAYMENT.value,
                        TransactionStatus.WAITING_CONFIRMATION.value,
                        TransactionStatus.DONE.value,
                    ]
                ),
            )
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return _transaction_record(row) if row else None

    async def insert(self, new: NewTransaction) -> TransactionRecord:
        transaction = Transaction(
            user_id=new.user_id,
            event_id=new.event_id,
            promotion_id=new.promotion_id,
            quantity=new.quantity,
            total_amount=new.total_amount,
            points_used=new.points_used,
            discount_amount=new.discount_amount,
            final_amount=new.final_amount,
            payment_method=new.payment_method,
            notes=new.notes,
            status=new.status.value,
            payment_deadline=new.payment_deadline,
        )
        self.session.add(transaction)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            if ACTIVE_UNIQUE_INDEX in str(exc.orig):
                raise DuplicateRegistration(new.user_id, new.event_id) from exc
            raise
        await self.session.refresh(transaction)
        return _transaction_record(transaction)

    async def transition(
        self,
        transaction_id: int,
        from_statuses: Iterable[TransactionStatus],
        to_status: TransactionStatus,
        **changes,
    ) -> Optional[TransactionRecord]:
        result = await self.session.execute(
            update(Transaction)
            .where(
                Transaction.id == transaction_id,
                Transaction.status.in_([s.value for s in from_statuses]),
            )
            .values(status=to_status.value, updated_at=func.now(), **changes)
            .returning(*Transaction.__table__.columns)
            .execution_options(**NO_SYNC)
        )
        row = result.mappings().one_or_none()
        return _transaction_record(row) if row else None

    async def list_expired_payments(self, now: datetime) -> list[int]:
        result = await self.session.execute(
            select(Transaction.id)
            .where(
                Transaction.status == TransactionStatus.WAITING_PAYMENT.value,
                Transaction.payment_deadline < now,
            )
            .order_by(Transaction.id)
        )
        return list(result.scalars().all())

    async def list_expired_confirmations(self, now: datetime) -> list[int]:
        result = await self.session.execute(
            select(Transaction.id)
            .where(
                Transaction.status == TransactionStatus.WAITING_CONFIRMATION.value,
                Transaction.confirmation_deadline < now,
            )
            .order_by(Transaction.id)
        )
        return list(result.scalars().all())

    async def _page(self, query, offset: int, limit: Optional[int]) -> tuple[list[TransactionRecord], int]:
        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.session.execute(count_query)).scalar()

        result = await self.session.execute(
            query
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return [_transaction_record(row) for row in result.scalars().all()], total

    async def list_by_user(
        self,
        user_id: int,
        status: Optional[TransactionStatus],
        offset: int,
        limit: Optional[int],
    ) -> tuple[list[TransactionRecord], int]:
        query = select(Transaction).where(Transaction.user_id == user_id)
        if status is not None:
            query = query.where(Transaction.status == status.value)
        return await self._page(query, offset, limit)

    async def list_by_event(self, event_id: int) -> list[TransactionRecord]:
        result = await self.session.execute(
            select(Transaction)
            .where(Transaction.event_id == event_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        )
        return [_transaction_record(row) for row in result.scalars().all()]

    async def list_all(self, offset: int, limit: int) -> tuple[list[TransactionRecord], int]:
        return await self._page(select(Transaction), offset, limit)

    async def count_by_status(self) -> dict[TransactionStatus, int]:
        result = await self.session.execute(
            select(Transaction.status, func.count()).group_by(Transaction.status)
        )
        counts = {status: 0 for status in TransactionStatus}
        for status, count in result.all():
            counts[TransactionStatus(status)] = count
        return counts


class SqlUnitOfWork(UnitOfWork):
    """One AsyncSession (one database transaction) per unit of work."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self.session: Optional[AsyncSession] = None

    async def __aenter__(self) -> "SqlUnitOfWork":
        self.session = self._session_factory()
        self.events = SqlEventStore(self.session)
        self.users = SqlUserStore(self.session)
        self.promotions = SqlPromotionStore(self.session)
        self.transactions = SqlTransactionStore(self.session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            await self.session.close()

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()


class SqlStorage(Storage):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    def unit_of_work(self) -> SqlUnitOfWork:
        return SqlUnitOfWork(self._session_factory)

    async def close(self) -> None:
        await dispose_engine()
        logger.info("sql_storage_closed")
