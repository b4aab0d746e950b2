"""
In-memory storage backend.

Single-process and non-durable. Used by the test-suite and for running the API
without PostgreSQL (STORAGE_BACKEND=memory).

Atomicity model:
  Every primitive yields to the event loop once (standing in for the network
  round trip), then performs its check and its write without suspending again.
  Under asyncio that makes each conditional write a true check-and-set.

  A unit of work records an inverse action for every write it performs
  (an undo journal). rollback() replays the journal in reverse; commit()
  discards it. Inverse actions are deltas (increment for a decrement), never
  snapshots, so concurrent units touching the same counter stay correct.
"""

import asyncio
import itertools
from dataclasses import replace
from datetime import datetime
from typing import Callable, Iterable, Optional

from ticketing.core.errors import DuplicateRegistration
from ticketing.core.time_utils import Clock, utcnow
from ticketing.domain import (
    ACTIVE_STATUSES,
    EventInfo,
    EventStatus,
    NewTransaction,
    PromotionInfo,
    TransactionRecord,
    TransactionStatus,
    UserInfo,
)
from ticketing.stores.interfaces import (
    EventStore,
    PromotionStore,
    Storage,
    TransactionStore,
    UnitOfWork,
    UserStore,
)

Journal = list[Callable[[], None]]


async def _round_trip() -> None:
    await asyncio.sleep(0)


class MemoryState:
    def __init__(self, clock: Clock = utcnow):
        self.clock = clock
        self.events: dict[int, EventInfo] = {}
        self.users: dict[int, UserInfo] = {}
        self.promotions: dict[int, PromotionInfo] = {}
        self.transactions: dict[int, TransactionRecord] = {}
        self.transaction_ids = itertools.count(1)


class MemoryEventStore(EventStore):
    def __init__(self, state: MemoryState, journal: Journal):
        self._state = state
        self._journal = journal

    async def get(self, event_id: int) -> Optional[EventInfo]:
        await _round_trip()
        return self._state.events.get(event_id)

    def _shift_seats(self, event_id: int, delta: int) -> None:
        event = self._state.events[event_id]
        available = event.available_seats + delta
        if not 0 <= available <= event.total_seats:
            # Mirrors the CHECK constraints on the events table
            raise ValueError(
                f"available_seats for event {event_id} would become {available} "
                f"(total {event.total_seats})"
            )
        self._state.events[event_id] = replace(event, available_seats=available)

    async def conditional_decrement_seats(self, event_id: int, n: int) -> bool:
        await _round_trip()
        event = self._state.events.get(event_id)
        if event is None or event.available_seats < n:
            return False
        self._shift_seats(event_id, -n)
        self._journal.append(lambda: self._shift_seats(event_id, n))
        return True

    async def increment_seats(self, event_id: int, n: int) -> None:
        await _round_trip()
        self._shift_seats(event_id, n)
        self._journal.append(lambda: self._shift_seats(event_id, -n))

    def _set_status(self, event_id: int, status: EventStatus) -> None:
        self._state.events[event_id] = replace(self._state.events[event_id], status=status)

    async def update_status(self, event_id: int, status: str) -> None:
        await _round_trip()
        previous = self._state.events[event_id].status
        self._set_status(event_id, EventStatus(status))
        self._journal.append(lambda: self._set_status(event_id, previous))

    async def sync_statuses(self, now: datetime) -> tuple[int, int]:
        await _round_trip()
        activated = ended = 0
        for event in list(self._state.events.values()):
            previous = event.status
            if event.status == EventStatus.UPCOMING and event.start_date <= now <= event.end_date:
                target = EventStatus.ACTIVE
                activated += 1
            elif event.status in (EventStatus.UPCOMING, EventStatus.ACTIVE) and event.end_date < now:
                target = EventStatus.ENDED
                ended += 1
            else:
                continue
            self._set_status(event.id, target)
            self._journal.append(lambda eid=event.id, prev=previous: self._set_status(eid, prev))
        return activated, ended


class MemoryUserStore(UserStore):
    def __init__(self, state: MemoryState, journal: Journal):
        self._state = state
        self._journal = journal

    async def get(self, user_id: int) -> Optional[UserInfo]:
        await _round_trip()
        return self._state.users.get(user_id)

    def _shift_points(self, user_id: int, delta: int) -> None:
        user = self._state.users[user_id]
        if user.points + delta < 0:
            raise ValueError(f"points for user {user_id} would become negative")
        self._state.users[user_id] = replace(user, points=user.points + delta)

    async def conditional_decrement_points(self, user_id: int, n: int) -> bool:
        await _round_trip()
        user = self._state.users.get(user_id)
        if user is None or user.points < n:
            return False
        self._shift_points(user_id, -n)
        self._journal.append(lambda: self._shift_points(user_id, n))
        return True

    async def increment_points(self, user_id: int, n: int) -> None:
        await _round_trip()
        self._shift_points(user_id, n)
        self._journal.append(lambda: self._shift_points(user_id, -n))


class MemoryPromotionStore(PromotionStore):
    def __init__(self, state: MemoryState, journal: Journal):
        self._state = state
        self._journal = journal

    async def get(self, promotion_id: int) -> Optional[PromotionInfo]:
        await _round_trip()
        return self._state.promotions.get(promotion_id)

    async def get_by_code(self, code: str) -> Optional[PromotionInfo]:
        await _round_trip()
        for promotion in self._state.promotions.values():
            if promotion.code == code:
                return promotion
        return None

    def _shift_uses(self, promotion_id: int, delta: int) -> None:
        promotion = self._state.promotions[promotion_id]
        self._state.promotions[promotion_id] = replace(
            promotion, current_uses=max(0, promotion.current_uses + delta)
        )

    async def conditional_increment_uses(self, promotion_id: int) -> bool:
        await _round_trip()
        promotion = self._state.promotions.get(promotion_id)
        if promotion is None or not promotion.is_active:
            return False
        if promotion.max_uses is not None and promotion.current_uses >= promotion.max_uses:
            return False
        self._shift_uses(promotion_id, 1)
        self._journal.append(lambda: self._shift_uses(promotion_id, -1))
        return True

    async def decrement_uses(self, promotion_id: int) -> None:
        await _round_trip()
        if self._state.promotions[promotion_id].current_uses == 0:
            return
        self._shift_uses(promotion_id, -1)
        self._journal.append(lambda: self._shift_uses(promotion_id, 1))

    def _set_active(self, promotion_id: int, active: bool) -> None:
        self._state.promotions[promotion_id] = replace(
            self._state.promotions[promotion_id], is_active=active
        )

    async def deactivate(self, promotion_id: int) -> None:
        await _round_trip()
        previous = self._state.promotions[promotion_id].is_active
        self._set_active(promotion_id, False)
        self._journal.append(lambda: self._set_active(promotion_id, previous))

    async def deactivate_expired(self, now: datetime) -> int:
        await _round_trip()
        count = 0
        for promotion in list(self._state.promotions.values()):
            if promotion.is_active and promotion.valid_until < now:
                self._set_active(promotion.id, False)
                self._journal.append(lambda pid=promotion.id: self._set_active(pid, True))
                count += 1
        return count


class MemoryTransactionStore(TransactionStore):
    def __init__(self, state: MemoryState, journal: Journal):
        self._state = state
        self._journal = journal

    async def get(self, transaction_id: int) -> Optional[TransactionRecord]:
        await _round_trip()
        return self._state.transactions.get(transaction_id)

    def _active_for(self, user_id: int, event_id: int) -> Optional[TransactionRecord]:
        for record in self._state.transactions.values():
            if (
                record.user_id == user_id
                and record.event_id == event_id
                and record.status in ACTIVE_STATUSES
            ):
                return record
        return None

    async def find_active(self, user_id: int, event_id: int) -> Optional[TransactionRecord]:
        await _round_trip()
        return self._active_for(user_id, event_id)

    async def insert(self, new: NewTransaction) -> TransactionRecord:
        await _round_trip()
        # Same rule as the partial unique index uq_transactions_active_user_event
        if new.status in ACTIVE_STATUSES and self._active_for(new.user_id, new.event_id):
            raise DuplicateRegistration(new.user_id, new.event_id)

        now = self._state.clock()
        record = TransactionRecord(
            id=next(self._state.transaction_ids),
            user_id=new.user_id,
            event_id=new.event_id,
            quantity=new.quantity,
            total_amount=new.total_amount,
            points_used=new.points_used,
            discount_amount=new.discount_amount,
            final_amount=new.final_amount,
            status=new.status,
            payment_deadline=new.payment_deadline,
            created_at=now,
            updated_at=now,
            promotion_id=new.promotion_id,
            payment_method=new.payment_method,
            notes=new.notes,
        )
        self._state.transactions[record.id] = record
        self._journal.append(lambda: self._state.transactions.pop(record.id, None))
        return record

    async def transition(
        self,
        transaction_id: int,
        from_statuses: Iterable[TransactionStatus],
        to_status: TransactionStatus,
        **changes,
    ) -> Optional[TransactionRecord]:
        await _round_trip()
        current = self._state.transactions.get(transaction_id)
        if current is None or current.status not in set(from_statuses):
            return None
        updated = replace(current, status=to_status, updated_at=self._state.clock(), **changes)
        self._state.transactions[transaction_id] = updated

        def undo() -> None:
            self._state.transactions[transaction_id] = current

        self._journal.append(undo)
        return updated

    async def list_expired_payments(self, now: datetime) -> list[int]:
        await _round_trip()
        return sorted(
            record.id
            for record in self._state.transactions.values()
            if record.status == TransactionStatus.WAITING_PAYMENT
            and record.payment_deadline is not None
            and record.payment_deadline < now
        )

    async def list_expired_confirmations(self, now: datetime) -> list[int]:
        await _round_trip()
        return sorted(
            record.id
            for record in self._state.transactions.values()
            if record.status == TransactionStatus.WAITING_CONFIRMATION
            and record.confirmation_deadline is not None
            and record.confirmation_deadline < now
        )

    def _newest_first(self, records: Iterable[TransactionRecord]) -> list[TransactionRecord]:
        return sorted(records, key=lambda r: (r.created_at, r.id), reverse=True)

    async def list_by_user(
        self,
        user_id: int,
        status: Optional[TransactionStatus],
        offset: int,
        limit: Optional[int],
    ) -> tuple[list[TransactionRecord], int]:
        await _round_trip()
        matching = self._newest_first(
            r for r in self._state.transactions.values()
            if r.user_id == user_id and (status is None or r.status == status)
        )
        end = None if limit is None else offset + limit
        return matching[offset:end], len(matching)

    async def list_by_event(self, event_id: int) -> list[TransactionRecord]:
        await _round_trip()
        return self._newest_first(r for r in self._state.transactions.values() if r.event_id == event_id)

    async def list_all(self, offset: int, limit: int) -> tuple[list[TransactionRecord], int]:
        await _round_trip()
        records = self._newest_first(self._state.transactions.values())
        return records[offset:offset + limit], len(records)

    async def count_by_status(self) -> dict[TransactionStatus, int]:
        await _round_trip()
        counts = {status: 0 for status in TransactionStatus}
        for record in self._state.transactions.values():
            counts[record.status] += 1
        return counts


class MemoryUnitOfWork(UnitOfWork):
    def __init__(self, state: MemoryState):
        self._journal: Journal = []
        self.events = MemoryEventStore(state, self._journal)
        self.users = MemoryUserStore(state, self._journal)
        self.promotions = MemoryPromotionStore(state, self._journal)
        self.transactions = MemoryTransactionStore(state, self._journal)

    async def commit(self) -> None:
        self._journal.clear()

    async def rollback(self) -> None:
        while self._journal:
            self._journal.pop()()


class MemoryStorage(Storage):
    """Storage backend over plain dicts. Also offers direct seeding/inspection helpers."""

    def __init__(self, clock: Clock = utcnow):
        self.state = MemoryState(clock)
        self._ids = itertools.count(1)

    def unit_of_work(self) -> MemoryUnitOfWork:
        return MemoryUnitOfWork(self.state)

    def add_user(self, points: int = 0, user_id: Optional[int] = None) -> UserInfo:
        user = UserInfo(id=user_id or next(self._ids), points=points)
        self.state.users[user.id] = user
        return user

    def add_event(
        self,
        *,
        organizer_id: int,
        total_seats: int,
        price: int,
        start_date: datetime,
        end_date: datetime,
        available_seats: Optional[int] = None,
        title: str = "Event",
        status: EventStatus = EventStatus.UPCOMING,
    ) -> EventInfo:
        event = EventInfo(
            id=next(self._ids),
            organizer_id=organizer_id,
            title=title,
            total_seats=total_seats,
            available_seats=total_seats if available_seats is None else available_seats,
            price=price,
            start_date=start_date,
            end_date=end_date,
            status=status,
        )
        self.state.events[event.id] = event
        return event

    def add_promotion(
        self,
        *,
        code: str,
        discount_percent: int,
        valid_until: datetime,
        max_uses: Optional[int] = None,
        current_uses: int = 0,
        min_purchase: Optional[int] = None,
        event_id: Optional[int] = None,
        is_active: bool = True,
    ) -> PromotionInfo:
        promotion = PromotionInfo(
            id=next(self._ids),
            code=code,
            discount_percent=discount_percent,
            valid_until=valid_until,
            is_active=is_active,
            max_uses=max_uses,
            current_uses=current_uses,
            min_purchase=min_purchase,
            event_id=event_id,
        )
        self.state.promotions[promotion.id] = promotion
        return promotion

    def event(self, event_id: int) -> EventInfo:
        return self.state.events[event_id]

    def user(self, user_id: int) -> UserInfo:
        return self.state.users[user_id]

    def promotion(self, promotion_id: int) -> PromotionInfo:
        return self.state.promotions[promotion_id]

    def transaction(self, transaction_id: int) -> TransactionRecord:
        return self.state.transactions[transaction_id]
