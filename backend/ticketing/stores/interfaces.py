"""Store interfaces (repository pattern) and the unit of work grouping them.

Stores must be swappable and return domain models. Every counter mutation is a
single conditional write; callers never read a counter and write it back.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Optional

from ticketing.domain import (
    EventInfo,
    NewTransaction,
    PromotionInfo,
    TransactionRecord,
    TransactionStatus,
    UserInfo,
)


class EventStore(ABC):
    """Event reads plus the seat ledger primitives."""

    @abstractmethod
    async def get(self, event_id: int) -> Optional[EventInfo]:
        ...

    @abstractmethod
    async def conditional_decrement_seats(self, event_id: int, n: int) -> bool:
        """Decrement available seats by n only if at least n remain. False when the precondition fails."""
        ...

    @abstractmethod
    async def increment_seats(self, event_id: int, n: int) -> None:
        ...

    @abstractmethod
    async def update_status(self, event_id: int, status: str) -> None:
        ...

    @abstractmethod
    async def sync_statuses(self, now: datetime) -> tuple[int, int]:
        """Move UPCOMING events inside their window to ACTIVE and past events to ENDED.

        Returns (activated, ended) row counts.
        """
        ...


class UserStore(ABC):
    """User point balance and its ledger primitives."""

    @abstractmethod
    async def get(self, user_id: int) -> Optional[UserInfo]:
        ...

    @abstractmethod
    async def conditional_decrement_points(self, user_id: int, n: int) -> bool:
        ...

    @abstractmethod
    async def increment_points(self, user_id: int, n: int) -> None:
        ...


class PromotionStore(ABC):

    @abstractmethod
    async def get(self, promotion_id: int) -> Optional[PromotionInfo]:
        ...

    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[PromotionInfo]:
        ...

    @abstractmethod
    async def conditional_increment_uses(self, promotion_id: int) -> bool:
        """Count one use if the promotion is active and under max_uses."""
        ...

    @abstractmethod
    async def decrement_uses(self, promotion_id: int) -> None:
        ...

    @abstractmethod
    async def deactivate(self, promotion_id: int) -> None:
        ...

    @abstractmethod
    async def deactivate_expired(self, now: datetime) -> int:
        """Deactivate active promotions whose valid_until < now. Returns the count."""
        ...


class TransactionStore(ABC):

    @abstractmethod
    async def get(self, transaction_id: int) -> Optional[TransactionRecord]:
        ...

    @abstractmethod
    async def find_active(self, user_id: int, event_id: int) -> Optional[TransactionRecord]:
        """Return the user's transaction for the event whose status is not CANCELLED/REJECTED/EXPIRED."""
        ...

    @abstractmethod
    async def insert(self, new: NewTransaction) -> TransactionRecord:
        """Insert a transaction. Raises DuplicateRegistration when an active one already exists."""
        ...

    @abstractmethod
    async def transition(
        self,
        transaction_id: int,
        from_statuses: Iterable[TransactionStatus],
        to_status: TransactionStatus,
        **changes,
    ) -> Optional[TransactionRecord]:
        """Compare-and-set the status.

        Applies ``to_status`` plus ``changes`` only if the current status is one of
        ``from_statuses``; returns the updated record, or None if nothing matched.
        """
        ...

    @abstractmethod
    async def list_expired_payments(self, now: datetime) -> list[int]:
        """IDs of WAITING_PAYMENT transactions with payment_deadline < now."""
        ...

    @abstractmethod
    async def list_expired_confirmations(self, now: datetime) -> list[int]:
        """IDs of WAITING_CONFIRMATION transactions with confirmation_deadline < now."""
        ...

    @abstractmethod
    async def list_by_user(
        self,
        user_id: int,
        status: Optional[TransactionStatus],
        offset: int,
        limit: Optional[int],
    ) -> tuple[list[TransactionRecord], int]:
        """Newest first. Returns (page, total matching); limit=None returns every match from offset."""
        ...

    @abstractmethod
    async def list_by_event(self, event_id: int) -> list[TransactionRecord]:
        ...

    @abstractmethod
    async def list_all(self, offset: int, limit: int) -> tuple[list[TransactionRecord], int]:
        ...

    @abstractmethod
    async def count_by_status(self) -> dict[TransactionStatus, int]:
        ...


class UnitOfWork(ABC):
    """All-or-nothing group of store operations.

    Usage::

        async with storage.unit_of_work() as uow:
            ...
            await uow.commit()

    Leaving the block without commit() rolls every write back.
    """

    events: EventStore
    users: UserStore
    promotions: PromotionStore
    transactions: TransactionStore

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.rollback()

    @abstractmethod
    async def commit(self) -> None:
        ...

    @abstractmethod
    async def rollback(self) -> None:
        ...


class Storage(ABC):
    """Storage backend: hands out units of work against one shared store."""

    @abstractmethod
    def unit_of_work(self) -> UnitOfWork:
        ...

    async def close(self) -> None:
        """Release backend resources on shutdown."""
