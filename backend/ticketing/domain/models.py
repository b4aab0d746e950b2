"""
Domain models returned by the stores.

Both storage backends hand back these plain dataclasses so the services never
depend on ORM instances or session state.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class TransactionStatus(str, Enum):
    WAITING_PAYMENT = "WAITING_PAYMENT"
    WAITING_CONFIRMATION = "WAITING_CONFIRMATION"
    DONE = "DONE"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


# Statuses that release their seats/points; a user may register again afterwards.
RELEASED_STATUSES = frozenset(
    {TransactionStatus.CANCELLED, TransactionStatus.REJECTED, TransactionStatus.EXPIRED}
)
ACTIVE_STATUSES = frozenset(set(TransactionStatus) - RELEASED_STATUSES)
TERMINAL_STATUSES = RELEASED_STATUSES | {TransactionStatus.DONE}


class EventStatus(str, Enum):
    UPCOMING = "UPCOMING"
    ACTIVE = "ACTIVE"
    ENDED = "ENDED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class EventInfo:
    id: int
    organizer_id: int
    title: str
    total_seats: int
    available_seats: int
    price: int
    start_date: datetime
    end_date: datetime
    status: EventStatus = EventStatus.UPCOMING


@dataclass(frozen=True)
class UserInfo:
    id: int
    points: int


@dataclass(frozen=True)
class PromotionInfo:
    id: int
    code: str
    discount_percent: int
    valid_until: datetime
    is_active: bool = True
    max_uses: Optional[int] = None
    current_uses: int = 0
    min_purchase: Optional[int] = None
    event_id: Optional[int] = None


@dataclass(frozen=True)
class NewTransaction:
    """Row to insert once seats and points have been reserved."""

    user_id: int
    event_id: int
    quantity: int
    total_amount: int
    points_used: int
    discount_amount: int
    final_amount: int
    payment_deadline: datetime
    promotion_id: Optional[int] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    status: TransactionStatus = TransactionStatus.WAITING_PAYMENT


@dataclass(frozen=True)
class TransactionRecord:
    id: int
    user_id: int
    event_id: int
    quantity: int
    total_amount: int
    points_used: int
    discount_amount: int
    final_amount: int
    status: TransactionStatus
    payment_deadline: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    promotion_id: Optional[int] = None
    payment_method: Optional[str] = None
    payment_proof: Optional[str] = None
    confirmation_deadline: Optional[datetime] = None
    notes: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


@dataclass(frozen=True)
class Page:
    items: list
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1
