from ticketing.domain.models import (
    ACTIVE_STATUSES,
    RELEASED_STATUSES,
    TERMINAL_STATUSES,
    EventInfo,
    EventStatus,
    NewTransaction,
    Page,
    PromotionInfo,
    TransactionRecord,
    TransactionStatus,
    UserInfo,
)
from ticketing.domain.pricing import Amounts, compute_amounts, compute_discount

__all__ = [
    "ACTIVE_STATUSES", "RELEASED_STATUSES", "TERMINAL_STATUSES",
    "EventInfo", "EventStatus", "NewTransaction", "Page", "PromotionInfo",
    "TransactionRecord", "TransactionStatus", "UserInfo",
    "Amounts", "compute_amounts", "compute_discount",
]
