"""
Storage backends. Services receive a Storage instance; they never reach for a
global session.
"""

from .interfaces import (
    EventStore,
    PromotionStore,
    Storage,
    TransactionStore,
    UnitOfWork,
    UserStore,
)
from .memory_store import MemoryStorage

__all__ = [
    "EventStore", "PromotionStore", "Storage", "TransactionStore", "UnitOfWork", "UserStore",
    "MemoryStorage",
]
