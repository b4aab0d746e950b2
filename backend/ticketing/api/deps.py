"""
FastAPI dependencies shared by the route modules.
"""

from functools import lru_cache

from ticketing.services.strategy_factory import get_image_store, get_storage
from ticketing.services.transaction_service import TransactionService


@lru_cache()
def get_transaction_service() -> TransactionService:
    return TransactionService(get_storage(), get_image_store())
