"""
Promotion checks used by the reservation engine, and the expiry sweep.
"""

from datetime import datetime
from typing import Optional

from ticketing.core.errors import InvalidPromotionError
from ticketing.core.logging import get_logger
from ticketing.core.time_utils import Clock, utcnow
from ticketing.domain import EventInfo, PromotionInfo, compute_discount
from ticketing.stores.interfaces import Storage, UnitOfWork

logger = get_logger(__name__)


async def resolve_promotion(
    uow: UnitOfWork,
    code: Optional[str],
    event: EventInfo,
    total_amount: int,
    now: datetime,
) -> tuple[Optional[PromotionInfo], int]:
    """
    Validate a promotion code for this purchase.
    Returns (promotion, discount_amount); (None, 0) when no code was given.
    Raises InvalidPromotionError with a user-facing reason otherwise.
    """
    if not code:
        return None, 0

    promotion = await uow.promotions.get_by_code(code)
    if promotion is None:
        raise InvalidPromotionError("Promotion code not found")
    if not promotion.is_active:
        raise InvalidPromotionError("Promotion code is not active")
    if now > promotion.valid_until:
        raise InvalidPromotionError("Promotion code has expired")
    if promotion.max_uses is not None and promotion.current_uses >= promotion.max_uses:
        raise InvalidPromotionError("Promotion code has reached maximum usage limit")
    if promotion.event_id is not None and promotion.event_id != event.id:
        raise InvalidPromotionError("Promotion code is not valid for this event")
    if promotion.min_purchase and total_amount < promotion.min_purchase:
        raise InvalidPromotionError(f"Minimum purchase amount is {promotion.min_purchase}")

    return promotion, compute_discount(total_amount, promotion.discount_percent)


async def deactivate_expired_promotions(storage: Storage, clock: Clock = utcnow) -> int:
    """Deactivate promotions whose valid_until has passed. Idempotent."""
    now = clock()
    async with storage.unit_of_work() as uow:
        count = await uow.promotions.deactivate_expired(now)
        await uow.commit()

    logger.info("promotions_deactivated", count=count)
    return count
