"""
Ledger primitives over the two shared counters: an event's available seats and
a user's point balance (plus a promotion's use count).

These are the only functions that write those counters. Each reserve is one
conditional write against the store; losing the race raises SeatConflict /
PointsConflict / PromotionConflict, and the caller's unit of work rolls back
whatever it already wrote. Releases are unconditional increments used for
compensation and must only run after the owning transaction's status
compare-and-set succeeded, so each hold is released exactly once.
"""

from ticketing.core.errors import PointsConflict, PromotionConflict, SeatConflict
from ticketing.core.logging import get_logger
from ticketing.core.metrics import record_ledger_conflict
from ticketing.stores.interfaces import UnitOfWork

logger = get_logger(__name__)


async def reserve_seats(uow: UnitOfWork, event_id: int, n: int) -> None:
    if not await uow.events.conditional_decrement_seats(event_id, n):
        record_ledger_conflict("seats")
        logger.warning("seat_reservation_conflict", event_id=event_id, requested=n)
        raise SeatConflict(event_id, n)


async def release_seats(uow: UnitOfWork, event_id: int, n: int) -> None:
    await uow.events.increment_seats(event_id, n)


async def reserve_points(uow: UnitOfWork, user_id: int, n: int) -> None:
    """Escrow points. Callers clamp n to the balance first, so a conflict means a concurrent spend."""
    if n <= 0:
        return
    if not await uow.users.conditional_decrement_points(user_id, n):
        record_ledger_conflict("points")
        logger.warning("points_reservation_conflict", user_id=user_id, requested=n)
        raise PointsConflict(user_id, n)


async def release_points(uow: UnitOfWork, user_id: int, n: int) -> None:
    if n <= 0:
        return
    await uow.users.increment_points(user_id, n)


async def redeem_promotion(uow: UnitOfWork, promotion_id: int) -> None:
    if not await uow.promotions.conditional_increment_uses(promotion_id):
        record_ledger_conflict("promotion")
        logger.warning("promotion_redemption_conflict", promotion_id=promotion_id)
        raise PromotionConflict(promotion_id)


async def release_promotion(uow: UnitOfWork, promotion_id: int) -> None:
    await uow.promotions.decrement_uses(promotion_id)
