"""
Time-driven event status sync.
"""

from ticketing.core.logging import get_logger
from ticketing.core.time_utils import Clock, utcnow
from ticketing.stores.interfaces import Storage

logger = get_logger(__name__)


async def sync_event_statuses(storage: Storage, clock: Clock = utcnow) -> int:
    """
    UPCOMING -> ACTIVE once start_date <= now <= end_date;
    UPCOMING/ACTIVE -> ENDED once end_date < now.
    Pure status bookkeeping: no seats or points move. Returns rows changed.
    """
    now = clock()
    async with storage.unit_of_work() as uow:
        activated, ended = await uow.events.sync_statuses(now)
        await uow.commit()

    logger.info("event_status_synced", activated=activated, ended=ended)
    return activated + ended
