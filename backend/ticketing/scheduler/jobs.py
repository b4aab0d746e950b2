"""
The four recurring jobs and their default cadence.
"""

from ticketing.core.config import Settings
from ticketing.scheduler.runner import ScheduledTask
from ticketing.services import event_service, promotion_service
from ticketing.services.transaction_service import TransactionService


def build_tasks(service: TransactionService, settings: Settings) -> list[ScheduledTask]:
    """Jobs share the service's storage and clock."""
    storage, clock = service.storage, service.clock

    async def sync_event_status() -> int:
        return await event_service.sync_event_statuses(storage, clock)

    async def deactivate_expired_promotions() -> int:
        return await promotion_service.deactivate_expired_promotions(storage, clock)

    return [
        ScheduledTask(
            "sync_event_status",
            settings.EVENT_STATUS_SYNC_INTERVAL_SECONDS,
            sync_event_status,
        ),
        ScheduledTask(
            "sweep_expired_payments",
            settings.PAYMENT_SWEEP_INTERVAL_SECONDS,
            service.sweep_expired_payments,
        ),
        ScheduledTask(
            "sweep_expired_confirmations",
            settings.CONFIRMATION_SWEEP_INTERVAL_SECONDS,
            service.sweep_expired_confirmations,
        ),
        ScheduledTask(
            "deactivate_expired_promotions",
            settings.PROMOTION_SWEEP_INTERVAL_SECONDS,
            deactivate_expired_promotions,
        ),
    ]
