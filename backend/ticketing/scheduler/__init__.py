from ticketing.scheduler.jobs import build_tasks
from ticketing.scheduler.runner import ScheduledTask, Scheduler, SweepLock

__all__ = ["build_tasks", "ScheduledTask", "Scheduler", "SweepLock"]
