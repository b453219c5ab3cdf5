"""
Long-running service pieces: cron parsing and the task scheduler.
"""

from ferry.service.cron_parser import CronParseError, next_fire_time_cron, validate_cron
from ferry.service.scheduler import TaskScheduler

__all__ = [
    "CronParseError",
    "TaskScheduler",
    "next_fire_time_cron",
    "validate_cron",
]
