"""Cron schedules and the trigger registry."""

from .cron import CronSchedule
from .registry import TriggerRegistry, Registration

__all__ = ["CronSchedule", "TriggerRegistry", "Registration"]
