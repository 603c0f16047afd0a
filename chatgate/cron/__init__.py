"""Fixed-interval background task scheduler."""

from chatgate.cron.scheduler import BaseTask, ScheduledTask, TaskScheduler

__all__ = ["BaseTask", "ScheduledTask", "TaskScheduler"]
