"""Fixed-interval task scheduler.

Polls a persisted task list every ``schedulePollingIntervalMs`` and runs
whatever is due. The cron string given to schedule_task() is stored as-is
and never evaluated: a task's next run is always "now + polling interval".

Task handlers come from a static table passed to the constructor.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable

from loguru import logger

from chatgate.config.store import BotConfig
from chatgate.utils.helpers import read_json, write_json_atomic

TASKS_SCHEMA_VERSION = 1


class BaseTask(ABC):
    """A schedulable job."""

    name: str = ""
    description: str = ""

    @abstractmethod
    async def execute(self, metadata: dict[str, Any]) -> None:
        ...


@dataclass
class ScheduledTask:
    """One entry of the persisted schedule."""

    task_id: str
    name: str
    cron: str                       # Stored verbatim, not evaluated
    metadata: dict[str, Any] = field(default_factory=dict)
    last_run: float | None = None
    next_run: float | None = None
    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "name": self.name,
            "cron": self.cron,
            "metadata": self.metadata,
            "last_run": self.last_run,
            "next_run": self.next_run,
            "enabled": self.enabled,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ScheduledTask:
        return cls(
            task_id=d["task_id"],
            name=d["name"],
            cron=d.get("cron", ""),
            metadata=d.get("metadata", {}),
            last_run=d.get("last_run"),
            next_run=d.get("next_run"),
            enabled=d.get("enabled", True),
        )


class TaskScheduler:
    """Runs due tasks on a fixed polling interval."""

    def __init__(
        self,
        config: BotConfig,
        handlers: Iterable[BaseTask] = (),
        store_path: Path | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._handlers: dict[str, BaseTask] = {h.name.lower(): h for h in handlers}
        self._store_path = store_path
        self._clock = clock
        self._tasks: list[ScheduledTask] = self._load()
        self._poll_task: asyncio.Task | None = None
        logger.info(f"Scheduler: {len(self._handlers)} handlers, {len(self._tasks)} scheduled tasks")

    @property
    def interval_seconds(self) -> float:
        return int(self._config.get("schedulePollingIntervalMs")) / 1000.0

    @property
    def tasks(self) -> list[ScheduledTask]:
        return list(self._tasks)

    @property
    def is_running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    # ── Schedule management ───────────────────────────────────────────

    def schedule_task(self, name: str, cron: str, metadata: dict[str, Any] | None = None) -> ScheduledTask | None:
        """Add a task. None if no handler is registered under ``name``."""
        if name.lower() not in self._handlers:
            logger.error(f"Scheduler: no handler for task '{name}'")
            return None
        task = ScheduledTask(
            task_id=f"task-{uuid.uuid4().hex[:12]}",
            name=name,
            cron=cron,
            metadata=dict(metadata or {}),
            next_run=self._next_run(),
        )
        self._tasks.append(task)
        self._save()
        logger.info(f"Scheduler: '{name}' scheduled ({cron}) as {task.task_id}")
        return task

    def cancel_task(self, task_id: str) -> bool:
        before = len(self._tasks)
        self._tasks = [t for t in self._tasks if t.task_id != task_id]
        if len(self._tasks) == before:
            logger.warning(f"Scheduler: no task with id '{task_id}'")
            return False
        self._save()
        logger.info(f"Scheduler: cancelled {task_id}")
        return True

    # ── Running ───────────────────────────────────────────────────────

    async def run_due_tasks(self) -> int:
        """Run every enabled task whose next_run has passed. Returns how many ran."""
        now = self._clock()
        ran = 0
        for task in list(self._tasks):
            if not task.enabled or task.next_run is None or task.next_run > now:
                continue
            handler = self._handlers.get(task.name.lower())
            if handler is None:
                logger.warning(f"Scheduler: handler for '{task.name}' is gone, skipping")
                continue
            logger.info(f"Scheduler: running {task.name} ({task.task_id})")
            try:
                await handler.execute(task.metadata)
            except Exception as e:
                logger.exception(f"Scheduler: task '{task.name}' failed: {e}")
                continue
            task.last_run = self._clock()
            task.next_run = self._next_run()
            ran += 1
        if ran:
            self._save()
        return ran

    def start(self) -> None:
        if self.is_running:
            logger.warning("Scheduler already running")
            return
        self._poll_task = asyncio.create_task(self._poll())
        logger.info("Scheduler started")

    async def stop(self) -> None:
        """Cancel the poll loop and wait for it to finish."""
        task, self._poll_task = self._poll_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Scheduler stopped")

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_due_tasks()
            except Exception as e:
                logger.exception(f"Scheduler: poll failed: {e}")

    def _next_run(self) -> float:
        return self._clock() + self.interval_seconds

    # ── Persistence ───────────────────────────────────────────────────

    def _save(self) -> None:
        if self._store_path is None:
            return
        try:
            write_json_atomic(self._store_path, {
                "version": TASKS_SCHEMA_VERSION,
                "saved_at": datetime.now().isoformat(),
                "tasks": [t.to_dict() for t in self._tasks],
            })
        except Exception as e:
            logger.error(f"Failed to save scheduled tasks: {e}")

    def _load(self) -> list[ScheduledTask]:
        if self._store_path is None:
            return []
        try:
            raw = read_json(self._store_path)
        except Exception as e:
            logger.error(f"Failed to load scheduled tasks: {e}")
            return []
        if raw is None:
            return []
        if raw.get("version") != TASKS_SCHEMA_VERSION:
            logger.error(f"Scheduler: unsupported schema version {raw.get('version')!r}, starting empty")
            return []
        tasks = []
        for data in raw.get("tasks", []):
            try:
                tasks.append(ScheduledTask.from_dict(data))
            except KeyError as e:
                logger.warning(f"Scheduler: skipping malformed task entry (missing {e})")
        return tasks
