"""Per-user background polling tasks.

Each registered user gets one asyncio task that sleeps for the configured
interval, reconciles, and messages the user when the rolling snapshot
advances. Consecutive failures (fetch or delivery alike) draw down a retry
budget; when it is exhausted the task ends and unregisters itself.

A task sleeps for the interval it was spawned with, so interval changes need
``restart``. Everything else is reloaded from the store on every tick.
"""

import asyncio
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, Optional

from logger import logger
from registry import TaskRegistry
from utils.log_sanitizer import sanitize_log
from . import config
from .engine import query_once
from .errors import NotRegisteredError
from .models import UserConfig
from .notifier import Notifier
from .source import UsageSource
from .store import SnapshotStore


class TaskStatus(Enum):
    """Whether a user's task is registered."""
    RUNNING = "running"
    NOT_RUNNING = "not_running"


class TaskHealth(Enum):
    """Retry budget states."""
    HEALTHY = "healthy"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class RetryBudget:
    """Bounded retry counter for a task loop.

    HEALTHY while ``remaining`` > 0; any success refills it to ``ceiling``,
    each failure spends one unit, and TERMINATED is final.
    """
    remaining: int = config.MAX_RETRIES
    ceiling: int = config.MAX_RETRIES

    @property
    def state(self) -> TaskHealth:
        return TaskHealth.HEALTHY if self.remaining > 0 else TaskHealth.TERMINATED

    def succeeded(self) -> "RetryBudget":
        if self.state is TaskHealth.TERMINATED:
            return self
        return replace(self, remaining=self.ceiling)

    def failed(self) -> "RetryBudget":
        return replace(self, remaining=max(0, self.remaining - 1))


class TaskScheduler:
    """Owns the user → task registry and the task lifecycle."""

    def __init__(
        self,
        store: SnapshotStore,
        source: UsageSource,
        notifier: Notifier,
        registry: Optional[TaskRegistry] = None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep
    ):
        """Initialize the scheduler.

        Args:
            store: Config and snapshot store
            source: Usage data source
            notifier: Delivery channel for reports
            registry: Task registry (a fresh one if not given)
            sleep: Interval sleep, must be cancellable
        """
        self.store = store
        self.source = source
        self.notifier = notifier
        self.registry = registry if registry is not None else TaskRegistry()
        self._sleep = sleep

    def status(self, user: str) -> TaskStatus:
        """Report registry membership; the persisted enable flag is not consulted."""
        return TaskStatus.RUNNING if user in self.registry else TaskStatus.NOT_RUNNING

    async def start(self, user: str) -> bool:
        """Enable and launch the user's task.

        Runs one reconciliation immediately, so a new task reports the current
        status without waiting a full interval.

        Returns:
            False if a task was already running

        Raises:
            NotRegisteredError: If the user has no config
            UnicomError: If the first cycle fails (nothing is spawned)
        """
        async with self.registry.lock(user):
            if user in self.registry:
                return False

            user_config = self.store.find_config(user)
            if user_config is None:
                raise NotRegisteredError(f"User {user} is not registered")

            if not user_config.enable_task:
                user_config = user_config.with_changes(enable_task=True)
                self.store.update_config(user_config)

            await self._run_cycle(user_config)

            task = asyncio.create_task(self._loop(user_config), name=f"unicom:{user}")
            self.registry.insert(user, task)
            logger.info(f"Started task for {user} (interval {user_config.interval}s)")
            return True

    async def stop(self, user: str) -> bool:
        """Disable and cancel the user's task.

        Returns:
            False if no task was running

        Raises:
            NotRegisteredError: If the user has no config
        """
        async with self.registry.lock(user):
            user_config = self.store.find_config(user)
            if user_config is None:
                raise NotRegisteredError(f"User {user} is not registered")

            if user_config.enable_task:
                self.store.update_config(user_config.with_changes(enable_task=False))

            task = self.registry.remove(user)
            if task is None:
                return False

            await self._cancel(task)
            logger.info(f"Stopped task for {user}")
            return True

    async def restart(self, user: str) -> TaskStatus:
        """Respawn the user's task so it picks up new settings.

        Starts again only when the persisted enable flag is set.
        """
        async with self.registry.lock(user):
            task = self.registry.remove(user)
            if task is not None:
                await self._cancel(task)
                logger.info(f"Cancelled task for {user} for restart")

        user_config = self.store.find_config(user)
        if user_config is None:
            raise NotRegisteredError(f"User {user} is not registered")

        if user_config.enable_task:
            await self.start(user)

        return self.status(user)

    async def start_all(self) -> int:
        """Start every enabled user's task concurrently.

        A failure for one user is logged and reported to that user; it never
        stops the others.

        Returns:
            Count of tasks started
        """
        configs = [c for c in self.store.all_configs() if c.enable_task]
        started = await asyncio.gather(*(self._auto_start(c) for c in configs))
        count = sum(1 for ok in started if ok)
        logger.info(f"Auto-started {count}/{len(configs)} China Unicom tasks")
        return count

    async def shutdown(self) -> None:
        """Cancel every task without touching the persisted enable flags."""
        for user in self.registry.users():
            task = self.registry.remove(user)
            if task is not None:
                await self._cancel(task)

    async def _auto_start(self, user_config: UserConfig) -> bool:
        try:
            return await self.start(user_config.user)
        except Exception as e:
            error = sanitize_log(str(e))
            logger.error(f"Task auto start failed for {user_config.user}: {error}")
            try:
                await self.notifier.send(
                    user_config.user,
                    user_config.bot,
                    f"China Unicom: task auto start failed: {error}"
                )
            except Exception as send_error:
                logger.error(f"Could not report auto start failure to {user_config.user}: {send_error}")
            return False

    async def _run_cycle(self, user_config: UserConfig) -> bool:
        """Reconcile once and deliver the report if the snapshot advanced."""
        notified, report = await query_once(self.store, self.source, user_config.user)
        if notified:
            await self.notifier.send(user_config.user, user_config.bot, report)
        return notified

    async def _tick(self, user_config: UserConfig, budget: RetryBudget) -> RetryBudget:
        user = user_config.user
        try:
            notified, report = await query_once(self.store, self.source, user)
        except Exception as e:
            budget = budget.failed()
            logger.error(f"[Retry: {budget.remaining}] Error querying China Unicom data for {user}: {e}")
            return budget

        if notified:
            try:
                await self.notifier.send(user, user_config.bot, report)
            except Exception as e:
                budget = budget.failed()
                logger.error(f"[Retry: {budget.remaining}] Error sending message to {user}: {e}")
                return budget

        return budget.succeeded()

    async def _loop(self, user_config: UserConfig) -> None:
        user = user_config.user
        task = asyncio.current_task()
        budget = RetryBudget()
        try:
            while budget.state is TaskHealth.HEALTHY:
                await self._sleep(user_config.interval)
                budget = await self._tick(user_config, budget)

            logger.error(f"Task for {user} terminated after {budget.ceiling} consecutive failures")
        finally:
            self.registry.discard(user, task)

    @staticmethod
    async def _cancel(task: asyncio.Task) -> None:
        """Cancel a task and wait until it has finished unwinding."""
        task.cancel()
        await asyncio.wait([task])
