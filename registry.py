"""Registry of running per-user background tasks."""

import asyncio
from typing import Optional


class TaskRegistry:
    """Maps user key -> running asyncio task.

    Every mutation happens on the event loop thread, so single dict operations
    are atomic. Multi-step transitions for one user (start, stop, restart) are
    serialized by that user's lock only; unrelated users never contend.
    """

    def __init__(self):
        self._tasks: dict[str, asyncio.Task] = {}  # user → task
        self._locks: dict[str, asyncio.Lock] = {}  # user → transition lock

    def __contains__(self, user: str) -> bool:
        return user in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def get(self, user: str) -> Optional[asyncio.Task]:
        """Get the task registered for a user."""
        return self._tasks.get(user)

    def insert(self, user: str, task: asyncio.Task) -> Optional[asyncio.Task]:
        """Register a task, returning any task it displaced."""
        previous = self._tasks.get(user)
        self._tasks[user] = task
        return previous

    def remove(self, user: str) -> Optional[asyncio.Task]:
        """Unregister and return the user's task, if any."""
        return self._tasks.pop(user, None)

    def discard(self, user: str, task: asyncio.Task) -> bool:
        """Unregister ``task`` only if it is still the user's current task.

        Used by a task on its own exit so it never removes a replacement
        spawned by a concurrent restart.
        """
        if self._tasks.get(user) is task:
            del self._tasks[user]
            return True
        return False

    def lock(self, user: str) -> asyncio.Lock:
        """Per-user lock guarding task transitions."""
        return self._locks.setdefault(user, asyncio.Lock())

    def users(self) -> list[str]:
        """All users with a registered task."""
        return list(self._tasks)
