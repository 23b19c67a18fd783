"""Reconciliation of a fresh reading against the stored snapshots.

Two reference points are kept per user:

- last: the rolling snapshot. Replaced only when the commit policy fires,
  and a notification is sent exactly when it is replaced.
- daily: the baseline for "today so far". Replaced whenever the reading falls
  on a different calendar day, seeded from the previous rolling snapshot when
  one exists (so the new day starts where the last report left off), else from
  the reading itself.

``reconcile`` is pure; ``commit`` applies its writes to the store.
"""

import asyncio
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from config import UNICOM_TIMEZONE
from logger import logger
from .errors import AuthExpiredError, NotRegisteredError
from .models import Snapshot, UsageReading, UserConfig
from .source import UsageSource
from .store import SnapshotStore

# user -> lock serializing session refreshes
_refresh_locks: dict[str, asyncio.Lock] = {}


@dataclass(frozen=True)
class Reconciliation:
    """Outcome of one reconciliation: what to say and what to write."""
    should_notify: bool
    report: str
    new_last: Optional[UsageReading] = None
    new_daily: Optional[UsageReading] = None
    had_last: bool = False
    had_daily: bool = False


def should_update_last(
    user_config: UserConfig,
    reading: UsageReading,
    last: Optional[Snapshot]
) -> bool:
    """Commit policy for the rolling snapshot.

    Fires when there is no previous snapshot, or when the configured timeout,
    free threshold or nonfree threshold is strictly exceeded.
    """
    if last is None:
        return True

    previous = last.reading

    if user_config.timeout is not None:
        if reading.time - previous.time > timedelta(seconds=user_config.timeout):
            return True

    if user_config.free_threshold is not None:
        if reading.free_used - previous.free_used > user_config.free_threshold:
            return True

    if user_config.nonfree_threshold is not None:
        if reading.paid_used - previous.paid_used > user_config.nonfree_threshold:
            return True

    return False


def local_date(moment: datetime) -> date:
    """Calendar date of a timestamp in the configured zone."""
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(UNICOM_TIMEZONE).date()


def needs_daily_rollover(reading: UsageReading, daily: Optional[Snapshot]) -> bool:
    return daily is None or local_date(daily.time) != local_date(reading.time)


def daily_seed(reading: UsageReading, last: Optional[Snapshot]) -> UsageReading:
    """Baseline for a new day: the previous rolling reading if any."""
    return last.reading if last is not None else reading


def _gb(value: float) -> str:
    return f"{value:.2f} GB"


def format_duration(delta: timedelta) -> str:
    """Compact elapsed time, e.g. ``2h 05m`` or ``45s``."""
    seconds = max(0, int(delta.total_seconds()))
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes:02d}m"
    if minutes:
        return f"{minutes}m {seconds:02d}s"
    return f"{seconds}s"


def build_message(
    reading: UsageReading,
    last: Optional[Snapshot],
    daily: Optional[Snapshot]
) -> str:
    """Render the user-facing report.

    ``last`` and ``daily`` are the snapshots as they were before this tick;
    each delta line appears only when its snapshot existed.
    """
    lines = [f"{reading.package_name}:"]

    if last is not None:
        previous = last.reading
        lines.append(
            f"[{format_duration(reading.time - previous.time)}] "
            f"paid: {_gb(reading.paid_used - previous.paid_used)}, "
            f"free: {_gb(reading.free_used - previous.free_used)}"
        )

    if daily is not None:
        baseline = daily.reading
        lines.append(
            f"Today paid: {_gb(reading.paid_used - baseline.paid_used)}, "
            f"free: {_gb(reading.free_used - baseline.free_used)}"
        )

    lines.append(
        f"General used: {_gb(reading.unlimited_used)} / {_gb(reading.unlimited_allotted)}, "
        f"targeted used: {_gb(reading.limited_used)} / {_gb(reading.limited_allotted)}"
    )
    lines.append(
        f"General left: {_gb(reading.unlimited_left)}, "
        f"targeted left: {_gb(reading.limited_left)}"
    )
    return "\n".join(lines)


def reconcile(
    reading: UsageReading,
    user_config: UserConfig,
    last: Optional[Snapshot],
    daily: Optional[Snapshot]
) -> Reconciliation:
    """Decide snapshot replacements and render the report for one reading."""
    new_daily = daily_seed(reading, last) if needs_daily_rollover(reading, daily) else None
    replace_last = should_update_last(user_config, reading, last)

    return Reconciliation(
        should_notify=replace_last,
        report=build_message(reading, last, daily),
        new_last=reading if replace_last else None,
        new_daily=new_daily,
        had_last=last is not None,
        had_daily=daily is not None,
    )


def commit(store: SnapshotStore, user_config: UserConfig, result: Reconciliation) -> None:
    """Persist the snapshot replacements decided by ``reconcile``."""
    user, bot = user_config.user, user_config.bot

    if result.new_daily is not None:
        snapshot = Snapshot(user=user, bot=bot, reading=result.new_daily)
        if result.had_daily:
            store.update_daily(snapshot)
        else:
            store.insert_daily(snapshot)
        logger.info(f"Rolled over daily snapshot for user: {user}")

    if result.new_last is not None:
        snapshot = Snapshot(user=user, bot=bot, reading=result.new_last)
        if result.had_last:
            store.update_last(snapshot)
        else:
            store.insert_last(snapshot)
        logger.info(f"Advanced rolling snapshot for user: {user}")


async def fetch_reading(
    store: SnapshotStore,
    source: UsageSource,
    user_config: UserConfig
) -> UsageReading:
    """Fetch a reading, refreshing the session once if it has expired.

    Refreshes for one user are serialized: the refresh token rotates, so a
    caller that waited on another caller's refresh reuses the stored result
    instead of spending the stale token. The rotated cookie and refresh token
    are persisted before the retry. Any other fetch error propagates unretried.
    """
    try:
        return await source.fetch(user_config.cookie)
    except AuthExpiredError:
        logger.warning(f"Session expired for user: {user_config.user}, re-authenticating")

    async with _refresh_locks.setdefault(user_config.user, asyncio.Lock()):
        current = store.find_config(user_config.user)
        if current is None:
            raise NotRegisteredError(f"User {user_config.user} is not registered")

        if current.cookie != user_config.cookie:
            logger.info(f"Auth info for user: {user_config.user} already refreshed")
            refreshed = current
        else:
            credential = await source.reauthenticate(current.token_online, current.app_id)
            refreshed = current.with_credential(credential)
            store.update_config(refreshed)
            logger.info(f"Updated auth info for user: {user_config.user}")

    return await source.fetch(refreshed.cookie)


async def query_once(
    store: SnapshotStore,
    source: UsageSource,
    user: str
) -> tuple[bool, str]:
    """Run one full reconciliation cycle for a user.

    Returns:
        (notified, report) where notified means the rolling snapshot advanced

    Raises:
        NotRegisteredError: If the user has no config
        FetchError, ReauthenticationError, StoreError: From the collaborators
    """
    user_config = store.find_config(user)
    if user_config is None:
        raise NotRegisteredError(f"User {user} is not registered")

    reading = await fetch_reading(store, source, user_config)

    last = store.find_last(user)
    daily = store.find_daily(user)
    result = reconcile(reading, user_config, last, daily)
    commit(store, user_config, result)

    return result.should_notify, result.report
