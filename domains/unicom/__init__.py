"""China Unicom - mobile data usage monitoring.

Polls each registered user's China Unicom account on an interval and sends a
usage report whenever consumption since the last report crosses a threshold
or enough time has passed.

Storage: sqlite
Input: Discord direct messages
"""

from .models import (
    Credential,
    UserConfig,
    UsageReading,
    Snapshot,
)
from .errors import (
    UnicomError,
    FetchError,
    AuthExpiredError,
    TransientFetchError,
    ReauthenticationError,
    StoreError,
    AlreadyExistsError,
    NotRegisteredError,
    ValidationError,
    DeliveryError,
)
from .config import (
    COMMAND_NAME,
    MAX_RETRIES,
    REPLY_TIMEOUT,
)

from .store import SnapshotStore
from .source import UsageSource, ChinaUnicomSource, parse_usage
from .engine import reconcile, commit, query_once, should_update_last, build_message
from .notifier import Notifier, DiscordNotifier, make_key, split_key
from .scheduler import TaskScheduler, TaskStatus, TaskHealth, RetryBudget
from .commands import UnicomCommands

__all__ = [
    # Models
    "Credential",
    "UserConfig",
    "UsageReading",
    "Snapshot",
    # Errors
    "UnicomError",
    "FetchError",
    "AuthExpiredError",
    "TransientFetchError",
    "ReauthenticationError",
    "StoreError",
    "AlreadyExistsError",
    "NotRegisteredError",
    "ValidationError",
    "DeliveryError",
    # Config
    "COMMAND_NAME",
    "MAX_RETRIES",
    "REPLY_TIMEOUT",
    # Components
    "SnapshotStore",
    "UsageSource",
    "ChinaUnicomSource",
    "parse_usage",
    "reconcile",
    "commit",
    "query_once",
    "should_update_last",
    "build_message",
    "Notifier",
    "DiscordNotifier",
    "make_key",
    "split_key",
    "TaskScheduler",
    "TaskStatus",
    "TaskHealth",
    "RetryBudget",
    "UnicomCommands",
]
