"""Data structures for users, readings and snapshots."""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional

from utils.log_sanitizer import mask_secret
from . import config
from .errors import ValidationError


@dataclass(frozen=True)
class Credential:
    """Session cookie plus the rotating refresh token."""
    cookie: str
    token_online: str


@dataclass(frozen=True)
class UserConfig:
    """Per-user settings, one row per registered user.

    Thresholds are in GB; interval and timeout in seconds.
    """
    user: str
    bot: str
    cookie: str = ""
    token_online: str = ""
    app_id: str = ""
    enable_task: bool = True
    interval: int = config.DEFAULT_INTERVAL
    timeout: Optional[int] = config.DEFAULT_TIMEOUT
    free_threshold: Optional[float] = config.DEFAULT_FREE_THRESHOLD
    nonfree_threshold: Optional[float] = config.DEFAULT_NONFREE_THRESHOLD

    def __post_init__(self):
        """Reject out-of-range values before anything is written."""
        if not config.MIN_INTERVAL <= self.interval <= config.MAX_SECONDS:
            raise ValidationError(
                f"interval must be between {config.MIN_INTERVAL}s and {config.MAX_SECONDS}s, got {self.interval}s"
            )
        if self.timeout is not None and not config.MIN_TIMEOUT <= self.timeout <= config.MAX_SECONDS:
            raise ValidationError(
                f"timeout must be between {config.MIN_TIMEOUT}s and {config.MAX_SECONDS}s or None, got {self.timeout}s"
            )
        for name in ("free_threshold", "nonfree_threshold"):
            value = getattr(self, name)
            # NaN compares false against everything, so check finiteness first
            if value is not None and (not math.isfinite(value) or value < 0):
                raise ValidationError(f"{name} must be a finite number >= 0 or None, got {value}")

    def with_changes(self, **changes) -> "UserConfig":
        """Copy with some fields changed (validated again)."""
        return replace(self, **changes)

    def with_credential(self, credential: Credential) -> "UserConfig":
        return replace(self, cookie=credential.cookie, token_online=credential.token_online)

    def __str__(self) -> str:
        lines = [
            f"Cookie: {mask_secret(self.cookie)}",
            f"TokenOnline: {mask_secret(self.token_online)}",
            f"Task enabled: {'yes' if self.enable_task else 'no'}",
            f"Interval: {self.interval}s",
            f"Timeout: {self.timeout}s" if self.timeout is not None else "Timeout: None",
        ]
        if self.free_threshold is not None:
            lines.append(f"Free threshold: {self.free_threshold:.2f} GB")
        else:
            lines.append("Free threshold: None")
        if self.nonfree_threshold is not None:
            lines.append(f"Nonfree threshold: {self.nonfree_threshold:.2f} GB")
        else:
            lines.append("Nonfree threshold: None")
        return "\n".join(lines)


@dataclass(frozen=True)
class UsageReading:
    """Cumulative billing-cycle counters observed at ``time``.

    Data volumes are in GB, voice in minutes. "Limited" is targeted (app
    specific) quota, "unlimited" is general quota.
    """
    package_name: str
    time: datetime

    total_used: float = 0.0
    free_used: float = 0.0
    paid_used: float = 0.0
    limited_used: float = 0.0
    unlimited_used: float = 0.0

    total_allotted: float = 0.0
    free_allotted: float = 0.0
    paid_allotted: float = 0.0
    limited_allotted: float = 0.0
    unlimited_allotted: float = 0.0

    voice_used: int = 0
    voice_limited_used: int = 0
    voice_unlimited_used: int = 0
    voice_allotted: int = 0
    voice_limited_allotted: int = 0
    voice_unlimited_allotted: int = 0

    @property
    def limited_left(self) -> float:
        return self.limited_allotted - self.limited_used

    @property
    def unlimited_left(self) -> float:
        return self.unlimited_allotted - self.unlimited_used


@dataclass(frozen=True)
class Snapshot:
    """A reading kept as a reference point (rolling "last" or "daily")."""
    user: str
    bot: str
    reading: UsageReading = field(repr=False)

    @property
    def time(self) -> datetime:
        return self.reading.time
