"""Utility modules for the China Unicom usage bot."""

from .log_sanitizer import sanitize_log, sanitize_for_log, mask_secret

__all__ = ["sanitize_log", "sanitize_for_log", "mask_secret"]
