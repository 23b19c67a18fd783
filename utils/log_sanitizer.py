"""Log sanitizer - removes credentials from log lines and user-facing errors.

China Unicom session cookies, refresh tokens and phone numbers must never be
written to log files or echoed back in error replies.
"""

import re
from typing import Union

# Patterns to detect and redact sensitive data
SENSITIVE_PATTERNS = [
    # Session cookie pairs issued by the China Unicom app
    (r'\b(ecs_token|ecs_acc|jsessionid|c_id|u_account|random_login|cookie_mobile|invalid_at|login_type|t3_token)=[^;\s,"\']+',
     r'\1=[REDACTED]'),

    # Refresh token and device app id, in key=value or JSON form
    (r'(token_online|appId|app_id)["\s:=]+[^\s,}"\']{8,}', r'\1=[REDACTED]'),

    # API keys, tokens, secrets in key=value format
    (r'(password|secret|token|api_key|apikey|auth|bearer|credential|cookie)["\s:=]+[^\s,}"\']{8,}',
     r'\1=[REDACTED]'),

    # Bearer tokens
    (r'(Bearer|Basic)\s+[A-Za-z0-9\-_\.]+', r'\1 [REDACTED]'),

    # JWT tokens (three base64 segments separated by dots)
    (r'eyJ[A-Za-z0-9\-_]+\.eyJ[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+', '[JWT_TOKEN]'),

    # Mainland China mobile numbers
    (r'(?<!\d)(?:\+?86[\s-]?)?1[3-9]\d{9}(?!\d)', '[PHONE]'),

    # Generic long alphanumeric strings that look like keys (40+ chars)
    (r'\b[A-Za-z0-9]{40,}\b', '[LONG_TOKEN]'),
]

# Compiled patterns for efficiency
_COMPILED_PATTERNS = [(re.compile(p, re.IGNORECASE), r) for p, r in SENSITIVE_PATTERNS]


def sanitize_log(text: str) -> str:
    """Remove sensitive data from text for safe logging.

    Args:
        text: The text to sanitize

    Returns:
        Sanitized text with sensitive data replaced by placeholders
    """
    if not text:
        return text

    result = text
    for pattern, replacement in _COMPILED_PATTERNS:
        result = pattern.sub(replacement, result)

    return result


def sanitize_for_log(value: Union[str, bytes, None], max_length: int = 200) -> str:
    """Sanitize and truncate a value (e.g. an HTTP body) for logging.

    Args:
        value: The value to sanitize (string or bytes)
        max_length: Maximum length of returned string

    Returns:
        Sanitized, truncated string safe for logging
    """
    if value is None:
        return "<None>"

    if isinstance(value, bytes):
        text = value.decode('utf-8', errors='replace')
    else:
        text = str(value)

    sanitized = sanitize_log(text)

    if len(sanitized) > max_length:
        return sanitized[:max_length] + f"... [{len(text)} chars total]"

    return sanitized


def mask_secret(value: str | None, visible: int = 4) -> str:
    """Show only the first few characters of a credential."""
    if not value:
        return "<unset>"
    if len(value) <= visible:
        return "*" * len(value)
    return f"{value[:visible]}...({len(value)} chars)"
