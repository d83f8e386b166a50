"""
Keep secrets out of logs.

``safe_details`` strips secret-bearing keys from a details dict before it is
logged; ``SecretRedactingFilter`` is attached to the root handlers in
``main.py`` and masks anything token-shaped that slipped into a message.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Mapping, Optional

SECRET_KEYS = frozenset(
    {
        "access_token",
        "refresh_token",
        "client_secret",
        "code",
        "authorization",
        "id_token",
        "token",
    }
)

_PATTERNS = [
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._~+/=-]+"),
    re.compile(r"(?i)(basic\s+)[A-Za-z0-9+/=]+"),
    re.compile(r"(?i)((?:access_token|refresh_token|client_secret|id_token)[\"']?\s*[:=]\s*[\"']?)[^\s\"'&,}]+"),
    re.compile(r"(?i)(zoho-oauthtoken\s+)[A-Za-z0-9._-]+"),
]

REDACTED = "[REDACTED]"


def safe_details(details: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Return a copy of ``details`` without secret-bearing keys."""
    if not details:
        return {}
    return {k: v for k, v in details.items() if k.lower() not in SECRET_KEYS}


def redact(text: str) -> str:
    for pattern in _PATTERNS:
        text = pattern.sub(lambda m: m.group(1) + REDACTED, text)
    return text


class SecretRedactingFilter(logging.Filter):
    """Mask bearer tokens and ``*_token=`` pairs in formatted records."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except Exception:  # malformed args: let the handler report it
            return True
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True
