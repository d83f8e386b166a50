"""Authenticated caller as seen by the vault services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str = "member"
    organization_id: Optional[str] = None
    elevated: bool = False
