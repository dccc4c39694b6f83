from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True)
class User:
    """Back-office administrator account."""

    id: int
    email: str
    password_hash: str
    is_active: bool
    created_at: datetime
    updated_at: datetime
