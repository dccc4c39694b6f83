"""Membership domain model: the customer-facing entitlement."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class MembershipStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    DELAYED = "delayed"


@dataclass(slots=True)
class Membership:
    """
    Membership entity, backed by zero or more subscriptions.

    Subscriptions reference the membership; the membership keeps no list of them.
    """

    id: str
    customer_email: str
    customer_name: Optional[str]
    product_name: str
    start_date: datetime
    end_date: datetime
    delayed_start_date: Optional[datetime]
    status: MembershipStatus
    parent_order_id: Optional[str]
    created_at: datetime
    updated_at: datetime

    def __repr__(self) -> str:
        return f"<Membership id={self.id} email={self.customer_email} status={self.status.value}>"
