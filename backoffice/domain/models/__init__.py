"""Domain models for the membership back office."""

from .membership import Membership, MembershipStatus
from .subscription import Subscription, SubscriptionKind, SubscriptionStatus
from .user import User

__all__ = [
    "Membership",
    "MembershipStatus",
    "Subscription",
    "SubscriptionKind",
    "SubscriptionStatus",
    "User",
]
