"""
Entitlement domain records
"""
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utc_now() -> datetime:
    """Naive UTC timestamp, matching how the database stores datetimes."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PlanStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    EXPIRED = "expired"


@dataclass(frozen=True)
class EntitlementRecord:
    """
    Snapshot of a user's entitlement.

    `plan` is kept as the raw stored string so that a corrupted value
    reaches the gate instead of failing at load time.
    """
    identity: str
    plan: str
    trial_expiry: Optional[datetime] = None
    billing_customer_ref: Optional[str] = None
    billing_subscription_ref: Optional[str] = None
    email: Optional[str] = None
    display_name: Optional[str] = None
    version: int = 0
    created_at: Optional[datetime] = None

    def with_changes(self, **changes) -> "EntitlementRecord":
        return replace(self, **changes)

    def same_state(self, other: "EntitlementRecord") -> bool:
        """True when both records carry the same entitlement fields."""
        return (
            self.plan == other.plan
            and self.trial_expiry == other.trial_expiry
            and self.billing_customer_ref == other.billing_customer_ref
            and self.billing_subscription_ref == other.billing_subscription_ref
            and self.email == other.email
            and self.display_name == other.display_name
        )


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    plan: str
    reason: Optional[str] = None
    trial_expiry: Optional[datetime] = None
