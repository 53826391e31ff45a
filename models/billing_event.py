"""
Billing provider events, normalized to the variants the reconciler understands
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class BillingEventKind(str, Enum):
    SUBSCRIPTION_ACTIVE = "subscription_active"
    SUBSCRIPTION_TRIALING = "subscription_trialing"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    SUBSCRIPTION_DELETED = "subscription_deleted"
    INVOICE_PAID = "invoice_paid"
    INVOICE_PAYMENT_FAILED = "invoice_payment_failed"


@dataclass(frozen=True)
class BillingEvent:
    kind: BillingEventKind
    billing_customer_ref: str
    # Only meaningful for SUBSCRIPTION_TRIALING
    trial_ends_at: Optional[datetime] = None
    subscription_ref: Optional[str] = None
    # Provider event id, carried for logging only
    event_id: Optional[str] = None

    def __post_init__(self):
        if self.kind == BillingEventKind.SUBSCRIPTION_TRIALING and self.trial_ends_at is None:
            raise ValueError("subscription_trialing events require trial_ends_at")
