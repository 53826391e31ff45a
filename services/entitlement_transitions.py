"""
Pure entitlement state transitions.

Each function takes a full record and returns the full next record; callers
persist the result with a single versioned write. Every transition sets
absolute state, so applying one twice is the same as applying it once.
"""
from datetime import datetime, timedelta
from typing import Optional

from models.billing_event import BillingEvent, BillingEventKind
from models.entitlement import EntitlementRecord, PlanStatus


def new_record(
    identity: str,
    now: datetime,
    trial_days: int,
    email: Optional[str] = None,
    display_name: Optional[str] = None,
) -> EntitlementRecord:
    """A first-sight record: trialing, expiring `trial_days` from now."""
    return EntitlementRecord(
        identity=identity,
        plan=PlanStatus.TRIALING.value,
        trial_expiry=now + timedelta(days=trial_days),
        email=email,
        display_name=display_name,
        created_at=now,
    )


def trial_has_lapsed(record: EntitlementRecord, now: datetime) -> bool:
    return (
        record.plan == PlanStatus.TRIALING.value
        and record.trial_expiry is not None
        and now > record.trial_expiry
    )


def expire_trial_if_due(record: EntitlementRecord, now: datetime) -> EntitlementRecord:
    if not trial_has_lapsed(record, now):
        return record
    return record.with_changes(plan=PlanStatus.EXPIRED.value, trial_expiry=None)


def apply_billing_event(record: EntitlementRecord, event: BillingEvent) -> EntitlementRecord:
    kind = event.kind

    if kind == BillingEventKind.SUBSCRIPTION_ACTIVE:
        changes = {"plan": PlanStatus.ACTIVE.value, "trial_expiry": None}
        if event.subscription_ref:
            changes["billing_subscription_ref"] = event.subscription_ref
        return record.with_changes(**changes)

    if kind == BillingEventKind.SUBSCRIPTION_TRIALING:
        return record.with_changes(plan=PlanStatus.TRIALING.value, trial_expiry=event.trial_ends_at)

    if kind in (BillingEventKind.SUBSCRIPTION_EXPIRED, BillingEventKind.INVOICE_PAYMENT_FAILED):
        return record.with_changes(plan=PlanStatus.EXPIRED.value, trial_expiry=None)

    if kind == BillingEventKind.SUBSCRIPTION_DELETED:
        return record.with_changes(
            plan=PlanStatus.EXPIRED.value,
            trial_expiry=None,
            billing_subscription_ref=None,
        )

    # invoice_paid is informational; subscription events carry the state
    return record
