"""
Billing event reconciler: applies provider events to entitlement records
"""
import logging
from typing import Optional

from crud.entitlement import EntitlementRepository
from models.billing_event import BillingEvent
from models.entitlement import EntitlementRecord
from services.entitlement_transitions import apply_billing_event

logger = logging.getLogger(__name__)


class BillingEventReconciler:
    """
    Maps billing events onto entitlement records.
    Redelivered events are harmless: every mapping writes absolute state.
    """

    def __init__(self, repo: EntitlementRepository):
        self.repo = repo

    async def apply(self, event: BillingEvent) -> Optional[EntitlementRecord]:
        """
        Apply one billing event.

        Returns the resulting record, or None when no record is linked to
        the event's customer (the event is logged and dropped).
        """
        record = await self.repo.get_by_customer_ref(event.billing_customer_ref)
        if record is None:
            logger.info(
                f"Dropping billing event {event.kind.value} ({event.event_id or 'no id'}): "
                f"no entitlement linked to customer {event.billing_customer_ref}"
            )
            return None

        updated = await self.repo.update(record.identity, lambda current: apply_billing_event(current, event))
        if updated is not None:
            logger.info(
                f"Billing event {event.kind.value} applied to {record.identity}: plan={updated.plan}"
            )
        return updated
