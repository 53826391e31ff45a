"""
Entitlement gate: decides per request whether a user may use the assistant
"""
import logging
from typing import Callable, Optional

from crud.entitlement import EntitlementRepository
from models.entitlement import AccessDecision, EntitlementRecord, PlanStatus, utc_now
from services.entitlement_transitions import expire_trial_if_due, trial_has_lapsed

logger = logging.getLogger(__name__)

REASON_TRIAL_EXPIRED = "Your trial has expired. Please upgrade to a premium plan."
REASON_PLAN_EXPIRED = "Your plan has expired. Please upgrade to a premium plan to continue."
REASON_UNKNOWN_PLAN = "Access denied due to unknown plan status. Please contact support."


class EntitlementGate:
    """
    Service for gating protected requests on plan and trial state.
    Lazily moves lapsed trials to expired; no other check writes.
    """

    def __init__(self, repo: EntitlementRepository, clock: Callable = utc_now):
        """
        Initialize the gate with an entitlement repository.

        Args:
            repo: EntitlementRepository instance for record access
            clock: Callable returning the current naive UTC time
        """
        self.repo = repo
        self.clock = clock

    async def check(self, identity: str, claims: Optional[dict] = None) -> AccessDecision:
        """
        Classify the caller's entitlement into allow or deny.

        Args:
            identity: Verified subject identifier
            claims: Optional token claims used for record metadata

        Returns:
            AccessDecision with a user-facing reason when denied
        """
        record = await self.repo.get_or_create(identity, claims)
        now = self.clock()

        if trial_has_lapsed(record, now):
            logger.info(f"TRIAL EXPIRED: User {identity}'s trial ended at {record.trial_expiry}")
            stored = await self.repo.update(identity, lambda current: expire_trial_if_due(current, now))
            if stored is not None and stored.plan != PlanStatus.EXPIRED.value:
                # A billing event moved the record between our read and the write
                return self.classify(stored)
            return AccessDecision(allowed=False, plan=PlanStatus.EXPIRED.value, reason=REASON_TRIAL_EXPIRED)

        return self.classify(record)

    def classify(self, record: EntitlementRecord) -> AccessDecision:
        """Decision for a record whose trial (if any) has not lapsed."""
        if record.plan == PlanStatus.TRIALING.value:
            if record.trial_expiry is None:
                logger.warning(f"User {record.identity} is trialing without a trial expiry. Treating as active.")
            return AccessDecision(allowed=True, plan=record.plan, trial_expiry=record.trial_expiry)

        if record.plan == PlanStatus.ACTIVE.value:
            return AccessDecision(allowed=True, plan=record.plan)

        if record.plan == PlanStatus.EXPIRED.value:
            logger.info(f"ACCESS DENIED: User {record.identity}'s plan is expired.")
            return AccessDecision(allowed=False, plan=record.plan, reason=REASON_PLAN_EXPIRED)

        logger.error(
            f"DATA INTEGRITY FAULT: User {record.identity} has unexpected plan {record.plan!r}. Denying access."
        )
        return AccessDecision(allowed=False, plan="unknown", reason=REASON_UNKNOWN_PLAN)
