"""
EntitlementRepository for database operations on the Entitlement model
"""

import logging
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from database_models import Entitlement
from models.entitlement import EntitlementRecord, utc_now
from services.entitlement_transitions import new_record

logger = logging.getLogger(__name__)

# Read-modify-write attempts before giving up on a contended record
MAX_UPDATE_ATTEMPTS = 5


class StaleEntitlementError(Exception):
    """Raised when a save loses a race against another writer of the same record."""

    def __init__(self, identity: str, expected_version: int):
        super().__init__(f"Entitlement for {identity} changed since version {expected_version}")
        self.identity = identity
        self.expected_version = expected_version


def _to_record(row: Entitlement) -> EntitlementRecord:
    return EntitlementRecord(
        identity=row.identity,
        plan=row.plan,
        trial_expiry=row.trial_expiry,
        billing_customer_ref=row.billing_customer_ref,
        billing_subscription_ref=row.billing_subscription_ref,
        email=row.email,
        display_name=row.display_name,
        version=row.version,
        created_at=row.created_at,
    )


class EntitlementRepository:
    """
    Repository class for Entitlement database operations.
    Hands out immutable EntitlementRecord snapshots; writes are whole-record
    and guarded by the row's version counter.
    """

    def __init__(self, db: AsyncSession, trial_days: Optional[int] = None, clock: Callable = utc_now):
        """
        Initialize the repository with a database session.

        Args:
            db: AsyncSession instance for database operations
            trial_days: Trial length for newly created records (defaults to settings)
            clock: Callable returning the current naive UTC time
        """
        self.db = db
        self.trial_days = trial_days if trial_days is not None else settings.trial_days
        self.clock = clock

    async def _select_one(self, *criteria) -> Optional[EntitlementRecord]:
        result = await self.db.execute(
            select(Entitlement).where(*criteria).execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _to_record(row) if row else None

    async def get(self, identity: str) -> Optional[EntitlementRecord]:
        """Retrieve the record for an identity, or None."""
        return await self._select_one(Entitlement.identity == identity)

    async def get_by_customer_ref(self, billing_customer_ref: str) -> Optional[EntitlementRecord]:
        """Retrieve the record linked to a billing customer, or None."""
        return await self._select_one(Entitlement.billing_customer_ref == billing_customer_ref)

    async def get_or_create(self, identity: str, claims: Optional[dict] = None) -> EntitlementRecord:
        """
        Return the identity's record, creating a trialing one on first sight.

        Claims only fill display metadata (email, name); they never set the plan.
        """
        existing = await self.get(identity)
        if existing:
            return existing

        claims = claims or {}
        record = new_record(
            identity,
            now=self.clock(),
            trial_days=self.trial_days,
            email=claims.get("email"),
            display_name=claims.get("name"),
        )
        row = Entitlement(
            identity=record.identity,
            email=record.email,
            display_name=record.display_name,
            plan=record.plan,
            trial_expiry=record.trial_expiry,
            version=1,
            created_at=record.created_at,
            updated_at=record.created_at,
        )
        self.db.add(row)
        try:
            await self.db.commit()
        except IntegrityError:
            # Another request created the same identity first
            await self.db.rollback()
            existing = await self.get(identity)
            if existing is None:
                raise
            return existing

        logger.info(f"NEW USER: {identity}. Trial account created, trial ends: {record.trial_expiry}")
        return record.with_changes(version=1)

    async def save(self, record: EntitlementRecord) -> EntitlementRecord:
        """
        Persist the full record if nobody else wrote it since it was read.

        Raises:
            StaleEntitlementError: If the stored version no longer matches
        """
        result = await self.db.execute(
            update(Entitlement)
            .where(Entitlement.identity == record.identity)
            .where(Entitlement.version == record.version)
            .values(
                plan=record.plan,
                trial_expiry=record.trial_expiry,
                billing_customer_ref=record.billing_customer_ref,
                billing_subscription_ref=record.billing_subscription_ref,
                email=record.email,
                display_name=record.display_name,
                version=record.version + 1,
                updated_at=self.clock(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise StaleEntitlementError(record.identity, record.version)
        await self.db.commit()
        return record.with_changes(version=record.version + 1)

    async def update(
        self,
        identity: str,
        transition: Callable[[EntitlementRecord], EntitlementRecord],
    ) -> Optional[EntitlementRecord]:
        """
        Read the record, compute its next state and save it, retrying on conflict.

        Returns the stored record (unchanged records are not rewritten),
        or None if the identity has no record.
        """
        for attempt in range(1, MAX_UPDATE_ATTEMPTS + 1):
            current = await self.get(identity)
            if current is None:
                return None
            proposed = transition(current)
            if proposed.same_state(current):
                return current
            try:
                return await self.save(proposed)
            except StaleEntitlementError:
                logger.warning(f"Concurrent write on entitlement {identity}, retrying ({attempt}/{MAX_UPDATE_ATTEMPTS})")
        raise StaleEntitlementError(identity, -1)
