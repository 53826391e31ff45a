"""
Unit tests for EntitlementRepository record operations
"""
from datetime import datetime, timedelta

import pytest

from crud.entitlement import EntitlementRepository, StaleEntitlementError

NOW = datetime(2025, 3, 1, 12, 0, 0)


def fixed_clock():
    return NOW


@pytest.mark.asyncio
async def test_first_sight_creates_trial(test_db):
    """A new identity gets a trialing record expiring exactly seven days out."""
    repo = EntitlementRepository(test_db, trial_days=7, clock=fixed_clock)

    record = await repo.get_or_create("auth0|abc", {"email": "a@example.com", "name": "Ann"})

    assert record.plan == "trialing"
    assert record.trial_expiry == NOW + timedelta(days=7)
    assert record.email == "a@example.com"
    assert record.display_name == "Ann"
    assert record.billing_customer_ref is None
    assert record.version == 1


@pytest.mark.asyncio
async def test_get_or_create_is_idempotent(test_db):
    repo = EntitlementRepository(test_db, trial_days=7, clock=fixed_clock)
    first = await repo.get_or_create("auth0|abc")

    later = EntitlementRepository(test_db, trial_days=7, clock=lambda: NOW + timedelta(days=3))
    second = await later.get_or_create("auth0|abc", {"email": "new@example.com"})

    assert second.trial_expiry == first.trial_expiry
    assert second.version == first.version
    # Claims never overwrite an existing record
    assert second.email is None


@pytest.mark.asyncio
async def test_get_missing_returns_none(test_db):
    repo = EntitlementRepository(test_db)
    assert await repo.get("auth0|nobody") is None
    assert await repo.get_by_customer_ref("cus_missing") is None


@pytest.mark.asyncio
async def test_save_bumps_version_and_rejects_stale_copy(test_db):
    repo = EntitlementRepository(test_db, clock=fixed_clock)
    record = await repo.get_or_create("auth0|abc")

    saved = await repo.save(record.with_changes(billing_customer_ref="cus_1"))
    assert saved.version == 2
    assert (await repo.get_by_customer_ref("cus_1")).identity == "auth0|abc"

    with pytest.raises(StaleEntitlementError):
        await repo.save(record.with_changes(plan="active"))

    stored = await repo.get("auth0|abc")
    assert stored.plan == "trialing"
    assert stored.billing_customer_ref == "cus_1"


@pytest.mark.asyncio
async def test_update_retries_after_concurrent_write(test_db):
    """A transition computed on a stale read is recomputed on the fresh record."""
    repo = EntitlementRepository(test_db, clock=fixed_clock)
    await repo.get_or_create("auth0|abc")

    calls = []

    async def interfering_write():
        current = await repo.get("auth0|abc")
        await repo.save(current.with_changes(billing_customer_ref="cus_race"))

    def transition(current):
        calls.append(current.version)
        return current.with_changes(plan="active", trial_expiry=None)

    original_save = repo.save
    state = {"interfered": False}

    async def save_with_race(record):
        if not state["interfered"]:
            state["interfered"] = True
            await interfering_write()
        return await original_save(record)

    repo.save = save_with_race

    result = await repo.update("auth0|abc", transition)

    assert calls == [1, 2]
    assert result.plan == "active"
    assert result.billing_customer_ref == "cus_race"
    assert result.version == 3


@pytest.mark.asyncio
async def test_update_without_change_does_not_write(test_db):
    repo = EntitlementRepository(test_db, clock=fixed_clock)
    record = await repo.get_or_create("auth0|abc")

    result = await repo.update("auth0|abc", lambda current: current)

    assert result.version == record.version


@pytest.mark.asyncio
async def test_update_missing_identity_returns_none(test_db):
    repo = EntitlementRepository(test_db)
    assert await repo.update("auth0|nobody", lambda current: current) is None
