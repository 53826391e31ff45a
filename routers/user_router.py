"""
User Router - entitlement status for the signed-in caller
"""
from fastapi import APIRouter, Depends

from auth import Identity, get_current_identity, get_entitlement_repository
from auth_utils import calculate_trial_days_remaining
from backend.utils.responses import success_response
from crud.entitlement import EntitlementRepository
from models.entitlement import utc_now

user_router = APIRouter(prefix="/api", tags=["user"])


@user_router.get("/user-status")
async def user_status(
    identity: Identity = Depends(get_current_identity),
    repo: EntitlementRepository = Depends(get_entitlement_repository),
):
    """
    Report the caller's plan and trial window.

    Not gated, so expired users can still see why chat is refused. Reads only:
    a lapsed trial is reported as-is until the next gated request expires it.
    """
    record = await repo.get_or_create(identity.subject, identity.claims)
    return success_response({
        "plan": record.plan,
        "trial_expiry": record.trial_expiry,
        "trial_days_remaining": calculate_trial_days_remaining(record.trial_expiry, utc_now()),
    })
