"""
Authentication and entitlement dependencies for protected routes
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from auth_utils import auth0_enabled, decode_jwt
from backend.utils.errors import AuthRequired, DataIntegrityFault, EntitlementDenied
from crud.entitlement import EntitlementRepository
from database import get_db
from models.entitlement import AccessDecision
from services.entitlement_service import EntitlementGate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    subject: str
    email: Optional[str] = None
    name: Optional[str] = None

    @property
    def claims(self) -> dict:
        return {"email": self.email, "name": self.name}


async def get_current_identity(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> Identity:
    """
    Dependency function to get the verified caller identity.

    Requires an `Authorization: Bearer <token>` header; the token must verify
    and carry a `sub` claim.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthRequired("Missing authentication token")

    token = authorization.replace("Bearer ", "", 1).strip()
    if auth0_enabled():
        # JWKS lookups go over the network
        payload = await asyncio.to_thread(decode_jwt, token)
    else:
        payload = decode_jwt(token)
    if not payload:
        raise AuthRequired("Invalid or expired token")

    subject = payload.get("sub")
    if not subject:
        raise AuthRequired("Invalid token payload")

    return Identity(
        subject=str(subject),
        email=payload.get("email"),
        name=payload.get("name") or payload.get("nickname"),
    )


def get_entitlement_repository(db: AsyncSession = Depends(get_db)) -> EntitlementRepository:
    return EntitlementRepository(db)


def get_entitlement_gate(repo: EntitlementRepository = Depends(get_entitlement_repository)) -> EntitlementGate:
    return EntitlementGate(repo)


async def require_entitlement(
    identity: Identity = Depends(get_current_identity),
    gate: EntitlementGate = Depends(get_entitlement_gate),
) -> Identity:
    """
    Dependency for routes that need a live trial or subscription.

    Raises:
        EntitlementDenied: Trial or plan expired (403 with upgrade prompt)
        DataIntegrityFault: Record holds an unknown plan (403, logged loudly)
    """
    decision: AccessDecision = await gate.check(identity.subject, identity.claims)
    if decision.allowed:
        return identity
    if decision.plan == "unknown":
        raise DataIntegrityFault(decision.reason)
    raise EntitlementDenied(decision.reason, plan_status=decision.plan)
