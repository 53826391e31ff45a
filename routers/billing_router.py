"""
Billing Router - API endpoints for Stripe billing integration
Webhook is defined FIRST to avoid middleware conflicts
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Body
from fastapi.responses import JSONResponse

from auth import Identity, get_current_identity, get_entitlement_repository
from backend.utils.errors import BillingUnavailable
from backend.utils.responses import success_response, error_response
from crud.entitlement import EntitlementRepository
from models.chat_models import SubscribeRequest
from services.billing_reconciler import BillingEventReconciler
from services.billing_service import BillingService, InvalidWebhookError
from utils.shared_utils import log_endpoint_event

logger = logging.getLogger(__name__)

# Create billing router
billing_router = APIRouter(prefix="/api/billing", tags=["billing"])


def get_billing_service() -> BillingService:
    return BillingService()


# WEBHOOK ENDPOINT - MUST BE DEFINED FIRST TO AVOID MIDDLEWARE CONFLICTS
@billing_router.post("/webhook")
async def stripe_webhook(
    request: Request,
    billing: BillingService = Depends(get_billing_service),
    repo: EntitlementRepository = Depends(get_entitlement_repository),
):
    """
    Handle Stripe webhook events with signature verification.

    Only verified events are processed. Unverifiable deliveries get 400 and
    processing faults get 500 so Stripe redelivers them; event types with no
    entitlement meaning are acknowledged and ignored.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = billing.construct_event(payload, signature)
    except InvalidWebhookError as e:
        logger.error(f"Stripe webhook rejected: {e}")
        return error_response("invalid_signature", status=400, message=str(e))

    event_type = event.get("type")
    try:
        billing_event = billing.parse_event(event)
        if billing_event is None:
            logger.info(f"Ignoring Stripe event {event_type} ({event.get('id')})")
            return JSONResponse(status_code=200, content={"ok": True, "received": True, "event_type": event_type, "ignored": True})

        record = await BillingEventReconciler(repo).apply(billing_event)
    except Exception as e:
        logger.error(f"Webhook error while processing {event_type}: {e}", exc_info=True)
        return error_response("webhook_processing_failed", status=500, message="Webhook processing failed")

    return JSONResponse(
        status_code=200,
        content={
            "ok": True,
            "received": True,
            "event_type": event_type,
            "applied": record is not None,
        }
    )


@billing_router.post("/subscribe")
async def subscribe(
    request: Optional[SubscribeRequest] = Body(default=None),
    identity: Identity = Depends(get_current_identity),
    billing: BillingService = Depends(get_billing_service),
    repo: EntitlementRepository = Depends(get_entitlement_repository),
):
    """
    Open a subscription for the caller.

    Available to expired users (not gated) so they can upgrade. Returns the
    client secret the frontend uses to confirm the first payment.
    """
    if not billing.enabled:
        raise BillingUnavailable("Billing is not configured")

    record = await repo.get_or_create(identity.subject, identity.claims)
    result = await billing.start_subscription(repo, record, request.price_id if request else None)

    log_endpoint_event("/api/billing/subscribe", identity=identity.subject, details={"subscription_id": result["subscription_ref"]})
    return success_response({
        "subscription_id": result["subscription_ref"],
        "client_secret": result["client_secret"],
    })
