"""
Billing Service - Stripe integration for subscriptions and webhook events
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Optional

import stripe

from config.settings import settings
from crud.entitlement import EntitlementRepository
from backend.utils.errors import BillingUnavailable, UpstreamUnavailable
from models.billing_event import BillingEvent, BillingEventKind
from models.entitlement import EntitlementRecord

logger = logging.getLogger(__name__)

# Stripe subscription statuses that end access
EXPIRED_SUBSCRIPTION_STATUSES = {"canceled", "unpaid", "past_due", "incomplete_expired"}

INVOICE_PAID_EVENTS = {"invoice.paid", "invoice.payment_succeeded"}


def _timestamp_to_utc(value) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), timezone.utc).replace(tzinfo=None)


def _customer_id(obj: dict) -> Optional[str]:
    customer = obj.get("customer")
    if isinstance(customer, dict):
        return customer.get("id")
    return customer


class InvalidWebhookError(Exception):
    """Raised when a webhook payload or its signature cannot be verified."""


class BillingService:
    """
    Service class for billing-related business logic.
    Blocking Stripe SDK calls run in worker threads.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        price_id: Optional[str] = None,
    ):
        """
        Initialize the billing service.

        Args:
            secret_key: Stripe secret key (defaults to STRIPE_SECRET_KEY)
            webhook_secret: Stripe webhook signing secret (defaults to STRIPE_WEBHOOK_SECRET)
            price_id: Subscription price (defaults to STRIPE_PRICE_ID)
        """
        self.secret_key = secret_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        self.price_id = price_id or settings.stripe_price_id

        if self.secret_key:
            stripe.api_key = self.secret_key
        else:
            logger.warning("STRIPE_SECRET_KEY is not set. Stripe functionality will be unavailable.")

    @property
    def enabled(self) -> bool:
        return bool(self.secret_key)

    async def create_customer(self, email: Optional[str], name: Optional[str], metadata: dict) -> str:
        """Create a Stripe customer and return its id."""
        if not self.enabled:
            raise BillingUnavailable("STRIPE_SECRET_KEY is not set. Cannot create customer.")

        params = {"metadata": metadata}
        if email:
            params["email"] = email
        if name:
            params["name"] = name
        try:
            customer = await asyncio.to_thread(stripe.Customer.create, **params)
        except stripe.StripeError as e:
            logger.error(f"Failed to create Stripe customer: {e}")
            raise UpstreamUnavailable(f"Stripe customer creation failed: {e.user_message or e}")
        return customer.id

    async def create_subscription(self, customer_ref: str, price_ref: Optional[str] = None) -> dict:
        """
        Create an incomplete subscription awaiting its first payment.

        Returns:
            {"subscription_ref": str, "client_secret": str | None}
        """
        if not self.enabled:
            raise BillingUnavailable("STRIPE_SECRET_KEY is not set. Cannot create subscription.")
        price = price_ref or self.price_id
        if not price:
            raise BillingUnavailable("STRIPE_PRICE_ID is not set. Cannot create subscription.")

        try:
            subscription = await asyncio.to_thread(
                stripe.Subscription.create,
                customer=customer_ref,
                items=[{"price": price}],
                payment_behavior="default_incomplete",
                payment_settings={"save_default_payment_method": "on_subscription"},
                expand=["latest_invoice.confirmation_secret"],
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to create Stripe subscription for {customer_ref}: {e}")
            raise UpstreamUnavailable(f"Stripe subscription creation failed: {e.user_message or e}")

        return {
            "subscription_ref": subscription.id,
            "client_secret": self._client_secret(subscription),
        }

    @staticmethod
    def _client_secret(subscription) -> Optional[str]:
        invoice = getattr(subscription, "latest_invoice", None)
        if invoice is None or isinstance(invoice, str):
            return None
        confirmation = getattr(invoice, "confirmation_secret", None)
        if confirmation is not None:
            return getattr(confirmation, "client_secret", None)
        payment_intent = getattr(invoice, "payment_intent", None)
        if payment_intent is not None and not isinstance(payment_intent, str):
            return getattr(payment_intent, "client_secret", None)
        return None

    async def start_subscription(
        self,
        repo: EntitlementRepository,
        record: EntitlementRecord,
        price_ref: Optional[str] = None,
    ) -> dict:
        """
        Link the record to a Stripe customer (creating one if needed) and open a subscription.
        Both references are stored on the record before returning.
        """
        customer_ref = record.billing_customer_ref
        if not customer_ref:
            customer_ref = await self.create_customer(
                record.email,
                record.display_name,
                metadata={"identity": record.identity},
            )
            await repo.update(record.identity, lambda current: current.with_changes(billing_customer_ref=customer_ref))
            logger.info(f"Linked {record.identity} to Stripe customer {customer_ref}")

        result = await self.create_subscription(customer_ref, price_ref)
        await repo.update(
            record.identity,
            lambda current: current.with_changes(billing_subscription_ref=result["subscription_ref"]),
        )
        return result

    def construct_event(self, payload: bytes, signature: Optional[str]) -> dict:
        """
        Verify the webhook signature and return the event as a plain dict.

        Raises:
            BillingUnavailable: If no webhook secret is configured
            InvalidWebhookError: If the signature or payload is invalid
        """
        if not self.webhook_secret:
            raise BillingUnavailable("STRIPE_WEBHOOK_SECRET is not set. Cannot verify webhooks.")
        if not signature:
            raise InvalidWebhookError("Missing Stripe-Signature header")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
            # Events are handled as plain dicts, not StripeObjects
            return json.loads(payload)
        except stripe.SignatureVerificationError as e:
            raise InvalidWebhookError(f"Invalid webhook signature: {e}")
        except ValueError as e:
            raise InvalidWebhookError(f"Invalid payload format: {e}")

    def parse_event(self, event: dict) -> Optional[BillingEvent]:
        """
        Map a Stripe event onto a billing event variant.
        Returns None for event types and statuses that carry no entitlement change.
        """
        event_type = event.get("type", "")
        event_id = event.get("id")
        obj = (event.get("data") or {}).get("object") or {}
        customer_ref = _customer_id(obj)
        if not customer_ref:
            return None

        if event_type in ("customer.subscription.created", "customer.subscription.updated"):
            status = obj.get("status")
            if status == "active":
                return BillingEvent(
                    BillingEventKind.SUBSCRIPTION_ACTIVE, customer_ref,
                    subscription_ref=obj.get("id"), event_id=event_id,
                )
            if status == "trialing" and obj.get("trial_end"):
                return BillingEvent(
                    BillingEventKind.SUBSCRIPTION_TRIALING, customer_ref,
                    trial_ends_at=_timestamp_to_utc(obj.get("trial_end")),
                    subscription_ref=obj.get("id"), event_id=event_id,
                )
            if status in EXPIRED_SUBSCRIPTION_STATUSES:
                return BillingEvent(
                    BillingEventKind.SUBSCRIPTION_EXPIRED, customer_ref,
                    subscription_ref=obj.get("id"), event_id=event_id,
                )
            # incomplete: first payment still pending
            return None

        if event_type == "customer.subscription.deleted":
            return BillingEvent(
                BillingEventKind.SUBSCRIPTION_DELETED, customer_ref,
                subscription_ref=obj.get("id"), event_id=event_id,
            )

        if event_type in INVOICE_PAID_EVENTS:
            return BillingEvent(BillingEventKind.INVOICE_PAID, customer_ref, event_id=event_id)

        if event_type == "invoice.payment_failed":
            return BillingEvent(BillingEventKind.INVOICE_PAYMENT_FAILED, customer_ref, event_id=event_id)

        return None
