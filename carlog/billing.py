"""
Billing webhook handling and checkout links.

The payment processor owns checkout, invoicing and the subscription state
machine. This module only verifies signed webhook deliveries and mirrors
the outcome into the profile's subscription_status.
"""

import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import stripe

from .backends import Backend
from .errors import EmailDeliveryError, SignatureVerificationError
from .mailer import Mailer
from .profile import Profile

logger = logging.getLogger(__name__)

SUBSCRIPTION_PRICES = {
    "monthly": {"name": "Pro Monthly", "price": 4.99, "interval": "month"},
    "yearly": {"name": "Pro Yearly", "price": 39.99, "interval": "year", "savings": "33%"},
}

HANDLED_EVENTS = (
    "checkout.session.completed",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "invoice.payment_failed",
)


def checkout_url(base_url: str, price_key: str, user_id: str) -> str:
    """Redirect URL that starts a hosted checkout for a price."""
    if price_key not in SUBSCRIPTION_PRICES:
        raise ValueError(f"Unknown price '{price_key}'")
    return f"{base_url}?{urlencode({'price': price_key, 'client_reference_id': user_id})}"


def portal_url(base_url: str, customer_id: str) -> str:
    """Redirect URL for the hosted customer portal."""
    return f"{base_url}?{urlencode({'customer': customer_id})}"


def verify_signature(
    payload: bytes, header: Optional[str], secret: str, tolerance: int = 300
) -> Dict[str, Any]:
    """
    Check a webhook signature header against payload and decode the event.

    Verification is done by the Stripe SDK. Raises
    SignatureVerificationError on a missing, malformed, stale or
    mismatching signature, or a payload that is not an event.
    """
    if not secret:
        raise SignatureVerificationError("Webhook secret not configured")
    if not header:
        raise SignatureVerificationError("Missing signature header")
    try:
        stripe.Webhook.construct_event(payload, header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        raise SignatureVerificationError(str(e)) from e
    except ValueError as e:
        raise SignatureVerificationError(f"Invalid payload ({e})") from e
    # dispatch works on the plain decoded dict
    return json.loads(payload)


class WebhookHandler:
    """Applies verified billing events to profiles and sends the matching email."""

    def __init__(self, backend: Backend, mailer: Mailer, secret: str, tolerance: int = 300):
        self.backend = backend
        self.mailer = mailer
        self.secret = secret
        self.tolerance = tolerance

    async def handle(self, payload: bytes, signature: Optional[str]) -> Optional[Profile]:
        """
        Verify and process one webhook delivery.

        Returns the updated profile, or None when the event is ignored or
        names no known user. Signature failures raise before anything is
        read from the payload.
        """
        event = verify_signature(payload, signature, self.secret, self.tolerance)
        return await self.dispatch(event)

    async def dispatch(self, event: Dict[str, Any]) -> Optional[Profile]:
        event_type = event.get("type")
        if event_type not in HANDLED_EVENTS:
            logger.debug("Ignoring billing event %s", event_type)
            return None
        obj = (event.get("data") or {}).get("object") or {}

        if event_type == "checkout.session.completed":
            user_id = (obj.get("metadata") or {}).get("supabase_user_id") or obj.get(
                "client_reference_id"
            )
            changes = {"subscription_status": "pro"}
            if obj.get("customer"):
                changes["stripe_customer_id"] = obj["customer"]
            return await self._update(user_id, event_type, **changes)

        if event_type == "customer.subscription.updated":
            user_id = (obj.get("metadata") or {}).get("supabase_user_id")
            status = "pro" if obj.get("status") == "active" else "free"
            return await self._update(user_id, event_type, subscription_status=status)

        if event_type == "customer.subscription.deleted":
            user_id = (obj.get("metadata") or {}).get("supabase_user_id")
            return await self._update(user_id, event_type, subscription_status="cancelled")

        # invoice.payment_failed names only the customer
        profile = await self.backend.find_profile_by_customer(obj.get("customer") or "")
        user_id = profile.id if profile else None
        return await self._update(user_id, event_type, subscription_status="free")

    async def _update(self, user_id: Optional[str], event_type: str, **changes: Any) -> Optional[Profile]:
        if not user_id:
            logger.warning("Billing event %s names no known user", event_type)
            return None
        profile = await self.backend.update_profile(user_id, **changes)
        logger.info("Subscription for %s is now %s (%s)", user_id, profile.subscription_status, event_type)
        if profile.email:
            try:
                self.mailer.send(profile.email, "subscription", status=profile.subscription_status)
            except EmailDeliveryError as e:
                # the status change stands without the email
                logger.error("Subscription email to %s failed: %s", profile.email, e)
        return profile
