"""Stripe checkout, portal, cancellation and webhook verification."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

import stripe
from firebase_admin import auth
from google.cloud import firestore

from ..config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from ..models import StripeEvent

logger = logging.getLogger("api.stripe")


class StripeBillingError(Exception):
    def __init__(self, *, error: str, code: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(error)
        self.error = error
        self.code = code
        self.details = details or {}


class StripeBilling:
    def __init__(
        self,
        db: firestore.Client,
        *,
        secret_key: str = STRIPE_SECRET_KEY,
        webhook_secret: str = STRIPE_WEBHOOK_SECRET,
    ) -> None:
        self._db = db
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret

    def _require_key(self) -> str:
        if not self._secret_key:
            raise StripeBillingError(
                error="Stripe is not configured",
                code="STRIPE_NOT_CONFIGURED",
                details={"required": ["STRIPE_SECRET_KEY"]},
            )
        return self._secret_key

    # -------------------------------------------------------------------------
    # Webhook
    # -------------------------------------------------------------------------

    def construct_event(self, payload: bytes, signature: Optional[str]) -> StripeEvent:
        """Verify the signature and parse the event body.

        Raises ``ValueError`` or ``stripe.SignatureVerificationError``.
        """
        stripe.Webhook.construct_event(payload, signature or "", self._webhook_secret)
        return StripeEvent.model_validate_json(payload)

    # -------------------------------------------------------------------------
    # Checkout / portal
    # -------------------------------------------------------------------------

    def ensure_customer(self, user_id: str) -> str:
        user_ref = self._db.collection("users").document(user_id)
        user_data = user_ref.get().to_dict() or {}
        customer_id = str(user_data.get("stripeCustomerId") or "").strip()
        if customer_id:
            return customer_id

        user = auth.get_user(user_id)
        customer = stripe.Customer.create(
            email=user.email,
            metadata={"firebaseUID": user_id},
            api_key=self._require_key(),
        )
        user_ref.update({"stripeCustomerId": customer.id})
        logger.info("Created Stripe customer %s for user %s", customer.id, user_id)
        return customer.id

    def create_checkout_session(
        self,
        user_id: str,
        session_ref: firestore.DocumentReference,
        data: Mapping[str, Any],
    ) -> Optional[str]:
        """Create a subscription checkout session for a checkout_sessions doc.

        The session URL, or the error message, is merged back onto the doc.
        A customer created before a failing session call stays persisted.
        """
        try:
            customer_id = self.ensure_customer(user_id)
            session = stripe.checkout.Session.create(
                payment_method_types=["card"],
                mode="subscription",
                customer=customer_id,
                line_items=[{"price": data.get("price"), "quantity": 1}],
                success_url=data.get("success_url"),
                cancel_url=data.get("cancel_url"),
                api_key=self._require_key(),
            )
        except Exception as exc:
            logger.error("Stripe checkout error for user %s: %s", user_id, exc)
            session_ref.set({"error": {"message": str(exc)}}, merge=True)
            return None

        session_ref.set({"url": session.url}, merge=True)
        return session.url

    def create_portal_link(
        self,
        user_id: str,
        link_ref: firestore.DocumentReference,
        data: Mapping[str, Any],
    ) -> Optional[str]:
        try:
            user_data = self._db.collection("users").document(user_id).get().to_dict() or {}
            customer_id = user_data.get("stripeCustomerId")
            if not customer_id:
                raise StripeBillingError(
                    error="User does not have a Stripe Customer ID.",
                    code="STRIPE_CUSTOMER_ID_MISSING",
                )
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=data.get("return_url"),
                api_key=self._require_key(),
            )
        except Exception as exc:
            logger.error("Stripe portal error for user %s: %s", user_id, exc)
            link_ref.set({"error": {"message": str(exc)}}, merge=True)
            return None

        link_ref.set({"url": session.url}, merge=True)
        return session.url

    # -------------------------------------------------------------------------
    # Subscriptions / balance
    # -------------------------------------------------------------------------

    def cancel_subscription(self, subscription_id: str) -> None:
        stripe.Subscription.cancel(subscription_id, api_key=self._require_key())

    def handle_command(self, user_id: str, command: Mapping[str, Any]) -> bool:
        """Process a stripe_commands document. Returns True if a cancel went through."""
        if command.get("command") != "cancel_subscription":
            logger.info("Ignoring Stripe command %r for user %s", command.get("command"), user_id)
            return False

        user_data = self._db.collection("users").document(user_id).get().to_dict() or {}
        customer_id = user_data.get("stripeCustomerId")
        subscription_id = user_data.get("stripeSubscriptionId")
        if not customer_id or not subscription_id:
            logger.error("User %s has no Stripe customer or subscription id", user_id)
            return False

        try:
            self.cancel_subscription(subscription_id)
        except Exception as exc:
            logger.error("Error cancelling Stripe subscription for user %s: %s", user_id, exc)
            return False
        logger.info("Cancelled Stripe subscription for user %s", user_id)
        return True

    def credit_customer(self, customer_id: str, *, amount_cents: int, currency: str, description: str) -> None:
        stripe.Customer.create_balance_transaction(
            customer_id,
            amount=-abs(amount_cents),
            currency=currency,
            description=description,
            api_key=self._require_key(),
        )
