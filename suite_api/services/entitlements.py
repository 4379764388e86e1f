"""Entitlement resolver.

A user is pro when either the Stripe role or the IAP role is ``pro``. Every
role mutation ends by pushing the merged flag into the ``isPro`` custom
claim on the Firebase Auth user.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from firebase_admin import auth
from google.cloud import firestore

from ..errors import Internal, InvalidArgument
from .iap import IAPVerifier, latest_apple_receipt

logger = logging.getLogger("api.entitlements")

ROLE_PRO = "pro"
ROLE_FREE = "free"

ClaimsWriter = Callable[[str, Dict[str, Any]], None]


def is_pro(stripe_role: Optional[str], iap_role: Optional[str]) -> bool:
    return stripe_role == ROLE_PRO or iap_role == ROLE_PRO


def role_for_stripe_status(status: Optional[str]) -> str:
    return ROLE_PRO if status == "active" else ROLE_FREE


class EntitlementResolver:
    def __init__(
        self,
        db: firestore.Client,
        verifier: IAPVerifier,
        claims_writer: Optional[ClaimsWriter] = None,
    ) -> None:
        self._db = db
        self._verifier = verifier
        self._set_claims = claims_writer or auth.set_custom_user_claims

    def _publish_claim(self, user_id: str, pro: bool) -> bool:
        self._set_claims(user_id, {"isPro": pro})
        return pro

    def _write_roles(self, user_ref: firestore.DocumentReference, updates: Dict[str, Any]) -> bool:
        """Merge ``updates`` onto the user and return the combined flag.

        Both roles are read in the same transaction as the write, so the
        flag reflects the stored state at commit time.
        """

        @firestore.transactional
        def write_roles(transaction):
            snapshot = user_ref.get(transaction=transaction)
            merged = dict(snapshot.to_dict() or {}) if snapshot.exists else {}
            for key, value in updates.items():
                if value is firestore.DELETE_FIELD:
                    merged.pop(key, None)
                else:
                    merged[key] = value
            transaction.set(user_ref, updates, merge=True)
            return is_pro(merged.get("stripeRole"), merged.get("iapRole"))

        return write_roles(self._db.transaction())

    def _read_flag(self, user_ref: firestore.DocumentReference) -> bool:
        data = user_ref.get().to_dict() or {}
        return is_pro(data.get("stripeRole"), data.get("iapRole"))

    # -------------------------------------------------------------------------
    # Stripe
    # -------------------------------------------------------------------------

    def reconcile_billing_role(
        self,
        customer_id: Optional[str],
        status: Optional[str],
        *,
        subscription_id: Optional[str] = None,
        subscription_ended: bool = False,
    ) -> Optional[firestore.DocumentSnapshot]:
        """Apply a Stripe subscription status to the matching user.

        ``subscription_id`` is stored as ``stripeSubscriptionId``; an ended
        subscription removes it. Returns the user snapshot read after the
        update, or ``None`` when no user matches or the write failed. Runs
        inside webhook processing, so failures are logged rather than raised.
        """
        if not customer_id:
            logger.error("Stripe event without customer id")
            return None

        matches = list(
            self._db.collection("users")
            .where("stripeCustomerId", "==", customer_id)
            .limit(1)
            .stream()
        )
        if not matches:
            logger.error("No user found for Stripe customer %s", customer_id)
            return None

        user_ref = matches[0].reference
        stripe_role = role_for_stripe_status(status)
        updates: Dict[str, Any] = {"stripeRole": stripe_role}
        if subscription_ended:
            updates["stripeSubscriptionId"] = firestore.DELETE_FIELD
        elif subscription_id:
            updates["stripeSubscriptionId"] = subscription_id

        try:
            pro = self._publish_claim(user_ref.id, self._write_roles(user_ref, updates))
            user_doc = user_ref.get()
        except Exception:
            logger.exception("Failed to update Stripe role for user %s", user_ref.id)
            return None

        logger.info("Stripe role '%s' set for user %s (isPro=%s)", stripe_role, user_ref.id, pro)
        return user_doc

    # -------------------------------------------------------------------------
    # IAP
    # -------------------------------------------------------------------------

    def reconcile_iap_role(
        self,
        user_id: str,
        platform: Optional[str],
        receipt: Any,
        *,
        sandbox: bool = False,
        now: Optional[datetime] = None,
    ) -> bool:
        """Verify a store receipt, persist the IAP role and refresh the claim.

        Returns whether the receipt grants an active subscription.
        """
        if not platform or not receipt:
            raise InvalidArgument("platform and receiptData must be provided.")
        if platform not in ("ios", "android"):
            raise InvalidArgument(f"Unsupported platform '{platform}'.")
        if platform == "android" and not (
            isinstance(receipt, dict) and receipt.get("subscriptionId") and receipt.get("purchaseToken")
        ):
            raise InvalidArgument("Android receipts need subscriptionId and purchaseToken.")

        current = now or datetime.now(timezone.utc)
        user_ref = self._db.collection("users").document(user_id)

        try:
            if platform == "ios":
                updates = self._apple_receipt_updates(str(receipt), sandbox, current)
            else:
                updates = self._google_receipt_updates(receipt, current)

            if updates is None:
                self._publish_claim(user_id, self._read_flag(user_ref))
                subscribed = False
            else:
                self._publish_claim(user_id, self._write_roles(user_ref, updates))
                subscribed = updates["iapRole"] == ROLE_PRO
        except Exception as exc:
            logger.error("IAP receipt verification failed for user %s: %s", user_id, exc)
            raise Internal("Failed to verify receipt.") from exc

        logger.info("IAP validation for user %s done. subscribed=%s", user_id, subscribed)
        return subscribed

    def _apple_receipt_updates(
        self, receipt_data: str, sandbox: bool, now: datetime
    ) -> Optional[Dict[str, Any]]:
        """Fields to write for an App Store receipt; ``None`` when it was rejected."""
        response = self._verifier.verify_apple(receipt_data, sandbox=sandbox)
        latest = latest_apple_receipt(response.latest_receipt_info)
        if response.status != 0 or latest is None:
            logger.warning("verifyReceipt status=%s with %d records", response.status, len(response.latest_receipt_info))
            return None

        expires_at = latest.expires_at
        if expires_at > now:
            return {
                "iapRole": ROLE_PRO,
                "iapSubscriptionId": latest.original_transaction_id,
                "iapExpiryDate": expires_at,
            }
        return {"iapRole": ROLE_FREE}

    def _google_receipt_updates(self, receipt: Dict[str, Any], now: datetime) -> Dict[str, Any]:
        subscription_id = str(receipt["subscriptionId"])
        purchase = self._verifier.verify_google(subscription_id, str(receipt["purchaseToken"]))
        expires_at = purchase.expires_at
        if expires_at is not None and expires_at > now:
            return {
                "iapRole": ROLE_PRO,
                "iapSubscriptionId": subscription_id,
                "iapExpiryDate": expires_at,
            }
        return {"iapRole": ROLE_FREE}
