"""Referral codes, redemption tracking and the referrer's Stripe credit."""

from __future__ import annotations

import logging
from typing import Any, Optional

from google.cloud import firestore

from ..config import REFERRAL_CREDIT_CENTS, REFERRAL_CREDIT_CURRENCY
from ..errors import CallableError, Internal, InvalidArgument, NotFound
from .stripe_billing import StripeBilling

logger = logging.getLogger("api.referrals")


class ReferralLedger:
    def __init__(
        self,
        db: firestore.Client,
        billing: Optional[StripeBilling] = None,
        *,
        credit_cents: int = REFERRAL_CREDIT_CENTS,
        credit_currency: str = REFERRAL_CREDIT_CURRENCY,
    ) -> None:
        self._db = db
        self._billing = billing
        self.credit_cents = credit_cents
        self.credit_currency = credit_currency

    def validate_code(self, code: Any) -> Optional[str]:
        """Return the uid owning ``code`` (case-insensitive), or None."""
        if not code or not isinstance(code, str):
            raise InvalidArgument("The function must be called with a 'code' argument.")

        matches = list(
            self._db.collection("users")
            .where("uid_prefix", "==", code.strip().upper())
            .limit(1)
            .stream()
        )
        if not matches:
            return None
        return matches[0].id

    def redeem(self, new_user_id: str, referrer_id: Any) -> bool:
        """Record that ``new_user_id`` was referred by ``referrer_id``.

        Idempotent: once the subscriber carries ``referralCreditGiven`` the
        transaction changes nothing and still reports success.
        """
        if not referrer_id or not isinstance(referrer_id, str):
            raise InvalidArgument("The function must be called with a 'referrerId'.")

        referrer_ref = self._db.collection("users").document(referrer_id)
        subscriber_ref = self._db.collection("users").document(new_user_id)

        @firestore.transactional
        def track_referral(transaction):
            referrer_doc = referrer_ref.get(transaction=transaction)
            subscriber_doc = subscriber_ref.get(transaction=transaction)

            if not referrer_doc.exists:
                raise NotFound("Referrer not found.")

            subscriber_data = subscriber_doc.to_dict() if subscriber_doc.exists else {}
            if (subscriber_data or {}).get("referralCreditGiven"):
                return False

            referrer_data = referrer_doc.to_dict() or {}
            transaction.update(
                referrer_ref,
                {
                    "referralCount": int(referrer_data.get("referralCount") or 0) + 1,
                    "lastReferralDate": firestore.SERVER_TIMESTAMP,
                },
            )
            transaction.set(
                subscriber_ref,
                {"referredBy": referrer_id, "referralCreditGiven": True},
                merge=True,
            )
            return True

        try:
            tracked = track_referral(self._db.transaction())
        except CallableError:
            raise
        except Exception as exc:
            logger.exception("Error processing referral for %s", new_user_id)
            raise Internal("Failed to process referral.") from exc

        if tracked:
            logger.info("Referral of %s by %s tracked", new_user_id, referrer_id)
        else:
            logger.info("Referral for %s already credited; nothing to do", new_user_id)
        return True

    def apply_checkout_credit(self, user_doc: firestore.DocumentSnapshot) -> bool:
        """Credit the referrer's Stripe balance after the referred user subscribes.

        Best effort: failures are logged and not retried.
        """
        user_data = user_doc.to_dict() or {}
        referrer_id = user_data.get("referredBy")
        if not referrer_id or user_data.get("referralCreditGiven"):
            return False
        if self._billing is None:
            logger.warning("Referral credit skipped for %s: billing not configured", user_doc.id)
            return False

        try:
            referrer_doc = self._db.collection("users").document(referrer_id).get()
            if not referrer_doc.exists:
                logger.warning("Referrer %s for user %s no longer exists", referrer_id, user_doc.id)
                return False
            referrer_customer = (referrer_doc.to_dict() or {}).get("stripeCustomerId")
            if not referrer_customer:
                return False

            self._billing.credit_customer(
                referrer_customer,
                amount_cents=self.credit_cents,
                currency=self.credit_currency,
                description=f"Referral credit for {user_data.get('email') or user_doc.id}",
            )
            user_doc.reference.update({"referralCreditGiven": True})
        except Exception as exc:
            logger.error("Failed to give referral credit to %s: %s", referrer_id, exc)
            return False

        logger.info("Gave referral credit to %s for referring %s", referrer_id, user_doc.id)
        return True
