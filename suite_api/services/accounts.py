"""Cleanup after a Firebase Auth account is deleted."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from google.api_core.exceptions import NotFound as StorageNotFound
from google.cloud import firestore

from ..config import PROFILE_PICS_PREFIX
from .stripe_billing import StripeBilling

logger = logging.getLogger("api.accounts")


class AccountCleanup:
    """Each step is best effort; a failing step never stops the next one."""

    def __init__(self, db: firestore.Client, billing: StripeBilling, bucket_factory: Callable[[], Any]) -> None:
        self._db = db
        self._billing = billing
        self._bucket_factory = bucket_factory

    def cleanup_user(self, user_id: str) -> Dict[str, Optional[bool]]:
        logger.info("Starting cleanup for deleted user %s", user_id)
        user_ref = self._db.collection("users").document(user_id)
        return {
            "subscriptionCancelled": self._cancel_subscription(user_id, user_ref),
            "dataDeleted": self._delete_documents(user_id, user_ref),
            "profileImageDeleted": self._delete_profile_image(user_id),
        }

    def _cancel_subscription(self, user_id: str, user_ref: firestore.DocumentReference) -> Optional[bool]:
        try:
            user_data = user_ref.get().to_dict() or {}
        except Exception as exc:
            logger.error("Error reading user %s before cancellation: %s", user_id, exc)
            return False

        customer_id = user_data.get("stripeCustomerId")
        subscription_id = user_data.get("stripeSubscriptionId")
        if not customer_id or not subscription_id:
            return None

        try:
            self._billing.cancel_subscription(subscription_id)
        except Exception as exc:
            logger.error("Error cancelling Stripe subscription for deleted user %s: %s", user_id, exc)
            return False
        logger.info("Cancelled Stripe subscription for deleted user %s", user_id)
        return True

    def _delete_documents(self, user_id: str, user_ref: firestore.DocumentReference) -> bool:
        try:
            self._db.recursive_delete(user_ref)
        except Exception as exc:
            logger.error("Error deleting Firestore data for user %s: %s", user_id, exc)
            return False
        logger.info("Deleted Firestore data for user %s", user_id)
        return True

    def _delete_profile_image(self, user_id: str) -> Optional[bool]:
        try:
            self._bucket_factory().blob(f"{PROFILE_PICS_PREFIX}/{user_id}").delete()
        except StorageNotFound:
            return None
        except Exception as exc:
            logger.error("Error deleting profile picture for user %s: %s", user_id, exc)
            return False
        logger.info("Deleted profile picture for user %s", user_id)
        return True
