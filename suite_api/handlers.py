"""Event handlers shared by the HTTP routers and the Firestore listener.

Background triggers have no caller to report to: every handler here logs
its failure and returns a small status dict instead of raising.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional
from zoneinfo import ZoneInfo

from google.cloud import firestore

from .config import REPORT_TIMEZONE
from .models import StripeCheckoutSessionObject, StripeEvent, StripeSubscriptionObject
from .services import mailer
from .services.accounts import AccountCleanup
from .services.entitlements import EntitlementResolver
from .services.founders import assign_founder_flag
from .services.referrals import ReferralLedger
from .services.stripe_billing import StripeBilling
from .services.usage_ledger import UsageLedger, previous_month_key

logger = logging.getLogger("api.handlers")

SUBSCRIPTION_EVENTS = ("customer.subscription.updated", "customer.subscription.deleted")


def _user_subdoc(db: firestore.Client, user_id: str, subcollection: str, document_id: str):
    return db.collection("users").document(user_id).collection(subcollection).document(document_id)


# =============================================================================
# STRIPE WEBHOOK
# =============================================================================

def handle_stripe_event(
    event: StripeEvent,
    resolver: EntitlementResolver,
    referrals: ReferralLedger,
) -> Dict[str, Any]:
    if event.type in SUBSCRIPTION_EVENTS:
        subscription = StripeSubscriptionObject.model_validate(event.data.object)
        logger.info("Subscription %s status is %s", subscription.id, subscription.status)
        user_doc = resolver.reconcile_billing_role(
            subscription.customer,
            subscription.status,
            subscription_id=subscription.id or None,
            subscription_ended=event.type == "customer.subscription.deleted",
        )
        return {"handled": event.type, "userFound": user_doc is not None}

    if event.type == "checkout.session.completed":
        session = StripeCheckoutSessionObject.model_validate(event.data.object)
        if session.mode != "subscription":
            return {"handled": event.type, "ignored": f"mode={session.mode}"}
        user_doc = resolver.reconcile_billing_role(
            session.customer, "active", subscription_id=session.subscription
        )
        credited = referrals.apply_checkout_credit(user_doc) if user_doc is not None else False
        return {"handled": event.type, "userFound": user_doc is not None, "referralCredited": credited}

    logger.info("Unhandled Stripe event type %s", event.type)
    return {"handled": None, "type": event.type}


# =============================================================================
# DOCUMENT TRIGGERS
# =============================================================================

def handle_checkout_session_created(
    db: firestore.Client,
    billing: StripeBilling,
    user_id: str,
    document_id: str,
    data: Mapping[str, Any],
) -> Dict[str, Any]:
    session_ref = _user_subdoc(db, user_id, "checkout_sessions", document_id)
    url = billing.create_checkout_session(user_id, session_ref, data)
    return {"url": url}


def handle_portal_link_created(
    db: firestore.Client,
    billing: StripeBilling,
    user_id: str,
    document_id: str,
    data: Mapping[str, Any],
) -> Dict[str, Any]:
    link_ref = _user_subdoc(db, user_id, "portal_links", document_id)
    url = billing.create_portal_link(user_id, link_ref, data)
    return {"url": url}


def handle_stripe_command_created(
    billing: StripeBilling,
    user_id: str,
    data: Mapping[str, Any],
) -> Dict[str, Any]:
    try:
        cancelled = billing.handle_command(user_id, data)
    except Exception:
        logger.exception("Stripe command failed for user %s", user_id)
        cancelled = False
    return {"cancelled": cancelled}


def handle_feedback_created(feedback_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    sent = mailer.send_feedback_email(data)
    if sent:
        logger.info("Feedback email sent for %s", feedback_id)
    else:
        logger.error("Feedback email not sent for %s", feedback_id)
    return {"emailSent": sent}


def handle_user_created(db: firestore.Client, user_id: str) -> Dict[str, Any]:
    try:
        founder = assign_founder_flag(db, user_id)
    except Exception:
        logger.exception("Founder assignment failed for user %s", user_id)
        return {"isFounder": None}
    return {"isFounder": founder}


def handle_user_deleted(cleanup: AccountCleanup, user_id: str) -> Dict[str, Any]:
    return cleanup.cleanup_user(user_id)


# =============================================================================
# SCHEDULED
# =============================================================================

def handle_monthly_report(
    ledger: UsageLedger,
    *,
    month: Optional[str] = None,
    dry_run: bool = False,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Aggregate the previous month's usage and email it to the operator."""
    target = month or previous_month_key(now or datetime.now(ZoneInfo(REPORT_TIMEZONE)))
    logger.info("Generating monthly report for %s", target)
    try:
        summary = ledger.build_report(target)
    except Exception:
        logger.exception("Monthly report aggregation failed for %s", target)
        return {"summary": None, "emailSent": False, "month": target}

    sent = False
    if not dry_run:
        sent = mailer.send_monthly_report(summary)
        if not sent:
            logger.error("Monthly report for %s was not sent", target)
    return {"summary": summary.to_dict(), "emailSent": sent}
