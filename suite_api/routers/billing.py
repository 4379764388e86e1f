"""Billing router - Stripe webhook, IAP receipts, promotional offers.

The webhook answers 400 only for signature/payload failures; once an event
is verified it is processed and acknowledged with 200, even when no user
matches, so Stripe does not keep retrying an event we cannot apply.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

import stripe
from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, Response

from ..dependencies import (
    get_entitlement_resolver,
    get_referral_ledger,
    get_stripe_billing,
    verify_firebase_token,
)
from ..handlers import handle_stripe_event
from ..middleware.rate_limit import rate_limit_callable, rate_limit_events
from ..models import (
    CallableRequest,
    CallableResponse,
    ErrorResponse,
    PromotionalOfferData,
    ReceiptData,
    parse_data,
)
from ..services.entitlements import EntitlementResolver
from ..services.offers import sign_promotional_offer
from ..services.referrals import ReferralLedger
from ..services.stripe_billing import StripeBilling

router = APIRouter()
logger = logging.getLogger("api.billing")


@router.post("/webhooks/stripe", include_in_schema=False)
@rate_limit_events
async def stripe_webhook(
    request: Request,
    billing: StripeBilling = Depends(get_stripe_billing),
    resolver: EntitlementResolver = Depends(get_entitlement_resolver),
    referrals: ReferralLedger = Depends(get_referral_ledger),
) -> Response:
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = billing.construct_event(payload, signature)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        logger.error("Webhook signature verification failed: %s", exc)
        return PlainTextResponse(f"Webhook Error: {exc}", status_code=400)

    try:
        outcome = await asyncio.to_thread(handle_stripe_event, event, resolver, referrals)
        logger.info("Stripe event %s (%s): %s", event.id, event.type, outcome)
    except Exception:
        logger.exception("Stripe event %s (%s) processing failed", event.id, event.type)

    return Response(status_code=200)


@router.post(
    "/callable/processIAPReceipt",
    response_model=CallableResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
@rate_limit_callable
async def process_iap_receipt(
    request: Request,
    payload: CallableRequest,
    decoded_token: Dict[str, Any] = Depends(verify_firebase_token),
    resolver: EntitlementResolver = Depends(get_entitlement_resolver),
) -> Dict[str, Any]:
    """Verify a store receipt and refresh the caller's entitlement."""
    data = parse_data(ReceiptData, payload.data)
    subscribed = await asyncio.to_thread(
        resolver.reconcile_iap_role,
        decoded_token["uid"],
        data.platform,
        data.receiptData,
        sandbox=data.isSandbox,
    )
    return {"result": {"isSubscribed": subscribed}}


@router.post(
    "/callable/getPromotionalOfferSignature",
    response_model=CallableResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
@rate_limit_callable
async def get_promotional_offer_signature(
    request: Request,
    payload: CallableRequest,
    decoded_token: Dict[str, Any] = Depends(verify_firebase_token),
) -> Dict[str, Any]:
    data = parse_data(PromotionalOfferData, payload.data)
    signed = sign_promotional_offer(data.productIdentifier, data.offerIdentifier)
    logger.info(
        "Signed offer %s/%s for user %s",
        data.productIdentifier,
        data.offerIdentifier,
        decoded_token["uid"],
    )
    return {"result": signed}
